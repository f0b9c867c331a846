#!/usr/bin/env python3
"""
Classification & Scoring Engine for TriageEye
Aggregates phrase rules, pattern matches, anomaly analyzers, threat
intelligence and context into a true-positive / false-positive decision
with a calibrated confidence value.
"""

import logging
from typing import Dict, List, Optional

from .anomaly_analyzers import (
    ScoreFactor, DimensionScore, BehavioralAnalyzer, TemporalAnalyzer,
    NetworkAnalyzer, StatisticalAnalyzer
)
from .incident import IncidentInput
from .pattern_matcher import PatternMatch
from .scoring_weights import (
    CLASSIFICATION_THRESHOLD, CONFIDENCE_BANDS, CONFIDENCE_REASON_BONUS,
    CONFIDENCE_MIN, CONFIDENCE_MAX, MAX_REASONS,
    CRITICAL_THREAT_RULES, SUSPICIOUS_RULES, LEGITIMATE_RULES,
    PATTERN_WEIGHTS, PATTERN_CAP,
    THREAT_INTEL_RISK_BUCKETS, MALICIOUS_INDICATOR_POINTS, MALICIOUS_INDICATOR_CAP,
    THREAT_LEVEL_BONUS, FALSE_POSITIVE_CONTEXT_RULES, TRUE_POSITIVE_CONTEXT_RULES,
    DECLARED_SEVERITY_WEIGHTS
)
from ..utils.threat_intelligence import ThreatReport

logger = logging.getLogger('triageeye.classification_engine')

TRUE_POSITIVE = 'true-positive'
FALSE_POSITIVE = 'false-positive'


class ScoreAccumulator:
    """
    Running true-positive and false-positive totals built from named factors.

    Totals only grow: non-positive contributions are ignored.
    """

    def __init__(self):
        self.true_positive_factors: List[ScoreFactor] = []
        self.false_positive_factors: List[ScoreFactor] = []

    @property
    def true_positive_score(self) -> float:
        return sum(factor.points for factor in self.true_positive_factors)

    @property
    def false_positive_score(self) -> float:
        return sum(factor.points for factor in self.false_positive_factors)

    @property
    def differential(self) -> float:
        return self.true_positive_score - self.false_positive_score

    def add_true_positive(self, dimension: str, description: str, points: float) -> None:
        if points > 0:
            self.true_positive_factors.append(ScoreFactor(dimension, description, points))

    def add_false_positive(self, dimension: str, description: str, points: float) -> None:
        if points > 0:
            self.false_positive_factors.append(ScoreFactor(dimension, description, points))

    def add_dimension(self, dimension_score: DimensionScore) -> None:
        """Add every factor of an analyzer result to the true-positive side"""
        for factor in dimension_score.factors:
            self.add_true_positive(factor.dimension, factor.description, factor.points)

    def dimension_total(self, dimension: str, side: str = TRUE_POSITIVE) -> float:
        factors = self.true_positive_factors if side == TRUE_POSITIVE else self.false_positive_factors
        return sum(factor.points for factor in factors if factor.dimension == dimension)

    def breakdown(self) -> Dict[str, Dict[str, float]]:
        """Per-dimension totals for each side"""
        result = {TRUE_POSITIVE: {}, FALSE_POSITIVE: {}}
        for side, factors in ((TRUE_POSITIVE, self.true_positive_factors),
                              (FALSE_POSITIVE, self.false_positive_factors)):
            for factor in factors:
                result[side][factor.dimension] = result[side].get(factor.dimension, 0) + factor.points
        return result


class ClassificationResult:
    """Final verdict for one incident"""

    def __init__(self,
                 classification: str,
                 confidence: int,
                 reasons: List[str],
                 true_positive_score: float,
                 false_positive_score: float,
                 breakdown: Dict = None,
                 factors: Dict[str, List[Dict]] = None):
        self.classification = classification
        self.confidence = confidence
        self.reasons = reasons
        self.true_positive_score = true_positive_score
        self.false_positive_score = false_positive_score
        self.breakdown = breakdown or {}
        self.factors = factors or {}

    @property
    def is_true_positive(self) -> bool:
        return self.classification == TRUE_POSITIVE

    def to_dict(self) -> Dict:
        return {
            'classification': self.classification,
            'confidence': self.confidence,
            'reasons': list(self.reasons),
            'true_positive_score': self.true_positive_score,
            'false_positive_score': self.false_positive_score,
            'breakdown': self.breakdown,
            'factors': self.factors
        }

    def __eq__(self, other):
        if not isinstance(other, ClassificationResult):
            return NotImplemented
        return self.to_dict() == other.to_dict()


def threat_intel_contribution(threat_report: Optional[ThreatReport]) -> List[ScoreFactor]:
    """
    Factors contributed by a threat report

    Args:
        threat_report: Optional ThreatReport

    Returns:
        List of threat_intel ScoreFactor objects
    """
    factors = []
    if not threat_report:
        return factors

    for minimum, points in THREAT_INTEL_RISK_BUCKETS:
        if threat_report.risk_score >= minimum:
            factors.append(ScoreFactor('threat_intel', f'Threat intelligence risk score {threat_report.risk_score}', points))
            break

    malicious = threat_report.malicious_indicators
    if malicious:
        points = min(len(malicious) * MALICIOUS_INDICATOR_POINTS, MALICIOUS_INDICATOR_CAP)
        factors.append(ScoreFactor('threat_intel', f'Known malicious indicators ({len(malicious)})', points))

    bonus = THREAT_LEVEL_BONUS.get(str(threat_report.threat_level).lower())
    if bonus:
        factors.append(ScoreFactor('threat_intel', f'Threat level {threat_report.threat_level}', bonus))

    return factors


def calculate_confidence(differential: float, reason_count: int) -> int:
    """
    Confidence from the absolute score differential

    The band floor grows by a fixed bonus per distinct reason, up to the band
    ceiling, and is clamped to [CONFIDENCE_MIN, CONFIDENCE_MAX].
    """
    spread = abs(differential)
    for minimum, floor, ceiling in CONFIDENCE_BANDS:
        if spread > minimum:
            confidence = min(floor + reason_count * CONFIDENCE_REASON_BONUS, ceiling)
            return int(max(CONFIDENCE_MIN, min(CONFIDENCE_MAX, confidence)))
    return CONFIDENCE_MIN


class ClassificationEngine:
    """
    Multi-dimensional weighted scoring engine.

    Every dimension adds independently to one side of a ScoreAccumulator;
    the verdict is true-positive iff the differential reaches
    CLASSIFICATION_THRESHOLD.
    """

    def __init__(self, config: Dict = None):
        """Initialize the engine and its analyzers"""
        self.config = config or {}
        self.logger = logger

        self.behavioral_analyzer = BehavioralAnalyzer(self.config.get('behavioral', {}))
        self.temporal_analyzer = TemporalAnalyzer(self.config.get('temporal', {}))
        self.network_analyzer = NetworkAnalyzer(self.config.get('network', {}))
        self.statistical_analyzer = StatisticalAnalyzer(self.config.get('statistical', {}))

    def run_analyzers(self, text: str, ai_result: Optional[Dict] = None) -> Dict[str, DimensionScore]:
        """Run the four anomaly analyzers over the same text"""
        return {
            'behavioral': self.behavioral_analyzer.analyze(text, ai_result),
            'temporal': self.temporal_analyzer.analyze(text, ai_result),
            'network': self.network_analyzer.analyze(text, ai_result),
            'statistical': self.statistical_analyzer.analyze(text, ai_result),
        }

    def score(self,
              incident: IncidentInput,
              pattern_matches: List[PatternMatch],
              threat_report: Optional[ThreatReport] = None,
              ai_result: Optional[Dict] = None,
              analyzer_scores: Optional[Dict[str, DimensionScore]] = None) -> ScoreAccumulator:
        """
        Build the score accumulator for an incident

        Args:
            incident: Incident input
            pattern_matches: Output of the pattern matcher
            threat_report: Optional threat intelligence report
            ai_result: Optional structured LLM output
            analyzer_scores: Precomputed analyzer results, computed here when omitted

        Returns:
            ScoreAccumulator with all contributing factors
        """
        accumulator = ScoreAccumulator()
        text = incident.analysis_text
        lowered = text.lower()

        for rule in CRITICAL_THREAT_RULES:
            if rule.matches(lowered):
                accumulator.add_true_positive('critical_phrase', rule.description, rule.points)

        for rule in SUSPICIOUS_RULES:
            if rule.matches(lowered):
                accumulator.add_true_positive('suspicious_phrase', rule.description, rule.points)

        for rule in LEGITIMATE_RULES:
            if rule.matches(lowered):
                accumulator.add_false_positive('legitimate_activity', rule.description, rule.points)

        self._score_patterns(accumulator, pattern_matches)

        if analyzer_scores is None:
            analyzer_scores = self.run_analyzers(text, ai_result)
        for dimension_score in analyzer_scores.values():
            accumulator.add_dimension(dimension_score)

        for factor in threat_intel_contribution(threat_report):
            accumulator.add_true_positive(factor.dimension, factor.description, factor.points)

        self._score_context(accumulator, incident)

        return accumulator

    def decide(self, accumulator: ScoreAccumulator) -> ClassificationResult:
        """
        Turn an accumulator into a verdict, confidence and reasons
        """
        differential = accumulator.differential

        if differential >= CLASSIFICATION_THRESHOLD:
            classification = TRUE_POSITIVE
            winning = accumulator.true_positive_factors
        else:
            classification = FALSE_POSITIVE
            winning = accumulator.false_positive_factors

        ranked = sorted(winning, key=lambda factor: factor.points, reverse=True)
        distinct = []
        for factor in ranked:
            if factor.description not in distinct:
                distinct.append(factor.description)

        confidence = calculate_confidence(differential, len(distinct))

        return ClassificationResult(
            classification=classification,
            confidence=confidence,
            reasons=distinct[:MAX_REASONS],
            true_positive_score=round(accumulator.true_positive_score, 2),
            false_positive_score=round(accumulator.false_positive_score, 2),
            breakdown=accumulator.breakdown(),
            factors={
                TRUE_POSITIVE: [factor.to_dict() for factor in accumulator.true_positive_factors],
                FALSE_POSITIVE: [factor.to_dict() for factor in accumulator.false_positive_factors]
            }
        )

    def classify(self,
                 incident: IncidentInput,
                 pattern_matches: List[PatternMatch],
                 threat_report: Optional[ThreatReport] = None,
                 ai_result: Optional[Dict] = None,
                 analyzer_scores: Optional[Dict[str, DimensionScore]] = None) -> ClassificationResult:
        """
        Classify an incident

        Never raises: on internal error the result is a minimum-confidence
        false positive with no reasons.
        """
        try:
            accumulator = self.score(incident, pattern_matches, threat_report, ai_result, analyzer_scores)
            result = self.decide(accumulator)
            self.logger.info(f"Classified as {result.classification} ({result.confidence}%) "
                             f"TP={result.true_positive_score} FP={result.false_positive_score}")
            return result
        except Exception as e:
            self.logger.error(f"Error during classification: {e}")
            return ClassificationResult(FALSE_POSITIVE, CONFIDENCE_MIN, [], 0, 0)

    def _score_patterns(self, accumulator: ScoreAccumulator, pattern_matches: List[PatternMatch]) -> None:
        remaining = PATTERN_CAP
        for match in pattern_matches or []:
            points = min(PATTERN_WEIGHTS.get(match.significance, 0), remaining)
            if points <= 0:
                continue
            accumulator.add_true_positive('pattern', f'{match.name} pattern ({match.significance})', points)
            remaining -= points

    def _score_context(self, accumulator: ScoreAccumulator, incident: IncidentInput) -> None:
        context = incident.system_context.lower()

        if context:
            fp_rules = [rule for rule in FALSE_POSITIVE_CONTEXT_RULES if rule.matches(context)]
            if fp_rules:
                strongest = max(fp_rules, key=lambda rule: rule.points)
                accumulator.add_false_positive('context', strongest.description, strongest.points)

            for rule in TRUE_POSITIVE_CONTEXT_RULES:
                if rule.matches(context):
                    accumulator.add_true_positive('context', rule.description, rule.points)

        side_points = DECLARED_SEVERITY_WEIGHTS.get(incident.severity)
        if side_points:
            side, points = side_points
            description = f'Declared severity {incident.severity}'
            if side == 'tp':
                accumulator.add_true_positive('context', description, points)
            else:
                accumulator.add_false_positive('context', description, points)
