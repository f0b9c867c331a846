#!/usr/bin/env python3
"""
Severity Adjustment Module for TriageEye
Optional second pass that re-derives incident severity from the signals
gathered during classification.
"""

import logging
from typing import Dict, List, Optional

from .anomaly_analyzers import DimensionScore
from .classification_engine import ClassificationResult
from .incident import Severity
from .mitre_mapper import MitreMapping
from .pattern_matcher import PatternMatch
from ..utils.threat_intelligence import ThreatReport

logger = logging.getLogger('triageeye.severity_adjuster')

# (points per unit, cap) for each sub-score
INDICATOR_POINTS = (4, 20)
PATTERN_POINTS = {'High': 10, 'Medium': 5, 'Low': 1}
PATTERN_CAP = 25
TECHNIQUE_POINTS = (5, 25)
CONFIDENCE_FACTOR = (0.2, 20)
IOC_POINTS = (2, 10)
RISK_FACTOR = (0.15, 15)

SEVERITY_BUCKETS = [
    (75, Severity.CRITICAL),
    (55, Severity.HIGH),
    (35, Severity.MEDIUM),
    (15, Severity.LOW),
]


class SeverityAdjustment:
    """Outcome of a severity re-derivation"""

    def __init__(self,
                 declared_severity: str,
                 adjusted_severity: str,
                 score: float = 0,
                 sub_scores: Dict[str, float] = None,
                 enabled: bool = True):
        self.declared_severity = declared_severity
        self.adjusted_severity = adjusted_severity
        self.score = score
        self.sub_scores = sub_scores or {}
        self.enabled = enabled

    @property
    def changed(self) -> bool:
        return self.adjusted_severity != self.declared_severity

    def to_dict(self) -> Dict:
        return {
            'enabled': self.enabled,
            'declared_severity': self.declared_severity,
            'adjusted_severity': self.adjusted_severity,
            'changed': self.changed,
            'score': self.score,
            'sub_scores': self.sub_scores
        }


def severity_from_score(score: float) -> str:
    """Map a 0-100 severity score to a severity bucket"""
    for minimum, severity in SEVERITY_BUCKETS:
        if score >= minimum:
            return severity
    return Severity.INFORMATIONAL


class SeverityAdjuster:
    """
    Recomputes severity from six independently capped sub-scores.

    Disabled unless ``enabled`` is set in its config section; when disabled
    the declared severity is returned unchanged.
    """

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.enabled = bool(self.config.get('enabled', False))

    def adjust(self,
               declared_severity: str,
               classification: ClassificationResult,
               pattern_matches: List[PatternMatch],
               mitre_mapping: MitreMapping,
               ioc_count: int,
               analyzer_scores: Optional[Dict[str, DimensionScore]] = None,
               threat_report: Optional[ThreatReport] = None) -> SeverityAdjustment:
        """
        Re-derive the incident severity

        Args:
            declared_severity: Severity supplied with the incident
            classification: Result of the classification engine
            pattern_matches: Pattern matcher output
            mitre_mapping: MITRE mapping for the incident
            ioc_count: Number of correlated indicators
            analyzer_scores: Anomaly analyzer results keyed by dimension
            threat_report: Optional threat intelligence report

        Returns:
            SeverityAdjustment; the original declared value is always kept
        """
        if not self.enabled:
            return SeverityAdjustment(declared_severity, declared_severity, enabled=False)

        try:
            sub_scores = self.calculate_sub_scores(
                classification, pattern_matches, mitre_mapping, ioc_count, analyzer_scores, threat_report
            )
            score = round(min(sum(sub_scores.values()), 100), 2)
            adjusted = severity_from_score(score)

            if adjusted != declared_severity:
                self.logger.info(f"Severity adjusted from {declared_severity} to {adjusted} (score {score})")

            return SeverityAdjustment(declared_severity, adjusted, score, sub_scores)

        except Exception as e:
            self.logger.error(f"Error adjusting severity: {e}")
            return SeverityAdjustment(declared_severity, declared_severity)

    def calculate_sub_scores(self,
                             classification: ClassificationResult,
                             pattern_matches: List[PatternMatch],
                             mitre_mapping: MitreMapping,
                             ioc_count: int,
                             analyzer_scores: Optional[Dict[str, DimensionScore]] = None,
                             threat_report: Optional[ThreatReport] = None) -> Dict[str, float]:
        analyzer_scores = analyzer_scores or {}

        indicator_count = sum(
            analyzer_scores[dimension].indicator_count
            for dimension in ('behavioral', 'network') if dimension in analyzer_scores
        )
        per, cap = INDICATOR_POINTS
        indicators = min(indicator_count * per, cap)

        patterns = min(sum(PATTERN_POINTS.get(match.significance, 0) for match in pattern_matches or []),
                       PATTERN_CAP)

        per, cap = TECHNIQUE_POINTS
        technique_count = 0 if mitre_mapping.is_default else len(mitre_mapping.techniques)
        techniques = min(technique_count * per, cap)

        factor, cap = CONFIDENCE_FACTOR
        confidence = min(classification.confidence * factor, cap) if classification.is_true_positive else 0

        per, cap = IOC_POINTS
        iocs = min(ioc_count * per, cap)

        factor, cap = RISK_FACTOR
        risk = min(threat_report.risk_score * factor, cap) if threat_report else 0

        return {
            'indicators': indicators,
            'patterns': patterns,
            'techniques': techniques,
            'confidence': round(confidence, 2),
            'iocs': iocs,
            'threat_intel': round(risk, 2)
        }
