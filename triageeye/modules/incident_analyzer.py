#!/usr/bin/env python3
"""
Incident Analysis Module for TriageEye
Runs the full triage pipeline for one incident: indicator extraction,
pattern and ATT&CK mapping, threat intelligence correlation, scoring,
severity adjustment, entity mapping and similar-incident search.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from .classification_engine import ClassificationEngine, ClassificationResult
from .entity_mapper import EntityMapper
from .incident import IncidentInput
from .indicator_extractor import IndicatorExtractor
from .mitre_mapper import MitreMapper, MitreMapping, parse_technique_reference, tactic_for_technique
from .pattern_matcher import PatternMatcher, PatternMatch
from .severity_adjuster import SeverityAdjuster
from .similarity_finder import SimilarityFinder
from .threat_correlator import Indicator, ThreatIntelCorrelator
from ..utils.llm_client import LLMAnalysisClient, generate_failsafe_analysis
from ..utils.threat_intelligence import ThreatIntelligenceManager, ThreatReport

logger = logging.getLogger('triageeye.incident_analyzer')

# Pattern name -> (priority, action, description)
PATTERN_RECOMMENDATIONS = {
    'Credential Dumping': ('critical', 'reset_credentials',
                           'Reset credentials for accounts active on affected hosts and review privileged sessions'),
    'Obfuscated Scripting': ('high', 'forensic_analysis',
                             'Decode and analyze the obfuscated script content on affected systems'),
    'Recovery Inhibition': ('critical', 'backup_restore',
                            'Protect offline backups and prepare for restoration'),
    'Persistence Mechanism': ('medium', 'remove_persistence',
                              'Audit scheduled tasks, services and autorun keys and remove unauthorized entries'),
    'Lateral Movement': ('high', 'segment_network',
                         'Restrict remote administration between hosts and review lateral connections'),
    'Reconnaissance': ('medium', 'review_access',
                       'Review the account performing discovery commands for unauthorized use'),
    'Authentication Failure': ('medium', 'enforce_mfa',
                               'Lock out or challenge the targeted accounts and enforce multi-factor authentication'),
    'Command and Control': ('high', 'block_c2',
                            'Block the remote endpoints at the perimeter and inspect outbound traffic'),
}


class IncidentAnalyzer:
    """
    Incident triage pipeline.

    External collaborators (threat intelligence, LLM service, history) are
    optional; their failures degrade the result instead of aborting it.
    """

    def __init__(self,
                 config: Dict = None,
                 threat_intel: Optional[ThreatIntelligenceManager] = None,
                 llm_client: Optional[LLMAnalysisClient] = None,
                 history=None):
        """
        Initialize the analyzer

        Args:
            config: Full configuration dictionary
            threat_intel: Optional threat intelligence manager
            llm_client: Optional LLM analysis client
            history: Optional IncidentHistory used for similarity search
        """
        self.config = config or {}
        self.logger = logger

        analysis_config = self.config.get('analysis', {})
        self.extractor = IndicatorExtractor(analysis_config)
        self.pattern_matcher = PatternMatcher(analysis_config)
        self.mitre_mapper = MitreMapper(analysis_config)
        self.correlator = ThreatIntelCorrelator(analysis_config)
        self.engine = ClassificationEngine(self.config.get('scoring', {}))
        self.severity_adjuster = SeverityAdjuster(self.config.get('severity_adjustment', {}))
        self.entity_mapper = EntityMapper(analysis_config)
        self.similarity_finder = SimilarityFinder(self.config.get('similarity', {}))

        self.threat_intel = threat_intel
        self.llm_client = llm_client
        self.history = history
        self.llm_timeout = self.config.get('llm', {}).get('timeout', 180)

    def analyze(self,
                incident: Union[IncidentInput, Dict],
                threat_report: Optional[ThreatReport] = None,
                history: Optional[List[Dict]] = None) -> Dict:
        """
        Analyze one incident

        Args:
            incident: IncidentInput, or a dict validated through IncidentInput.from_dict
            threat_report: Optional threat report; built from the configured
                providers when omitted
            history: Optional prior incident records, overriding the history store

        Returns:
            JSON-serializable analysis dictionary

        Raises:
            IncidentValidationError: if a dict payload fails validation
        """
        if isinstance(incident, dict):
            incident = IncidentInput.from_dict(incident)

        text = incident.analysis_text

        if threat_report is None:
            threat_report = self._fetch_threat_report(text)

        ai_result, degraded = self._run_llm(incident)
        scoring_ai = None if degraded else ai_result

        extracted = self.extractor.extract(text)
        pattern_matches = self.pattern_matcher.match(text)
        mitre_mapping = self.mitre_mapper.map(text)
        if scoring_ai:
            mitre_mapping = self._merge_techniques(mitre_mapping, scoring_ai.get('mitre_techniques', []))

        indicators = self.correlator.correlate(extracted, threat_report)

        analyzer_scores = self.engine.run_analyzers(text, scoring_ai)
        classification = self.engine.classify(incident, pattern_matches, threat_report, scoring_ai, analyzer_scores)

        adjustment = self.severity_adjuster.adjust(
            incident.severity, classification, pattern_matches, mitre_mapping,
            len(indicators), analyzer_scores, threat_report
        )

        entity_graph = self.entity_mapper.build(text, extracted, indicators)

        if history is None:
            history = self.history.all() if self.history is not None else []
        similar_incidents = self.similarity_finder.find_similar(text, history)

        recommendations = self.generate_recommendations(
            classification, pattern_matches, mitre_mapping, indicators, scoring_ai
        )

        self.logger.info(f"Incident '{incident.title or incident.incident_id}' analyzed: "
                         f"{classification.classification} ({classification.confidence}%), "
                         f"severity {adjustment.adjusted_severity}")

        return {
            'incident': incident.to_dict(),
            'classification': classification.classification,
            'confidence': classification.confidence,
            'reasons': list(classification.reasons),
            'severity': incident.severity,
            'adjusted_severity': adjustment.adjusted_severity,
            'severity_adjustment': adjustment.to_dict(),
            'scores': {
                'true_positive': classification.true_positive_score,
                'false_positive': classification.false_positive_score,
                'breakdown': classification.breakdown,
                'dimensions': {name: score.to_dict() for name, score in analyzer_scores.items()}
            },
            'mitre_mapping': mitre_mapping.to_dict(),
            'iocs': [indicator.to_dict() for indicator in indicators],
            'entity_graph': entity_graph.to_dict(),
            'pattern_matches': [match.to_dict() for match in pattern_matches],
            'recommendations': recommendations,
            'similar_incidents': similar_incidents,
            'threat_report': threat_report.to_dict() if threat_report else None,
            'ai_analysis': ai_result,
            'degraded': degraded,
            'failsafe': bool(ai_result and ai_result.get('failsafe')),
            'timestamp': datetime.now().isoformat()
        }

    def _fetch_threat_report(self, text: str) -> Optional[ThreatReport]:
        if self.threat_intel is None:
            return None
        try:
            return self.threat_intel.build_report(text)
        except Exception as e:
            self.logger.warning(f"Threat intelligence lookup failed, using heuristic estimates: {e}")
            return None

    def _run_llm(self, incident: IncidentInput) -> Tuple[Optional[Dict], bool]:
        """
        Call the LLM service bounded by the configured timeout

        Returns:
            (analysis, degraded); the failsafe analysis with degraded=True on
            any error or timeout, (None, False) when no client is configured
        """
        if self.llm_client is None:
            return None, False

        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.llm_client.analyze, incident)
            return future.result(timeout=self.llm_timeout), False
        except FutureTimeoutError:
            self.logger.error(f"LLM analysis timed out after {self.llm_timeout}s, using heuristic analysis")
            return generate_failsafe_analysis('AI analysis timed out'), True
        except Exception as e:
            self.logger.error(f"LLM analysis failed, using heuristic analysis: {e}")
            return generate_failsafe_analysis(), True
        finally:
            executor.shutdown(wait=False)

    def _merge_techniques(self, mapping: MitreMapping, references: List[str]) -> MitreMapping:
        parsed = [parse_technique_reference(reference) for reference in references or []]
        parsed = [entry for entry in parsed if entry]
        if not parsed:
            return mapping

        if mapping.is_default:
            mapping = MitreMapping()
        for technique_id, technique_name in parsed:
            mapping.add_technique(technique_id, technique_name, tactic_for_technique(technique_id))
        return mapping

    def generate_recommendations(self,
                                 classification: ClassificationResult,
                                 pattern_matches: List[PatternMatch],
                                 mitre_mapping: MitreMapping,
                                 indicators: List[Indicator],
                                 ai_result: Optional[Dict] = None) -> List[Dict]:
        """Generate response recommendations for the incident"""
        recommendations = []

        if classification.is_true_positive and classification.confidence >= 85:
            recommendations.append({
                'priority': 'critical',
                'action': 'isolate_system',
                'description': 'Immediately isolate affected systems from network',
                'reason': f'High-confidence true positive ({classification.confidence}%)'
            })

        for match in pattern_matches:
            if match.name in PATTERN_RECOMMENDATIONS:
                priority, action, description = PATTERN_RECOMMENDATIONS[match.name]
                recommendations.append({
                    'priority': priority,
                    'action': action,
                    'description': description,
                    'reason': f'{match.name} pattern detected ({match.significance} significance)'
                })

        malicious = [indicator for indicator in indicators if indicator.is_malicious]
        if malicious:
            recommendations.append({
                'priority': 'high',
                'action': 'block_indicators',
                'description': f"Block known malicious indicators: {', '.join(i.value for i in malicious[:5])}",
                'reason': f'{len(malicious)} indicators flagged malicious by threat intelligence'
            })

        if classification.is_true_positive and len(mitre_mapping.tactics) >= 4:
            recommendations.append({
                'priority': 'high',
                'action': 'incident_response',
                'description': 'Activate incident response team for coordinated threat response',
                'reason': f'Multi-stage activity across {len(mitre_mapping.tactics)} ATT&CK tactics'
            })

        if not classification.is_true_positive:
            recommendations.append({
                'priority': 'low',
                'action': 'tune_detection',
                'description': 'Review the triggering detection rule and document the benign cause',
                'reason': 'Activity classified as a likely false positive'
            })

        for item in (ai_result or {}).get('recommendations', []):
            recommendations.append({
                'priority': 'medium',
                'action': 'ai_recommendation',
                'description': item,
                'reason': 'AI analysis recommendation'
            })

        seen = set()
        unique = []
        for recommendation in recommendations:
            key = (recommendation['action'], recommendation['description'])
            if key not in seen:
                seen.add(key)
                unique.append(recommendation)
        return unique
