#!/usr/bin/env python3
"""
Anomaly Analysis Module for TriageEye
Independent behavioral, temporal, network and statistical scorers over
incident log text. Each scorer returns a DimensionScore whose factors feed
the classification engine.
"""

import re
import logging
import numpy as np
from collections import Counter
from typing import Dict, List, Optional

from .indicator_extractor import IndicatorExtractor
from .scoring_weights import (
    BEHAVIORAL_WEIGHTS, SUSPICIOUS_PROCESS_CHAINS, SENSITIVE_PROCESS_ACCESS,
    TEMPORAL_WEIGHTS, NETWORK_WEIGHTS, SUSPICIOUS_PORTS,
    STATISTICAL_WEIGHTS, STATISTICAL_MIN_WORDS, STATISTICAL_MIN_TOTAL, STATISTICAL_CAP
)

logger = logging.getLogger('triageeye.anomaly_analyzers')

COMMAND_EXECUTION_PATTERN = re.compile(
    r'cmd(\.exe)?\s+/c\b|powershell(\.exe)?\s|\b(ba)?sh\s+-c\b|invoke-command|start-process|\bexecve\b'
)
BASE64_PATTERN = re.compile(r'[A-Za-z0-9+/]{40,}={0,2}')
HEX_ONLY_PATTERN = re.compile(r'^[A-Fa-f0-9]+$')
HEX_STRING_PATTERN = re.compile(r'\b(?:0x)?[a-f0-9]{16,}\b', re.IGNORECASE)
TIMESTAMP_PATTERN = re.compile(r'(?<![\d:])([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?(?![\d:])')
# Explicit "port N" or an IPv4 address suffix; MAC octets and clock times are not ports
PORT_PATTERN = re.compile(r'(?:\bport[\s:=#]*|\b(?:\d{1,3}\.){3}\d{1,3}:)(\d{2,5})(?![\d:])', re.IGNORECASE)
WORD_PATTERN = re.compile(r'\w+')


class ScoreFactor:
    """One named contribution to a score"""

    def __init__(self, dimension: str, description: str, points: float):
        self.dimension = dimension
        self.description = description
        self.points = points

    def to_dict(self) -> Dict:
        return {
            'dimension': self.dimension,
            'description': self.description,
            'points': self.points
        }

    def __repr__(self) -> str:
        return f"ScoreFactor({self.dimension}, {self.description}, {self.points})"


class DimensionScore:
    """Result of one analyzer: factors plus the number of indicators behind them"""

    def __init__(self, dimension: str, factors: List[ScoreFactor] = None, indicator_count: int = 0):
        self.dimension = dimension
        self.factors = factors or []
        self.indicator_count = indicator_count

    @property
    def total(self) -> float:
        return sum(factor.points for factor in self.factors)

    def add(self, description: str, points: float) -> None:
        if points > 0:
            self.factors.append(ScoreFactor(self.dimension, description, points))

    def to_dict(self) -> Dict:
        return {
            'dimension': self.dimension,
            'total': self.total,
            'indicator_count': self.indicator_count,
            'factors': [factor.to_dict() for factor in self.factors]
        }


def _ai_list(ai_result: Optional[Dict], *keys: str) -> List[str]:
    """Collect non-empty indicator strings from an LLM result"""
    if not ai_result:
        return []
    values = []
    for key in keys:
        for item in ai_result.get(key) or []:
            if isinstance(item, str) and item.strip():
                values.append(item.strip())
    return values


class BehavioralAnalyzer:
    """Scores process-chain anomalies, command frequency and encoded payloads"""

    dimension = 'behavioral'

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.weights = BEHAVIORAL_WEIGHTS
        self.sensitive_access = re.compile(SENSITIVE_PROCESS_ACCESS)

    def analyze(self, text: str, ai_result: Optional[Dict] = None) -> DimensionScore:
        """
        Score behavioral anomalies

        Args:
            text: Raw log text
            ai_result: Optional structured LLM output

        Returns:
            DimensionScore for the behavioral dimension
        """
        score = DimensionScore(self.dimension)
        text = text or ''
        lowered = text.lower()
        w = self.weights

        # Process chains
        chain_points = 0
        for parent, child in SUSPICIOUS_PROCESS_CHAINS:
            parent_at = lowered.find(parent)
            if parent_at != -1 and lowered.find(child, parent_at + len(parent)) != -1:
                chain_points += w['process_chain_pair']
                score.indicator_count += 1
                self.logger.debug(f"Suspicious process chain {parent} -> {child}")
        if self.sensitive_access.search(lowered):
            chain_points += w['sensitive_process_access']
            score.indicator_count += 1
        score.add('Process chain anomalies', min(chain_points, w['process_chain_cap']))

        # Command execution frequency
        executions = len(COMMAND_EXECUTION_PATTERN.findall(lowered))
        if executions >= w['command_execution_min']:
            score.add(f'High command execution frequency ({executions} invocations)',
                      min(executions * w['command_execution_per'], w['command_execution_cap']))
            score.indicator_count += 1

        # Base64-like payloads; pure hex runs are hashes, not payloads
        payloads = [blob for blob in BASE64_PATTERN.findall(text)
                    if not HEX_ONLY_PATTERN.match(blob.rstrip('='))]
        if payloads:
            score.add(f'Encoded payload content ({len(payloads)} blobs)',
                      min(len(payloads) * w['base64_payload_per'], w['base64_payload_cap']))
            score.indicator_count += len(payloads)

        ai_indicators = _ai_list(ai_result, 'behavioral_indicators', 'process_indicators')
        if ai_indicators:
            score.add(f'AI-detected behavioral indicators ({len(ai_indicators)})',
                      min(len(ai_indicators) * w['ai_indicator_per'], w['ai_indicator_cap']))
            score.indicator_count += len(ai_indicators)

        return score


class TemporalAnalyzer:
    """Scores off-hours activity and dense timestamp clusters"""

    dimension = 'temporal'

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.weights = TEMPORAL_WEIGHTS

    def extract_hours(self, text: str) -> List[int]:
        return [int(match.group(1)) for match in TIMESTAMP_PATTERN.finditer(text or '')]

    def analyze(self, text: str, ai_result: Optional[Dict] = None) -> DimensionScore:
        """
        Score temporal anomalies

        The strongest off-hours window applies once; more than
        dense_cluster_min timestamps adds a fixed bonus.
        """
        score = DimensionScore(self.dimension)
        hours = self.extract_hours(text)
        w = self.weights

        night_start, night_end = w['late_night_hours']
        evening_start, evening_end = w['evening_hours']

        if any(night_start <= hour <= night_end for hour in hours):
            score.add('Activity during late-night hours (00:00-05:59)', w['late_night'])
            score.indicator_count += 1
        elif any(evening_start <= hour <= evening_end for hour in hours):
            score.add('Activity during evening hours (22:00-23:59)', w['evening'])
            score.indicator_count += 1

        if len(hours) > w['dense_cluster_min']:
            score.add(f'Dense timestamp cluster ({len(hours)} events)', w['dense_cluster_bonus'])
            score.indicator_count += 1

        return score


class NetworkAnalyzer:
    """Scores suspicious ports, external addresses and AI network findings"""

    dimension = 'network'

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.weights = NETWORK_WEIGHTS
        self.extractor = IndicatorExtractor()
        self.suspicious_ports = set(self.config.get('suspicious_ports', SUSPICIOUS_PORTS))

    def extract_ports(self, text: str) -> List[int]:
        ports = []
        for match in PORT_PATTERN.finditer(text or ''):
            port = int(match.group(1))
            if 0 < port <= 65535 and port not in ports:
                ports.append(port)
        return ports

    def analyze(self, text: str, ai_result: Optional[Dict] = None) -> DimensionScore:
        """Score network anomalies"""
        score = DimensionScore(self.dimension)
        w = self.weights

        suspicious = [port for port in self.extract_ports(text) if port in self.suspicious_ports]
        if suspicious:
            score.add(f"Suspicious ports referenced ({', '.join(str(p) for p in suspicious)})",
                      min(len(suspicious) * w['suspicious_port_per'], w['suspicious_port_cap']))
            score.indicator_count += len(suspicious)

        external_ips = self.extractor.extract_external_ips(text)
        if external_ips:
            score.add(f'External IP addresses ({len(external_ips)})',
                      min(len(external_ips) * w['external_ip_per'], w['external_ip_cap']))
            score.indicator_count += len(external_ips)

        ai_indicators = _ai_list(ai_result, 'network_indicators')
        if ai_indicators:
            score.add(f'AI-detected network indicators ({len(ai_indicators)})',
                      min(len(ai_indicators) * w['ai_indicator_per'], w['ai_indicator_cap']))
            score.indicator_count += len(ai_indicators)

        return score


class StatisticalAnalyzer:
    """
    Scores statistical oddities of the raw payload.

    The combined score only counts when it exceeds STATISTICAL_MIN_TOTAL.
    """

    dimension = 'statistical'

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.weights = STATISTICAL_WEIGHTS

    def measure(self, text: str) -> Dict[str, float]:
        """Raw statistics used by the scorer"""
        text = text or ''
        length = len(text)
        words = WORD_PATTERN.findall(text.lower())

        non_space = [c for c in text if not c.isspace()]
        special = [c for c in non_space if not c.isalnum()]

        return {
            'special_char_ratio': len(special) / len(non_space) if non_space else 0.0,
            'word_repetition_ratio': (1 - len(set(words)) / len(words)) if len(words) >= STATISTICAL_MIN_WORDS else 0.0,
            'payload_size': float(length),
            'hex_density': len(HEX_STRING_PATTERN.findall(text)) / len(words) if words else 0.0,
            'char_entropy': self._calculate_entropy(text)
        }

    def analyze(self, text: str, ai_result: Optional[Dict] = None) -> DimensionScore:
        score = DimensionScore(self.dimension)
        stats = self.measure(text)

        labels = {
            'special_char_ratio': 'High special-character density',
            'word_repetition_ratio': 'High word repetition',
            'payload_size': 'Oversized payload',
            'hex_density': 'High hex-string density',
            'char_entropy': 'High character entropy'
        }

        candidate = DimensionScore(self.dimension)
        for name, (threshold, points) in self.weights.items():
            if stats[name] > threshold:
                candidate.add(f"{labels[name]} ({stats[name]:.2f})", points)
                candidate.indicator_count += 1

        if candidate.total > STATISTICAL_MIN_TOTAL:
            # scale factors down proportionally when the cap applies
            ratio = min(1.0, STATISTICAL_CAP / candidate.total)
            for factor in candidate.factors:
                score.add(factor.description, round(factor.points * ratio, 2))
            score.indicator_count = candidate.indicator_count

        return score

    def _calculate_entropy(self, string: str) -> float:
        """Calculate Shannon entropy of a string"""
        if not string:
            return 0.0

        freq = Counter(string)
        probs = np.array([count / len(string) for count in freq.values()])

        return float(-np.sum(probs * np.log2(probs)))
