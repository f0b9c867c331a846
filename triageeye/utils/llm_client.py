#!/usr/bin/env python3
"""
LLM Analysis Client for TriageEye
Sends incident data to an external language-model analysis service and
parses its sectioned response into a structured result.
"""

import re
import logging
import requests
from typing import Dict, List, Optional

logger = logging.getLogger('triageeye.llm_client')

SECTION_NAMES = [
    'CLASSIFICATION',
    'CONFIDENCE',
    'MITRE TECHNIQUES',
    'BEHAVIORAL INDICATORS',
    'NETWORK INDICATORS',
    'PROCESS INDICATORS',
    'KEY FINDINGS',
    'RECOMMENDATIONS',
]

SECTION_PATTERN = re.compile(r'^\s*(' + '|'.join(SECTION_NAMES) + r')\s*:\s*(.*)$', re.IGNORECASE)
BULLET_PATTERN = re.compile(r'^\s*(?:[-•*#]|\d+[.)])\s*')
EMPHASIS_PATTERN = re.compile(r'\*{1,2}(.*?)\*{1,2}')

PROMPT_TEMPLATE = """You are a security operations analyst. Analyze the following incident.

TITLE: {title}
SEVERITY: {severity}
SYSTEM CONTEXT: {system_context}

LOGS:
{logs}

Respond using exactly these sections:
CLASSIFICATION: [TRUE POSITIVE or FALSE POSITIVE]
CONFIDENCE: [0-100]
MITRE TECHNIQUES: [one technique per line, e.g. T1059.001 PowerShell]
BEHAVIORAL INDICATORS: [one per line]
NETWORK INDICATORS: [one per line]
PROCESS INDICATORS: [one per line]
KEY FINDINGS: [3-5 items]
RECOMMENDATIONS: [3-4 actionable items]"""


class LLMAnalysisError(Exception):
    """Raised when the analysis service cannot produce a usable result"""


def generate_failsafe_analysis(reason: str = 'AI service temporarily unavailable') -> Dict:
    """
    Complete analysis result used when the LLM path fails

    Returns:
        Result with classification "unknown" and confidence 50
    """
    return {
        'classification': 'unknown',
        'confidence': 50,
        'mitre_techniques': [],
        'behavioral_indicators': [],
        'network_indicators': [],
        'process_indicators': [],
        'key_findings': ['Incident requires manual analysis', reason],
        'recommendations': ['Manually review incident logs and indicators',
                            'Retry analysis when the AI service is available'],
        'failsafe': True
    }


def _clean_line(line: str) -> str:
    line = BULLET_PATTERN.sub('', line.strip())
    return EMPHASIS_PATTERN.sub(r'\1', line).strip()


def parse_analysis(text: str) -> Dict:
    """
    Parse a sectioned analysis response

    Args:
        text: Raw response text

    Returns:
        Structured result dictionary

    Raises:
        LLMAnalysisError: if the response has no recognizable sections
    """
    sections: Dict[str, List[str]] = {}
    current = None

    for raw_line in (text or '').splitlines():
        header = SECTION_PATTERN.match(raw_line)
        if header:
            current = header.group(1).upper()
            sections.setdefault(current, [])
            inline = _clean_line(header.group(2))
            if inline:
                sections[current].append(inline)
            continue

        if current:
            line = _clean_line(raw_line)
            if line:
                sections[current].append(line)

    if not sections:
        raise LLMAnalysisError("Response contained no analysis sections")

    classification_text = ' '.join(sections.get('CLASSIFICATION', [])).lower()
    if 'false' in classification_text:
        classification = 'false-positive'
    elif 'true' in classification_text:
        classification = 'true-positive'
    else:
        classification = 'unknown'

    confidence_match = re.search(r'\d+', ' '.join(sections.get('CONFIDENCE', [])))
    confidence = min(100, int(confidence_match.group(0))) if confidence_match else 75

    def items(name: str, limit: int) -> List[str]:
        values = [value for value in sections.get(name, []) if value.lower() not in ('none', 'n/a')]
        return values[:limit]

    return {
        'classification': classification,
        'confidence': confidence,
        'mitre_techniques': items('MITRE TECHNIQUES', 10),
        'behavioral_indicators': items('BEHAVIORAL INDICATORS', 10),
        'network_indicators': items('NETWORK INDICATORS', 10),
        'process_indicators': items('PROCESS INDICATORS', 10),
        'key_findings': items('KEY FINDINGS', 5) or ['Analysis completed'],
        'recommendations': items('RECOMMENDATIONS', 4),
        'failsafe': False
    }


class LLMAnalysisClient:
    """HTTP client for the language-model analysis service"""

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger

        self.endpoint = self.config.get('endpoint', '')
        self.api_key = self.config.get('api_key', '')
        self.model = self.config.get('model', '')
        self.timeout = self.config.get('timeout', 180)
        self.max_log_chars = self.config.get('max_log_chars', 20000)

    @property
    def enabled(self) -> bool:
        return bool(self.config.get('enabled', True) and self.endpoint)

    def build_prompt(self, incident) -> str:
        logs = incident.log_data
        if incident.additional_logs:
            logs = f"{logs}\n{incident.additional_logs}"
        return PROMPT_TEMPLATE.format(
            title=incident.title or 'Untitled incident',
            severity=incident.severity,
            system_context=incident.system_context or 'Not provided',
            logs=logs[:self.max_log_chars]
        )

    def analyze(self, incident) -> Dict:
        """
        Request an analysis for an incident

        Args:
            incident: IncidentInput to analyze

        Returns:
            Parsed analysis dictionary

        Raises:
            LLMAnalysisError: on any transport or parsing failure
        """
        if not self.enabled:
            raise LLMAnalysisError("LLM analysis service not configured")

        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"

        payload = {'prompt': self.build_prompt(incident)}
        if self.model:
            payload['model'] = self.model

        try:
            response = requests.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise LLMAnalysisError(f"LLM request failed: {e}") from e

        text = self._response_text(response)
        result = parse_analysis(text)
        self.logger.info(f"LLM analysis completed: {result['classification']} ({result['confidence']}%)")
        return result

    def _response_text(self, response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text

        if isinstance(data, dict):
            for key in ('text', 'output', 'content', 'response'):
                if isinstance(data.get(key), str):
                    return data[key]
        raise LLMAnalysisError("Unexpected LLM response format")
