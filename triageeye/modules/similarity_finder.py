#!/usr/bin/env python3
"""
Similar Incident Finder for TriageEye
Compares the keyword set of an incident with prior incidents using Jaccard
similarity and reports the attack categories they share.
"""

import re
import logging
from collections import Counter
from typing import Dict, List, Set

logger = logging.getLogger('triageeye.similarity_finder')

TOKEN_PATTERN = re.compile(r'[\w\-.]+')

STOPWORDS = {
    'about', 'after', 'also', 'been', 'before', 'from', 'have', 'into', 'more',
    'only', 'over', 'some', 'than', 'that', 'then', 'there', 'their', 'these',
    'they', 'this', 'those', 'were', 'what', 'when', 'where', 'which', 'while',
    'will', 'with', 'would', 'your'
}

# Category name -> lowercase terms; a category applies when any term appears
PATTERN_CATEGORIES = [
    ('Credential Access', ['lsass', 'mimikatz', 'credential', 'sekurlsa', 'password', 'ntds', 'hashdump']),
    ('PowerShell Execution', ['powershell', 'pwsh', '-enc', 'invoke-expression', 'iex(']),
    ('Registry Modification', ['reg add', 'registry', 'hklm', 'hkcu', 'regedit', 'currentversion\\run']),
    ('Scheduled Tasks', ['schtasks', 'scheduled task', 'crontab', 'at.exe']),
    ('Network Activity', ['connection', 'port ', 'tcp', 'udp', 'dns', 'http', 'netstat', 'socket']),
    ('Process Activity', ['process', 'pid', 'spawn', 'cmd.exe', 'parent']),
    ('File Operations', ['file', 'download', 'upload', 'copy', 'delete', 'rename', 'write']),
    ('Privilege Activity', ['admin', 'privilege', 'elevat', 'sudo', 'runas', 'uac', 'token']),
]


def incident_text(incident: Dict) -> str:
    """Searchable text of a stored incident record"""
    parts = [
        incident.get('title'),
        incident.get('log_data') or incident.get('logData'),
        incident.get('additional_logs') or incident.get('additionalLogs'),
    ]
    return '\n'.join(str(part) for part in parts if part)


def extract_keywords(text: str, limit: int = 20) -> Set[str]:
    """
    Most frequent keywords of a document

    Args:
        text: Document text
        limit: Number of keywords to keep

    Returns:
        Set of lowercase tokens longer than three characters
    """
    tokens = []
    for token in TOKEN_PATTERN.findall((text or '').lower()):
        token = token.strip('.')
        if len(token) > 3 and token not in STOPWORDS:
            tokens.append(token)

    return {token for token, _ in Counter(tokens).most_common(limit)}


def jaccard_similarity(first: Set[str], second: Set[str]) -> float:
    if not first or not second:
        return 0.0
    return len(first & second) / len(first | second)


def pattern_categories(text: str) -> List[str]:
    lowered = (text or '').lower()
    return [name for name, terms in PATTERN_CATEGORIES if any(term in lowered for term in terms)]


class SimilarityFinder:
    """Finds prior incidents related to the current one"""

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.threshold = self.config.get('threshold', 0.3)
        self.max_results = self.config.get('max_results', 5)
        self.keyword_limit = self.config.get('keyword_limit', 20)

    def find_similar(self, text: str, prior_incidents: List[Dict]) -> List[Dict]:
        """
        Rank prior incidents by keyword similarity

        Args:
            text: Current incident text
            prior_incidents: Stored incident records

        Returns:
            Matches at or above the threshold, most similar first
        """
        matches = []

        try:
            current_keywords = extract_keywords(text, self.keyword_limit)
            current_categories = pattern_categories(text)

            for prior in prior_incidents or []:
                prior_text = incident_text(prior)
                prior_keywords = extract_keywords(prior_text, self.keyword_limit)
                similarity = jaccard_similarity(current_keywords, prior_keywords)

                if similarity < self.threshold:
                    continue

                prior_categories = pattern_categories(prior_text)
                matches.append({
                    'incident_id': prior.get('incident_id') or prior.get('id'),
                    'title': prior.get('title', ''),
                    'similarity': round(similarity, 3),
                    'shared_categories': [name for name in current_categories if name in prior_categories],
                    'shared_keywords': sorted(current_keywords & prior_keywords),
                    'classification': prior.get('classification'),
                    'severity': prior.get('severity')
                })

        except Exception as e:
            self.logger.error(f"Error finding similar incidents: {e}")

        matches.sort(key=lambda match: match['similarity'], reverse=True)
        return matches[:self.max_results]
