#!/usr/bin/env python3
"""
Log Pattern Matching Module for TriageEye
Tags log text against a fixed catalogue of named attack patterns
"""

import re
import logging
from typing import Dict, List, Tuple

logger = logging.getLogger('triageeye.pattern_matcher')


class Significance:
    """Pattern significance tiers"""
    HIGH = 'High'
    MEDIUM = 'Medium'
    LOW = 'Low'

    @staticmethod
    def get_numeric_value(significance: str) -> int:
        """Get numeric value for significance comparison"""
        significance_map = {
            Significance.HIGH: 3,
            Significance.MEDIUM: 2,
            Significance.LOW: 1
        }
        return significance_map.get(significance, 0)


class PatternMatch:
    """A catalogue pattern that fired for one incident"""

    def __init__(self, name: str, significance: str, description: str, pattern_id: str = ''):
        self.name = name
        self.significance = significance
        self.description = description
        self.pattern_id = pattern_id

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'significance': self.significance,
            'description': self.description,
            'pattern_id': self.pattern_id
        }

    def __eq__(self, other):
        if not isinstance(other, PatternMatch):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"PatternMatch({self.name}, {self.significance})"


class LogPattern:
    """Represents a known log pattern"""

    def __init__(self, pattern_id: str, name: str, significance: str,
                 description: str, indicators: List[Dict]):
        self.pattern_id = pattern_id
        self.name = name
        self.significance = significance
        self.description = description
        self.indicators = indicators

    def match(self, text: str) -> Tuple[bool, List[str]]:
        """
        Check if lowercase text matches this pattern

        Returns:
            Tuple of (matches, list of indicator values that matched)
        """
        matched = [indicator.get('label', str(indicator.get('value')))
                   for indicator in self.indicators
                   if self._check_indicator(indicator, text)]
        return bool(matched), matched

    def _check_indicator(self, indicator: Dict, text: str) -> bool:
        """Check if a single indicator matches"""
        indicator_type = indicator.get('type')
        value = indicator.get('value')

        if indicator_type == 'contains':
            return value in text
        elif indicator_type == 'regex':
            return bool(re.search(value, text))
        elif indicator_type == 'all_of':
            return all(term in text for term in value)
        elif indicator_type == 'any_of':
            return any(term in text for term in value)

        return False

    def to_match(self) -> PatternMatch:
        return PatternMatch(self.name, self.significance, self.description, self.pattern_id)


GENERAL_ACTIVITY = PatternMatch(
    name='General System Activity',
    significance=Significance.LOW,
    description='No known attack pattern identified; routine system activity',
    pattern_id='GEN000'
)


def _contains(value: str) -> Dict:
    return {'type': 'contains', 'value': value}


def _regex(value: str, label: str) -> Dict:
    return {'type': 'regex', 'value': value, 'label': label}


PATTERN_CATALOGUE = [
    LogPattern(
        pattern_id='CRED001',
        name='Credential Dumping',
        significance=Significance.HIGH,
        description='Access to credential stores or use of credential theft tooling',
        indicators=[
            _contains('mimikatz'),
            _contains('sekurlsa'),
            _regex(r'lsass(\.exe)?[^\n]*(dump|memory)|(dump|memory)[^\n]*lsass', 'lsass memory access'),
            _contains('procdump'),
            _contains('ntds.dit'),
            _contains('hashdump'),
            _regex(r'reg(\.exe)?\s+save\s+hklm\\(sam|security|system)', 'registry hive export'),
        ]
    ),
    LogPattern(
        pattern_id='SCRIPT001',
        name='Obfuscated Scripting',
        significance=Significance.HIGH,
        description='Encoded or obfuscated script execution',
        indicators=[
            _regex(r'powershell[^\n]*\s-(e|en|enc|encodedcommand)\b', 'encoded powershell'),
            _contains('frombase64string'),
            _contains('invoke-expression'),
            _contains('iex('),
            _contains('-windowstyle hidden'),
            _contains('downloadstring'),
        ]
    ),
    LogPattern(
        pattern_id='IMPACT001',
        name='Recovery Inhibition',
        significance=Significance.HIGH,
        description='Deletion of backups or disabling of system recovery',
        indicators=[
            _contains('delete shadows'),
            _contains('shadowcopy delete'),
            _contains('wbadmin delete catalog'),
            _regex(r'bcdedit[^\n]*recoveryenabled\s+no', 'recovery disabled'),
        ]
    ),
    LogPattern(
        pattern_id='PERSIST001',
        name='Persistence Mechanism',
        significance=Significance.MEDIUM,
        description='Creation of autostart entries, services or scheduled tasks',
        indicators=[
            _contains('schtasks /create'),
            _contains('currentversion\\run'),
            _contains('new-service'),
            _contains('sc create'),
            _contains('startup folder'),
            _contains('crontab'),
            _contains('new-scheduledtask'),
        ]
    ),
    LogPattern(
        pattern_id='LATERAL001',
        name='Lateral Movement',
        significance=Significance.MEDIUM,
        description='Remote execution or remote administration between hosts',
        indicators=[
            _contains('psexec'),
            _contains('wmic /node'),
            _contains('winrm'),
            _contains('enter-pssession'),
            _contains('admin$'),
            _contains('remote desktop'),
        ]
    ),
    LogPattern(
        pattern_id='RECON001',
        name='Reconnaissance',
        significance=Significance.MEDIUM,
        description='Host, account or network discovery commands',
        indicators=[
            _contains('whoami'),
            _contains('net user'),
            _contains('net group'),
            _contains('nltest'),
            _contains('ipconfig /all'),
            _contains('systeminfo'),
            _contains('nmap'),
            _contains('port scan'),
            _contains('net view'),
            _contains('arp -a'),
        ]
    ),
    LogPattern(
        pattern_id='AUTH001',
        name='Authentication Failure',
        significance=Significance.MEDIUM,
        description='Repeated or failed authentication attempts',
        indicators=[
            _contains('failed password'),
            _contains('failed login'),
            _contains('authentication failure'),
            _contains('logon failure'),
            _contains('brute force'),
            _regex(r'event\s*id[:\s]*4625', 'event 4625'),
        ]
    ),
    LogPattern(
        pattern_id='C2001',
        name='Command and Control',
        significance=Significance.MEDIUM,
        description='Beaconing, reverse shells or tool transfer from remote hosts',
        indicators=[
            _contains('cobalt strike'),
            _contains('beacon'),
            _contains('reverse shell'),
            _contains('certutil -urlcache'),
            _contains('bitsadmin /transfer'),
            _regex(r'\bnc(\.exe)?\s+-[a-z]*e\b', 'netcat exec'),
        ]
    ),
    LogPattern(
        pattern_id='FILE001',
        name='File Manipulation',
        significance=Significance.LOW,
        description='File deletion, hiding, renaming or mass modification',
        indicators=[
            _contains('file deleted'),
            _contains('del /f'),
            _contains('attrib +h'),
            _contains('cipher /w'),
            _contains('.encrypted'),
            _contains('files modified'),
            _contains('rm -rf'),
        ]
    ),
]


class PatternMatcher:
    """
    Evaluates the pattern catalogue against log text.

    Rules are independent predicates; output order mirrors catalogue order.
    """

    def __init__(self, config: Dict = None, patterns: List[LogPattern] = None):
        self.config = config or {}
        self.logger = logger
        self.patterns = patterns if patterns is not None else PATTERN_CATALOGUE

    def match(self, text: str) -> List[PatternMatch]:
        """
        Match text against every catalogue pattern

        Args:
            text: Raw log text (lowercased internally)

        Returns:
            Non-empty list of PatternMatch objects
        """
        lowered = (text or '').lower()
        matches = []

        for pattern in self.patterns:
            try:
                matched, terms = pattern.match(lowered)
            except re.error as e:
                self.logger.error(f"Invalid expression in pattern {pattern.pattern_id}: {e}")
                continue

            if matched:
                self.logger.debug(f"Pattern {pattern.name} matched on {terms}")
                matches.append(pattern.to_match())

        if not matches:
            return [PatternMatch(**GENERAL_ACTIVITY.to_dict())]

        return matches
