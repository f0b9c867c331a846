#!/usr/bin/env python3
"""
Scoring weight tables for the TriageEye classification engine.

Every point value used by the engine is defined here, grouped by
analytical dimension. The classification threshold and confidence bands
are calibration parameters.
"""

import re
from typing import Optional, Sequence

# Decision rule
CLASSIFICATION_THRESHOLD = 40

# (differential strictly greater than, band floor, band ceiling)
CONFIDENCE_BANDS = [
    (80, 85, 95),
    (50, 75, 90),
    (30, 65, 85),
    (-1, 55, 75),
]
CONFIDENCE_REASON_BONUS = 2
CONFIDENCE_MIN = 55
CONFIDENCE_MAX = 95
MAX_REASONS = 5


class PhraseRule:
    """
    Keyword rule over lowercase text.

    Fires when every supplied condition holds: at least one any_of term,
    all all_of terms, and the regex.
    """

    def __init__(self, description: str, points: int,
                 any_of: Sequence[str] = (), all_of: Sequence[str] = (),
                 regex: Optional[str] = None):
        self.description = description
        self.points = points
        self.any_of = tuple(any_of)
        self.all_of = tuple(all_of)
        self.regex = re.compile(regex) if regex else None

    def matches(self, text: str) -> bool:
        if not (self.any_of or self.all_of or self.regex):
            return False
        if self.any_of and not any(term in text for term in self.any_of):
            return False
        if self.all_of and not all(term in text for term in self.all_of):
            return False
        if self.regex and not self.regex.search(text):
            return False
        return True


# Critical threat phrases: true positive, 25-35 points each
CRITICAL_THREAT_RULES = [
    PhraseRule('Credential theft tool signature (mimikatz)', 35, any_of=['mimikatz']),
    PhraseRule('Credential material extraction (sekurlsa/logonpasswords)', 30,
               any_of=['sekurlsa', 'logonpasswords']),
    PhraseRule('LSASS process memory dump', 30,
               regex=r'lsass(\.exe)?[^\n]*(dump|memory)|(dump|memory)[^\n]*lsass'),
    PhraseRule('Volume shadow copy deletion', 35, any_of=['delete shadows', 'shadowcopy delete']),
    PhraseRule('Backup catalog deletion', 30, any_of=['wbadmin delete catalog']),
    PhraseRule('System recovery disabled', 30, regex=r'bcdedit[^\n]*recoveryenabled\s+no'),
    PhraseRule('Ransom note or encryption notice', 30,
               any_of=['your files have been encrypted', 'ransom note', 'decrypt your files', 'ransomware']),
    PhraseRule('Active Directory database extraction', 30, any_of=['ntds.dit', 'ntdsutil']),
    PhraseRule('Cobalt Strike beacon activity', 30, any_of=['cobalt strike', 'cobaltstrike']),
    PhraseRule('Encoded PowerShell command', 25,
               regex=r'powershell[^\n]*\s-(e|en|enc|encodedcommand)\b'),
    PhraseRule('Security event log cleared', 25, any_of=['wevtutil cl', 'clear-eventlog']),
]

# Suspicious phrases: true positive, 8-22 points each
SUSPICIOUS_RULES = [
    PhraseRule('Tool download via certutil', 22, any_of=['certutil -urlcache', 'certutil.exe -urlcache']),
    PhraseRule('Remote execution via PsExec', 20, any_of=['psexec']),
    PhraseRule('Process memory dumping utility', 20, any_of=['procdump']),
    PhraseRule('File transfer via BITS', 18, any_of=['bitsadmin /transfer']),
    PhraseRule('In-memory script download or execution', 18,
               any_of=['downloadstring', 'invoke-expression', 'iex(']),
    PhraseRule('Network scanning', 18, any_of=['nmap', 'port scan', 'masscan']),
    PhraseRule('Domain trust enumeration (nltest)', 15, any_of=['nltest']),
    PhraseRule('Scheduled task creation', 15, any_of=['schtasks /create', 'new-scheduledtask']),
    PhraseRule('Hidden PowerShell window', 15, any_of=['-windowstyle hidden', '-w hidden']),
    PhraseRule('Local administrator group enumeration', 15, any_of=['net localgroup administrators']),
    PhraseRule('Script host proxy execution (mshta)', 15, any_of=['mshta']),
    PhraseRule('Account enumeration (net user)', 12, any_of=['net user']),
    PhraseRule('Group enumeration (net group)', 12, any_of=['net group']),
    PhraseRule('WMI command execution', 12, any_of=['wmic']),
    PhraseRule('Registry modification via reg add', 12, any_of=['reg add']),
    PhraseRule('Proxy execution via rundll32', 12, any_of=['rundll32']),
    PhraseRule('Proxy execution via regsvr32', 12, any_of=['regsvr32']),
    PhraseRule('User context discovery (whoami)', 10, any_of=['whoami']),
    PhraseRule('Remote administration tool', 10, any_of=['anydesk', 'teamviewer', 'ngrok', 'screenconnect']),
    PhraseRule('Failed authentication attempts', 10,
               any_of=['failed password', 'failed login', 'logon failure', 'authentication failure']),
    PhraseRule('Network configuration discovery', 8, any_of=['ipconfig /all']),
    PhraseRule('System information discovery', 8, any_of=['systeminfo']),
]

# Legitimate activity: false positive, 5-15 points each
LEGITIMATE_RULES = [
    PhraseRule('Windows Update activity', 15, any_of=['windows update']),
    PhraseRule('Windows Update service (wuauserv)', 12, any_of=['wuauserv']),
    PhraseRule('Microsoft Defender activity', 12, any_of=['windows defender', 'msmpeng', 'microsoft defender']),
    PhraseRule('Antivirus scan activity', 10, any_of=['antivirus scan', 'scheduled scan', 'scan completed']),
    PhraseRule('Windows Modules Installer (TrustedInstaller)', 10, any_of=['trustedinstaller']),
    PhraseRule('Backup job activity', 10, any_of=['backup completed', 'backup job', 'backup succeeded']),
    PhraseRule('Scheduled maintenance window', 10, any_of=['scheduled maintenance', 'maintenance window']),
    PhraseRule('Software patch installation', 10, any_of=['patch installed', 'software update', 'hotfix installed']),
    PhraseRule('Web browser activity', 8, any_of=['chrome.exe', 'firefox.exe', 'msedge.exe', 'iexplore.exe']),
    PhraseRule('Office application activity', 8,
               any_of=['winword.exe', 'excel.exe', 'outlook.exe', 'powerpnt.exe', 'onenote.exe']),
    PhraseRule('Standard service host process', 5, any_of=['svchost.exe']),
]

# Pattern significance: true positive points per match
PATTERN_WEIGHTS = {
    'High': 10,
    'Medium': 5,
    'Low': 0,
}
PATTERN_CAP = 30

# Behavioral dimension
BEHAVIORAL_WEIGHTS = {
    'process_chain_pair': 15,
    'sensitive_process_access': 10,
    'process_chain_cap': 25,
    'command_execution_min': 3,
    'command_execution_per': 3,
    'command_execution_cap': 15,
    'base64_payload_per': 8,
    'base64_payload_cap': 20,
    'ai_indicator_per': 3,
    'ai_indicator_cap': 15,
}

# (parent, child) pairs that indicate an abnormal process chain
SUSPICIOUS_PROCESS_CHAINS = [
    ('winword', 'powershell'),
    ('winword', 'cmd.exe'),
    ('excel', 'powershell'),
    ('excel', 'cmd.exe'),
    ('outlook', 'powershell'),
    ('w3wp', 'cmd.exe'),
    ('w3wp', 'powershell'),
    ('mshta', 'powershell'),
    ('wscript', 'powershell'),
    ('cscript', 'powershell'),
    ('rundll32', 'powershell'),
    ('services.exe', 'cmd.exe'),
    ('sqlservr', 'cmd.exe'),
]

# Access to credential-bearing system processes
SENSITIVE_PROCESS_ACCESS = r'lsass(\.exe)?[^\n]*(dump|memory|access|handle|read)|(dump|memory|access|handle|read)[^\n]*lsass'

# Temporal dimension
TEMPORAL_WEIGHTS = {
    'late_night': 12,
    'late_night_hours': (0, 5),
    'evening': 8,
    'evening_hours': (22, 23),
    'dense_cluster_min': 10,
    'dense_cluster_bonus': 10,
}

# Network dimension
NETWORK_WEIGHTS = {
    'suspicious_port_per': 5,
    'suspicious_port_cap': 15,
    'external_ip_per': 3,
    'external_ip_cap': 15,
    'ai_indicator_per': 3,
    'ai_indicator_cap': 10,
}

SUSPICIOUS_PORTS = {
    1080, 1337, 3333, 3389, 4443, 4444, 5555, 5985, 5986,
    6666, 6667, 8888, 9001, 9050, 12345, 31337, 54321
}

# Threat intelligence dimension
THREAT_INTEL_RISK_BUCKETS = [
    (80, 35),
    (60, 25),
    (40, 15),
    (20, 8),
]
MALICIOUS_INDICATOR_POINTS = 8
MALICIOUS_INDICATOR_CAP = 30
THREAT_LEVEL_BONUS = {
    'critical': 20,
    'high': 12,
}

# Context dimension
# Environments that suggest benign activity; only the strongest applies
FALSE_POSITIVE_CONTEXT_RULES = [
    PhraseRule('Test environment context', 20, regex=r'\btest(ing)?\b|\btest environment\b'),
    PhraseRule('Sandbox environment context', 20, regex=r'\bsandbox(ed)?\b'),
    PhraseRule('Staging environment context', 20, regex=r'\bstaging\b'),
    PhraseRule('Development environment context', 15, regex=r'\bdev\b|\bdevelopment\b'),
    PhraseRule('Lab environment context', 15, regex=r'\blab\b'),
]

TRUE_POSITIVE_CONTEXT_RULES = [
    PhraseRule('Production environment context', 10, regex=r'\bproduction\b|\bprod\b'),
    PhraseRule('Domain controller context', 15, regex=r'domain controller|\bdc\d*\b'),
    PhraseRule('Critical asset context', 10,
               regex=r'\bcritical (asset|server|system|infrastructure)\b|\bmission[- ]critical\b'),
]

DECLARED_SEVERITY_WEIGHTS = {
    'critical': ('tp', 15),
    'high': ('tp', 10),
    'low': ('fp', 5),
    'informational': ('fp', 8),
}

# Statistical dimension: (threshold, points)
STATISTICAL_WEIGHTS = {
    'special_char_ratio': (0.15, 6),
    'word_repetition_ratio': (0.5, 5),
    'payload_size': (5000, 5),
    'hex_density': (0.1, 6),
    'char_entropy': (5.0, 4),
}
STATISTICAL_MIN_WORDS = 20
STATISTICAL_MIN_TOTAL = 15
STATISTICAL_CAP = 20
