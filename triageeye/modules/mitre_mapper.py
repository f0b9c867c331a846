#!/usr/bin/env python3
"""
MITRE ATT&CK Mapping Module for TriageEye
Infers ATT&CK tactics and techniques from keywords found in log text
"""

import re
import logging
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger('triageeye.mitre_mapper')

TACTICS = {
    'TA0001': 'Initial Access',
    'TA0002': 'Execution',
    'TA0003': 'Persistence',
    'TA0004': 'Privilege Escalation',
    'TA0005': 'Defense Evasion',
    'TA0006': 'Credential Access',
    'TA0007': 'Discovery',
    'TA0008': 'Lateral Movement',
    'TA0009': 'Collection',
    'TA0010': 'Exfiltration',
    'TA0011': 'Command and Control',
    'TA0040': 'Impact',
}

DEFAULT_TACTIC = 'TA0001'
DEFAULT_TECHNIQUE = ('T1078', 'Valid Accounts')


def any_of(*terms: str) -> Callable[[str], bool]:
    return lambda text: any(term in text for term in terms)


def all_of(*terms: str) -> Callable[[str], bool]:
    return lambda text: all(term in text for term in terms)


def matches(expression: str) -> Callable[[str], bool]:
    compiled = re.compile(expression)
    return lambda text: bool(compiled.search(text))


def either(*predicates: Callable[[str], bool]) -> Callable[[str], bool]:
    return lambda text: any(predicate(text) for predicate in predicates)


class MitreRule:
    """
    One catalogue entry mapping a text predicate to a technique.

    A rule with requires_tactic set only applies once another rule has
    already fired for the same tactic.
    """

    def __init__(self, tactic_id: str, technique_id: str, technique_name: str,
                 predicate: Callable[[str], bool], requires_tactic: bool = False):
        self.tactic_id = tactic_id
        self.technique_id = technique_id
        self.technique_name = technique_name
        self.predicate = predicate
        self.requires_tactic = requires_tactic

    def applies(self, text: str) -> bool:
        return self.predicate(text)


MITRE_RULES = [
    # Credential Access
    MitreRule('TA0006', 'T1003', 'OS Credential Dumping',
              either(matches(r'lsass[^\n]*(credential|dump|memory)|(credential|dump|memory)[^\n]*lsass'),
                     any_of('mimikatz', 'sekurlsa', 'hashdump', 'credential dump', 'ntds.dit'))),
    MitreRule('TA0006', 'T1003.001', 'LSASS Memory',
              any_of('mimikatz', 'lsass'), requires_tactic=True),
    MitreRule('TA0006', 'T1003.003', 'NTDS',
              any_of('ntds.dit', 'ntdsutil'), requires_tactic=True),
    MitreRule('TA0006', 'T1110', 'Brute Force',
              any_of('brute force', 'failed password', 'failed login', 'password spray')),
    # Execution
    MitreRule('TA0002', 'T1059.001', 'PowerShell', any_of('powershell')),
    MitreRule('TA0002', 'T1059.003', 'Windows Command Shell', any_of('cmd.exe', 'cmd /c')),
    MitreRule('TA0002', 'T1059.005', 'Visual Basic', any_of('wscript', 'cscript', '.vbs')),
    MitreRule('TA0002', 'T1047', 'Windows Management Instrumentation', any_of('wmic')),
    # Defense Evasion
    MitreRule('TA0005', 'T1027', 'Obfuscated Files or Information',
              either(matches(r'powershell[^\n]*\s-(e|en|enc|encodedcommand)\b'),
                     any_of('frombase64string'))),
    MitreRule('TA0005', 'T1070.001', 'Clear Windows Event Logs',
              any_of('wevtutil cl', 'clear-eventlog')),
    MitreRule('TA0005', 'T1218.011', 'Rundll32', any_of('rundll32')),
    MitreRule('TA0005', 'T1564.001', 'Hidden Files and Directories', any_of('attrib +h')),
    # Persistence
    MitreRule('TA0003', 'T1053.005', 'Scheduled Task',
              any_of('schtasks', 'scheduled task', 'new-scheduledtask')),
    MitreRule('TA0003', 'T1547.001', 'Registry Run Keys / Startup Folder',
              any_of('currentversion\\run', 'startup folder')),
    MitreRule('TA0003', 'T1543.003', 'Windows Service', any_of('sc create', 'new-service')),
    # Privilege Escalation
    MitreRule('TA0004', 'T1548.002', 'Bypass User Account Control',
              any_of('uac bypass', 'fodhelper', 'eventvwr.exe')),
    MitreRule('TA0004', 'T1068', 'Exploitation for Privilege Escalation',
              any_of('privilege escalation', 'getsystem')),
    # Discovery
    MitreRule('TA0007', 'T1033', 'System Owner/User Discovery', any_of('whoami')),
    MitreRule('TA0007', 'T1087', 'Account Discovery', any_of('net user', 'net group')),
    MitreRule('TA0007', 'T1482', 'Domain Trust Discovery', any_of('nltest')),
    MitreRule('TA0007', 'T1082', 'System Information Discovery', any_of('systeminfo')),
    MitreRule('TA0007', 'T1016', 'System Network Configuration Discovery', any_of('ipconfig', 'arp -a')),
    MitreRule('TA0007', 'T1046', 'Network Service Discovery', any_of('nmap', 'port scan')),
    # Lateral Movement
    MitreRule('TA0008', 'T1021.002', 'SMB/Windows Admin Shares', any_of('psexec', 'admin$')),
    MitreRule('TA0008', 'T1021.001', 'Remote Desktop Protocol', any_of('remote desktop', 'mstsc', 'rdp ')),
    MitreRule('TA0008', 'T1021.006', 'Windows Remote Management', any_of('winrm', 'enter-pssession')),
    # Collection / Exfiltration
    MitreRule('TA0009', 'T1560', 'Archive Collected Data', any_of('7z a ', 'rar a ', 'compress-archive')),
    MitreRule('TA0010', 'T1048', 'Exfiltration Over Alternative Protocol',
              any_of('exfiltration', 'exfil', 'data transfer to external')),
    # Command and Control
    MitreRule('TA0011', 'T1105', 'Ingress Tool Transfer',
              any_of('certutil -urlcache', 'bitsadmin /transfer', 'downloadstring', 'wget http', 'curl http')),
    MitreRule('TA0011', 'T1071.001', 'Web Protocols', any_of('beacon', 'cobalt strike')),
    # Impact
    MitreRule('TA0040', 'T1490', 'Inhibit System Recovery',
              either(any_of('delete shadows', 'shadowcopy delete', 'wbadmin delete catalog'),
                     matches(r'bcdedit[^\n]*recoveryenabled\s+no'))),
    MitreRule('TA0040', 'T1486', 'Data Encrypted for Impact',
              any_of('ransom', 'files have been encrypted', '.encrypted')),
    # Initial Access
    MitreRule('TA0001', 'T1566', 'Phishing', any_of('phishing', 'malicious attachment')),
    MitreRule('TA0001', 'T1190', 'Exploit Public-Facing Application',
              any_of('sql injection', 'web shell', 'webshell', 'exploit attempt')),
]


class MitreMapping:
    """Ordered ATT&CK tactics and techniques for one incident"""

    def __init__(self, tactics: List[Dict[str, str]] = None,
                 techniques: List[Dict[str, str]] = None, is_default: bool = False):
        self.tactics = tactics or []
        self.techniques = techniques or []
        self.is_default = is_default

    @property
    def technique_ids(self) -> List[str]:
        return [technique['id'] for technique in self.techniques]

    @property
    def tactic_ids(self) -> List[str]:
        return [tactic['id'] for tactic in self.tactics]

    def add_technique(self, technique_id: str, technique_name: str,
                      tactic_id: Optional[str] = None) -> bool:
        """
        Append a technique unless already present

        Returns:
            True if the technique was added
        """
        if technique_id in self.technique_ids:
            return False

        if tactic_id and tactic_id not in self.tactic_ids:
            self.tactics.append({'id': tactic_id, 'name': TACTICS.get(tactic_id, tactic_id)})

        self.techniques.append({'id': technique_id, 'name': technique_name, 'tactic_id': tactic_id})
        return True

    def to_dict(self) -> Dict:
        return {
            'tactics': [dict(tactic) for tactic in self.tactics],
            'techniques': [dict(technique) for technique in self.techniques],
            'is_default': self.is_default
        }


class MitreMapper:
    """Maps log keywords to MITRE ATT&CK tactics and techniques"""

    def __init__(self, config: Dict = None, rules: List[MitreRule] = None):
        self.config = config or {}
        self.logger = logger
        self.rules = rules if rules is not None else MITRE_RULES

    def map(self, text: str) -> MitreMapping:
        """
        Map text to ATT&CK tactics and techniques

        Unconditional rules run first; conditional rules then run against
        the set of tactics that fired. Output follows catalogue order.

        Args:
            text: Raw log text (lowercased internally)

        Returns:
            MitreMapping that is never empty
        """
        lowered = (text or '').lower()

        fired: List[MitreRule] = [rule for rule in self.rules
                                  if not rule.requires_tactic and rule.applies(lowered)]
        fired_tactics = {rule.tactic_id for rule in fired}

        fired.extend(rule for rule in self.rules
                     if rule.requires_tactic and rule.tactic_id in fired_tactics and rule.applies(lowered))

        # restore catalogue order
        order = {id(rule): index for index, rule in enumerate(self.rules)}
        fired.sort(key=lambda rule: order[id(rule)])

        if not fired:
            return self._default_mapping()

        mapping = MitreMapping()
        for rule in fired:
            mapping.add_technique(rule.technique_id, rule.technique_name, rule.tactic_id)

        self.logger.debug(f"Mapped {len(mapping.techniques)} techniques across {len(mapping.tactics)} tactics")
        return mapping

    def _default_mapping(self) -> MitreMapping:
        mapping = MitreMapping(is_default=True)
        mapping.add_technique(DEFAULT_TECHNIQUE[0], DEFAULT_TECHNIQUE[1], DEFAULT_TACTIC)
        return mapping


def parse_technique_reference(reference: str) -> Optional[Tuple[str, str]]:
    """
    Parse a free-text technique reference such as "T1059.001 - PowerShell"

    Returns:
        Tuple of (technique_id, technique_name) or None if no id is present
    """
    match = re.search(r'\b(T\d{4}(?:\.\d{3})?)\b', reference or '', re.IGNORECASE)
    if not match:
        return None

    technique_id = match.group(1).upper()
    name = reference[match.end():].strip(' -:()')
    for rule in MITRE_RULES:
        if rule.technique_id == technique_id:
            name = rule.technique_name
            break

    return technique_id, name or technique_id


def tactic_for_technique(technique_id: str) -> Optional[str]:
    """Tactic id a catalogued technique belongs to, if known"""
    for rule in MITRE_RULES:
        if rule.technique_id == technique_id:
            return rule.tactic_id
    return None
