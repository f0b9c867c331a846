#!/usr/bin/env python3
"""
Indicator Extraction Module for TriageEye
Pulls candidate indicators of compromise (IPs, domains, URLs, file hashes,
CVE identifiers and process names) out of free-text security logs.
"""

import re
import logging
import ipaddress
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger('triageeye.indicator_extractor')

# Address ranges never treated as external
PRIVATE_NETWORKS = [
    ipaddress.ip_network('10.0.0.0/8'),
    ipaddress.ip_network('172.16.0.0/12'),
    ipaddress.ip_network('192.168.0.0/16'),
    ipaddress.ip_network('127.0.0.0/8'),
    ipaddress.ip_network('169.254.0.0/16'),
]

# Well-known domains that are never reported as indicators
COMMON_DOMAINS = [
    'localhost', 'example.com', 'test.com', 'google.com',
    'microsoft.com', 'windows.com', 'apple.com', 'amazon.com'
]

# File extensions that look like top-level domains to the domain pattern
FILE_EXTENSIONS = {
    'exe', 'dll', 'sys', 'ps1', 'psm1', 'bat', 'cmd', 'vbs', 'js', 'scr', 'msi',
    'hta', 'jar', 'lnk', 'log', 'txt', 'tmp', 'dat', 'bin', 'ini', 'cfg', 'conf',
    'xml', 'json', 'csv', 'yaml', 'yml', 'zip', 'rar', 'gz', 'tar', 'doc', 'docx',
    'xls', 'xlsx', 'xlsm', 'ppt', 'pptx', 'pdf', 'py', 'sh', 'dit', 'evtx', 'db',
    'hive', 'dmp', 'png', 'jpg', 'gif', 'html', 'htm', 'php', 'asp', 'aspx', 'so',
    'encrypted', 'locked', 'bak', 'old', 'key', 'pem', 'crt'
}

IP_PATTERN = re.compile(r'\b(?:\d{1,3}\.){3}\d{1,3}\b')
DOMAIN_PATTERN = re.compile(r'\b(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,24}\b')
URL_PATTERN = re.compile(r'https?://[^\s<>"{}|\\^`\[\]\']+', re.IGNORECASE)
CVE_PATTERN = re.compile(r'\bcve-\d{4}-\d{4,}\b', re.IGNORECASE)
PROCESS_PATTERN = re.compile(r'\b[a-z0-9_\-]+\.(?:exe|ps1|bat|vbs|scr|msi)\b', re.IGNORECASE)
HASH_PATTERNS = [
    ('SHA256', re.compile(r'\b[a-f0-9]{64}\b', re.IGNORECASE)),
    ('SHA1', re.compile(r'\b[a-f0-9]{40}\b', re.IGNORECASE)),
    ('MD5', re.compile(r'\b[a-f0-9]{32}\b', re.IGNORECASE)),
]


class IndicatorType(Enum):
    """Indicator of Compromise Types"""
    IP = 'IP'
    DOMAIN = 'Domain'
    HASH = 'Hash'
    CVE = 'CVE'
    PROCESS = 'Process'
    URL = 'URL'


def is_private_ip(ip: str) -> bool:
    """
    Check if an IPv4 address belongs to a private, loopback or link-local range

    Args:
        ip: Dotted-quad address

    Returns:
        True if the address is internal, False otherwise (including invalid input)
    """
    try:
        address = ipaddress.ip_address(ip.strip())
    except (ValueError, AttributeError):
        return False
    return any(address in network for network in PRIVATE_NETWORKS)


def is_valid_ip(ip: str) -> bool:
    """Check if a string is a syntactically valid IPv4 address"""
    try:
        ipaddress.IPv4Address(ip)
        return True
    except ValueError:
        return False


def is_common_domain(domain: str) -> bool:
    """Check if a domain is a well-known benign domain"""
    domain = domain.lower()
    return any(domain == common or domain.endswith('.' + common) for common in COMMON_DOMAINS)


def _unique(values: List[str]) -> List[str]:
    """Deduplicate while keeping first-seen order"""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class ExtractedIndicators:
    """Indicators extracted from one piece of log text"""

    def __init__(self,
                 ips: List[str] = None,
                 domains: List[str] = None,
                 urls: List[str] = None,
                 hashes: List[Dict[str, str]] = None,
                 cves: List[str] = None,
                 processes: List[str] = None):
        self.ips = ips or []
        self.domains = domains or []
        self.urls = urls or []
        self.hashes = hashes or []
        self.cves = cves or []
        self.processes = processes or []

    @property
    def external_ips(self) -> List[str]:
        """IPs outside the private ranges"""
        return [ip for ip in self.ips if not is_private_ip(ip)]

    @property
    def hash_values(self) -> List[str]:
        return [entry['value'] for entry in self.hashes]

    def count(self) -> int:
        """Total number of extracted indicators"""
        return (len(self.ips) + len(self.domains) + len(self.urls) +
                len(self.hashes) + len(self.cves) + len(self.processes))

    def is_empty(self) -> bool:
        return self.count() == 0

    def to_dict(self) -> Dict:
        """Convert to dictionary representation"""
        return {
            'ips': list(self.ips),
            'domains': list(self.domains),
            'urls': list(self.urls),
            'hashes': [dict(entry) for entry in self.hashes],
            'cves': list(self.cves),
            'processes': list(self.processes)
        }


class IndicatorExtractor:
    """
    Extracts deduplicated, capped indicator lists from raw text.

    Extraction is pure: the same text always yields the same lists in the
    same (first-seen) order.
    """

    def __init__(self, config: Dict = None):
        """Initialize the extractor"""
        self.config = config or {}
        self.logger = logger
        self.max_per_type = self.config.get('max_per_type', 5)

    def extract(self, text: str, limit: Optional[int] = None) -> ExtractedIndicators:
        """
        Extract all indicator types from text

        Args:
            text: Raw log text
            limit: Optional per-type cap overriding the configured one

        Returns:
            ExtractedIndicators instance (empty lists for empty input)
        """
        if not text:
            return ExtractedIndicators()

        cap = limit if limit is not None else self.max_per_type

        return ExtractedIndicators(
            ips=self.extract_ips(text)[:cap],
            domains=self.extract_domains(text)[:cap],
            urls=self.extract_urls(text)[:cap],
            hashes=self.extract_hashes(text)[:cap],
            cves=self.extract_cves(text)[:cap],
            processes=self.extract_processes(text)[:cap]
        )

    def extract_ips(self, text: str) -> List[str]:
        """All valid IPv4 addresses in text, uncapped"""
        if not text:
            return []
        return _unique([ip for ip in IP_PATTERN.findall(text) if is_valid_ip(ip)])

    def extract_external_ips(self, text: str) -> List[str]:
        """All non-private IPv4 addresses in text, uncapped"""
        return [ip for ip in self.extract_ips(text) if not is_private_ip(ip)]

    def extract_domains(self, text: str) -> List[str]:
        """Domain names, excluding file names and common benign domains"""
        if not text:
            return []

        domains = []
        for candidate in DOMAIN_PATTERN.findall(text.lower()):
            tld = candidate.rsplit('.', 1)[-1]
            if tld in FILE_EXTENSIONS:
                continue
            if is_common_domain(candidate):
                continue
            domains.append(candidate)

        return _unique(domains)

    def extract_urls(self, text: str) -> List[str]:
        if not text:
            return []
        return _unique([url.rstrip('.,;:)') for url in URL_PATTERN.findall(text)])

    def extract_hashes(self, text: str) -> List[Dict[str, str]]:
        """
        File hashes keyed by length: 64 hex -> SHA256, 40 -> SHA1, 32 -> MD5

        Returns:
            List of {'value', 'type'} dictionaries
        """
        if not text:
            return []

        hashes = []
        seen = set()
        for hash_type, pattern in HASH_PATTERNS:
            for value in pattern.findall(text):
                value = value.lower()
                if value not in seen:
                    seen.add(value)
                    hashes.append({'value': value, 'type': hash_type})

        return hashes

    def extract_cves(self, text: str) -> List[str]:
        if not text:
            return []
        return _unique([cve.upper() for cve in CVE_PATTERN.findall(text)])

    def extract_processes(self, text: str) -> List[str]:
        """Executable and script names, lowercased"""
        if not text:
            return []
        return _unique([name.lower() for name in PROCESS_PATTERN.findall(text)])
