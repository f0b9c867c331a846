#!/usr/bin/env python3
"""
Threat Intelligence Correlation Module for TriageEye
Merges extracted indicators with a threat report, falling back to a
deterministic heuristic estimate of reputation and location.
"""

import logging
from typing import Dict, List, Optional

from .indicator_extractor import ExtractedIndicators, IndicatorType, is_private_ip
from ..utils.threat_intelligence import ThreatIndicator, ThreatReport

logger = logging.getLogger('triageeye.threat_correlator')


class Reputation:
    """Indicator reputation values"""
    CLEAN = 'Clean'
    SUSPICIOUS = 'Suspicious'
    MALICIOUS = 'Malicious'
    UNKNOWN = 'Unknown'


# Address prefixes of known anonymizer and bulletproof hosting ranges
SUSPICIOUS_IP_PREFIXES = ['185.220.', '45.154.', '192.42.116.', '23.129.64.', '104.244.7']

SUSPICIOUS_TLDS = {'xyz', 'top', 'tk', 'pw', 'cc', 'club', 'onion', 'ru', 'su', 'gq', 'ml', 'cf', 'ga'}
SUSPICIOUS_DOMAIN_TERMS = ['hack', 'exploit', 'malware', 'phish', 'evil', 'c2-', 'payload', 'ransom']

# Well-known attack tooling seen as process names
SUSPICIOUS_PROCESSES = {
    'mimikatz.exe', 'procdump.exe', 'procdump64.exe', 'psexec.exe', 'psexesvc.exe',
    'nc.exe', 'ncat.exe', 'rubeus.exe', 'sharphound.exe', 'bloodhound.exe', 'lazagne.exe',
    'certutil.exe', 'bitsadmin.exe', 'vssadmin.exe', 'wmic.exe', 'rundll32.exe',
    'regsvr32.exe', 'mshta.exe', 'cobaltstrike.exe', 'beacon.exe', 'plink.exe'
}

# First-octet buckets used for external address location estimates
GEO_BUCKETS = [
    (1, 49, 'North America (estimated)'),
    (50, 99, 'Europe (estimated)'),
    (100, 149, 'Asia-Pacific (estimated)'),
    (150, 199, 'Eastern Europe (estimated)'),
    (200, 223, 'Latin America (estimated)'),
]

INTERNAL_GEO = 'Internal Network'


class Indicator:
    """Correlated indicator of compromise"""

    def __init__(self,
                 indicator_type: IndicatorType,
                 value: str,
                 reputation: str = Reputation.UNKNOWN,
                 confidence: str = 'Low',
                 geo_location: str = 'Unknown',
                 threat_note: str = '',
                 source: str = 'heuristic'):
        self.indicator_type = indicator_type
        self.value = value
        self.reputation = reputation
        self.confidence = confidence
        self.geo_location = geo_location
        self.threat_note = threat_note
        self.source = source

    @property
    def is_malicious(self) -> bool:
        return self.reputation == Reputation.MALICIOUS

    def to_dict(self) -> Dict:
        return {
            'type': self.indicator_type.value,
            'value': self.value,
            'reputation': self.reputation,
            'confidence': self.confidence,
            'geo_location': self.geo_location,
            'threat_note': self.threat_note,
            'source': self.source
        }

    def __repr__(self) -> str:
        return f"Indicator({self.indicator_type.value}, {self.value}, {self.reputation})"


def estimate_ip_location(ip: str) -> str:
    """
    Deterministic location estimate keyed only by the address

    Args:
        ip: IPv4 address

    Returns:
        Location label
    """
    if is_private_ip(ip):
        return INTERNAL_GEO

    try:
        first_octet = int(ip.split('.')[0])
    except (ValueError, IndexError):
        return 'Unknown'

    for low, high, label in GEO_BUCKETS:
        if low <= first_octet <= high:
            return label

    return 'Unknown (estimated)'


def estimate_ip_reputation(ip: str) -> str:
    if is_private_ip(ip):
        return Reputation.CLEAN
    if any(ip.startswith(prefix) for prefix in SUSPICIOUS_IP_PREFIXES):
        return Reputation.SUSPICIOUS
    return Reputation.UNKNOWN


def estimate_domain_reputation(domain: str) -> str:
    domain = domain.lower()
    tld = domain.rsplit('.', 1)[-1]
    if tld in SUSPICIOUS_TLDS or any(term in domain for term in SUSPICIOUS_DOMAIN_TERMS):
        return Reputation.SUSPICIOUS
    return Reputation.UNKNOWN


def reputation_from_record(record: ThreatIndicator) -> str:
    """Reputation derived from a threat intelligence record"""
    if record.malicious:
        return Reputation.MALICIOUS
    if record.threat_score > 50:
        return Reputation.SUSPICIOUS
    return Reputation.CLEAN


class ThreatIntelCorrelator:
    """
    Correlates extracted indicators with threat intelligence.

    Threat report data always takes priority; indicators the report does not
    cover get a heuristic estimate that depends only on the indicator value.
    """

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger

    def correlate(self, extracted: ExtractedIndicators,
                  threat_report: Optional[ThreatReport] = None) -> List[Indicator]:
        """
        Build correlated indicators

        Args:
            extracted: Indicators pulled from the log text
            threat_report: Optional threat report for the incident

        Returns:
            List of Indicator objects in type order IP, Domain, URL, Hash, CVE, Process
        """
        indicators = []

        try:
            for ip in extracted.ips:
                indicators.append(self._correlate_value(IndicatorType.IP, ip, 'ip', threat_report))

            for domain in extracted.domains:
                indicators.append(self._correlate_value(IndicatorType.DOMAIN, domain, 'domain', threat_report))

            for url in extracted.urls:
                indicators.append(self._correlate_url(url, threat_report))

            for entry in extracted.hashes:
                indicator = self._correlate_value(IndicatorType.HASH, entry['value'], 'hash', threat_report)
                if indicator.source == 'heuristic':
                    indicator.threat_note = f"{entry['type']} file hash; no reputation data available"
                indicators.append(indicator)

            for cve in extracted.cves:
                indicators.append(Indicator(
                    indicator_type=IndicatorType.CVE,
                    value=cve,
                    reputation=Reputation.SUSPICIOUS,
                    confidence='Medium',
                    geo_location='N/A',
                    threat_note=f"Referenced vulnerability {cve}; verify patch status"
                ))

            for process in extracted.processes:
                suspicious = process in SUSPICIOUS_PROCESSES
                indicators.append(Indicator(
                    indicator_type=IndicatorType.PROCESS,
                    value=process,
                    reputation=Reputation.SUSPICIOUS if suspicious else Reputation.UNKNOWN,
                    confidence='Medium' if suspicious else 'Low',
                    geo_location='N/A',
                    threat_note='Known attack or dual-use tool' if suspicious else 'Process observed in log'
                ))

        except Exception as e:
            self.logger.error(f"Error correlating indicators: {e}")

        return indicators

    def _correlate_value(self, indicator_type: IndicatorType, value: str, report_type: str,
                         threat_report: Optional[ThreatReport]) -> Indicator:
        record = threat_report.find(value, report_type) if threat_report else None
        if record:
            return self._from_record(indicator_type, record)
        return self._estimate(indicator_type, value)

    def _correlate_url(self, url: str, threat_report: Optional[ThreatReport]) -> Indicator:
        host = url.split('://', 1)[-1].split('/', 1)[0].split(':', 1)[0].lower()
        host_type = IndicatorType.IP if host.replace('.', '').isdigit() else IndicatorType.DOMAIN
        report_type = 'ip' if host_type == IndicatorType.IP else 'domain'

        host_indicator = self._correlate_value(host_type, host, report_type, threat_report)
        return Indicator(
            indicator_type=IndicatorType.URL,
            value=url,
            reputation=host_indicator.reputation,
            confidence=host_indicator.confidence,
            geo_location=host_indicator.geo_location,
            threat_note=f"Host {host}: {host_indicator.threat_note}",
            source=host_indicator.source
        )

    def _from_record(self, indicator_type: IndicatorType, record: ThreatIndicator) -> Indicator:
        reputation = reputation_from_record(record)

        geo_parts = [part for part in (record.country, record.organization) if part]
        if geo_parts:
            geo_location = ', '.join(geo_parts)
        elif indicator_type == IndicatorType.IP:
            geo_location = estimate_ip_location(record.value)
        else:
            geo_location = 'Unknown'

        if reputation == Reputation.MALICIOUS:
            confidence = 'High' if record.pulse_count >= 5 or record.threat_score >= 70 else 'Medium'
        else:
            confidence = 'Medium'

        note = f"Threat intelligence: score {record.threat_score}, {record.pulse_count} reports"
        if record.tags:
            note += f", tags: {', '.join(record.tags[:5])}"

        return Indicator(
            indicator_type=indicator_type,
            value=record.value,
            reputation=reputation,
            confidence=confidence,
            geo_location=geo_location,
            threat_note=note,
            source='threat_intel'
        )

    def _estimate(self, indicator_type: IndicatorType, value: str) -> Indicator:
        if indicator_type == IndicatorType.IP:
            reputation = estimate_ip_reputation(value)
            if is_private_ip(value):
                note = 'Internal address'
            elif reputation == Reputation.SUSPICIOUS:
                note = 'Address in known anonymizer or bulletproof hosting range'
            else:
                note = 'External address; no reputation data available'
            return Indicator(
                indicator_type=indicator_type,
                value=value,
                reputation=reputation,
                confidence='Medium' if reputation != Reputation.UNKNOWN else 'Low',
                geo_location=estimate_ip_location(value),
                threat_note=note
            )

        if indicator_type == IndicatorType.DOMAIN:
            reputation = estimate_domain_reputation(value)
            return Indicator(
                indicator_type=indicator_type,
                value=value,
                reputation=reputation,
                confidence='Medium' if reputation == Reputation.SUSPICIOUS else 'Low',
                geo_location='Unknown',
                threat_note=('Suspicious domain name or top-level domain'
                             if reputation == Reputation.SUSPICIOUS
                             else 'No reputation data available')
            )

        return Indicator(
            indicator_type=indicator_type,
            value=value,
            reputation=Reputation.UNKNOWN,
            confidence='Low',
            geo_location='N/A',
            threat_note='No reputation data available'
        )
