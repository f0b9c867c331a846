#!/usr/bin/env python3
"""
Unit tests for Threat Intelligence Correlation module
"""

import unittest
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))))

from triageeye.modules.indicator_extractor import ExtractedIndicators, IndicatorType, is_private_ip
from triageeye.modules.threat_correlator import (
    ThreatIntelCorrelator, Indicator, Reputation, estimate_ip_location, estimate_ip_reputation,
    estimate_domain_reputation, reputation_from_record, INTERNAL_GEO
)
from triageeye.utils.threat_intelligence import ThreatIndicator, ThreatReport


class TestHeuristicEstimates(unittest.TestCase):
    """Test deterministic estimate helpers"""

    def test_private_addresses_are_internal(self):
        """Test internal addresses get the internal location and clean reputation"""
        for ip in ['10.0.0.5', '172.16.4.2', '192.168.1.10']:
            self.assertEqual(estimate_ip_location(ip), INTERNAL_GEO)
            self.assertEqual(estimate_ip_reputation(ip), Reputation.CLEAN)

    def test_external_locations(self):
        """Test first-octet location buckets"""
        self.assertEqual(estimate_ip_location('8.8.8.8'), 'North America (estimated)')
        self.assertEqual(estimate_ip_location('185.220.101.42'), 'Eastern Europe (estimated)')
        self.assertEqual(estimate_ip_location('240.1.1.1'), 'Unknown (estimated)')

    def test_estimates_depend_only_on_value(self):
        """Test repeated estimates are identical"""
        for ip in ['185.220.101.42', '45.154.1.1', '8.8.8.8']:
            self.assertEqual(estimate_ip_location(ip), estimate_ip_location(ip))
            self.assertEqual(estimate_ip_reputation(ip), estimate_ip_reputation(ip))

    def test_internal_location_matches_private_check(self):
        """Test the location estimate agrees with the private-address check"""
        for ip in ['10.1.1.1', '172.31.0.1', '172.32.0.1', '192.168.0.1', '193.168.0.1', '127.0.0.1']:
            self.assertEqual(estimate_ip_location(ip) == INTERNAL_GEO, is_private_ip(ip), ip)

    def test_anonymizer_prefix(self):
        """Test known anonymizer ranges are suspicious"""
        self.assertEqual(estimate_ip_reputation('185.220.101.42'), Reputation.SUSPICIOUS)
        self.assertEqual(estimate_ip_reputation('8.8.8.8'), Reputation.UNKNOWN)

    def test_domain_reputation(self):
        """Test domain heuristics"""
        self.assertEqual(estimate_domain_reputation('evil-c2.xyz'), Reputation.SUSPICIOUS)
        self.assertEqual(estimate_domain_reputation('payload-host.com'), Reputation.SUSPICIOUS)
        self.assertEqual(estimate_domain_reputation('corp-intranet.com'), Reputation.UNKNOWN)

    def test_reputation_from_record(self):
        """Test record reputation thresholds"""
        self.assertEqual(reputation_from_record(ThreatIndicator('ip', '1.2.3.4', malicious=True)),
                         Reputation.MALICIOUS)
        self.assertEqual(reputation_from_record(ThreatIndicator('ip', '1.2.3.4', threat_score=60)),
                         Reputation.SUSPICIOUS)
        self.assertEqual(reputation_from_record(ThreatIndicator('ip', '1.2.3.4', threat_score=10)),
                         Reputation.CLEAN)


class TestThreatIntelCorrelator(unittest.TestCase):
    """Test ThreatIntelCorrelator class"""

    def setUp(self):
        """Set up test fixtures"""
        self.correlator = ThreatIntelCorrelator()

    def test_report_takes_priority(self):
        """Test threat report data overrides heuristics"""
        report = ThreatReport(
            risk_score=90,
            threat_level='critical',
            indicators=[ThreatIndicator('ip', '185.220.101.42', malicious=True, threat_score=95,
                                        country='Germany', organization='AS1234', pulse_count=12)]
        )
        extracted = ExtractedIndicators(ips=['185.220.101.42'])

        indicators = self.correlator.correlate(extracted, report)

        self.assertEqual(len(indicators), 1)
        indicator = indicators[0]
        self.assertEqual(indicator.reputation, Reputation.MALICIOUS)
        self.assertTrue(indicator.is_malicious)
        self.assertEqual(indicator.confidence, 'High')
        self.assertEqual(indicator.geo_location, 'Germany, AS1234')
        self.assertEqual(indicator.source, 'threat_intel')

    def test_heuristic_fallback(self):
        """Test indicators absent from the report use estimates"""
        report = ThreatReport(risk_score=10, indicators=[ThreatIndicator('ip', '8.8.8.8')])
        extracted = ExtractedIndicators(ips=['192.168.1.10', '185.220.101.42'])

        indicators = self.correlator.correlate(extracted, report)

        self.assertEqual(indicators[0].reputation, Reputation.CLEAN)
        self.assertEqual(indicators[0].geo_location, INTERNAL_GEO)
        self.assertEqual(indicators[1].reputation, Reputation.SUSPICIOUS)
        self.assertEqual(indicators[1].geo_location, 'Eastern Europe (estimated)')
        self.assertEqual(indicators[1].source, 'heuristic')

    def test_heuristics_are_deterministic(self):
        """Test repeated correlation yields identical indicators"""
        extracted = ExtractedIndicators(ips=['185.220.101.42', '8.8.8.8'], domains=['evil-c2.xyz'])

        first = [indicator.to_dict() for indicator in self.correlator.correlate(extracted)]
        second = [indicator.to_dict() for indicator in self.correlator.correlate(extracted)]
        self.assertEqual(first, second)

    def test_type_order_and_fields(self):
        """Test indicator ordering and per-type handling"""
        extracted = ExtractedIndicators(
            ips=['8.8.8.8'],
            domains=['evil-c2.xyz'],
            urls=['http://evil-c2.xyz/stage2'],
            hashes=[{'value': 'd41d8cd98f00b204e9800998ecf8427e', 'type': 'MD5'}],
            cves=['CVE-2021-44228'],
            processes=['mimikatz.exe', 'notepad.exe']
        )

        indicators = self.correlator.correlate(extracted)
        types = [indicator.indicator_type for indicator in indicators]

        self.assertEqual(types, [IndicatorType.IP, IndicatorType.DOMAIN, IndicatorType.URL, IndicatorType.HASH,
                                 IndicatorType.CVE, IndicatorType.PROCESS, IndicatorType.PROCESS])
        self.assertEqual(indicators[2].reputation, Reputation.SUSPICIOUS)
        self.assertIn('MD5', indicators[3].threat_note)
        self.assertEqual(indicators[4].reputation, Reputation.SUSPICIOUS)
        self.assertEqual(indicators[5].reputation, Reputation.SUSPICIOUS)
        self.assertEqual(indicators[6].reputation, Reputation.UNKNOWN)

    def test_hash_from_report(self):
        """Test hash lookup in the report"""
        digest = 'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
        report = ThreatReport(indicators=[ThreatIndicator('hash', digest, malicious=True, threat_score=80)])
        extracted = ExtractedIndicators(hashes=[{'value': digest, 'type': 'SHA256'}])

        indicator = self.correlator.correlate(extracted, report)[0]
        self.assertTrue(indicator.is_malicious)
        self.assertEqual(indicator.geo_location, 'Unknown')

    def test_empty_input(self):
        """Test correlation of nothing"""
        self.assertEqual(self.correlator.correlate(ExtractedIndicators()), [])

    def test_indicator_to_dict(self):
        """Test Indicator dictionary conversion"""
        indicator = Indicator(IndicatorType.CVE, 'CVE-2021-44228', Reputation.SUSPICIOUS, 'Medium', 'N/A', 'note')
        data = indicator.to_dict()

        self.assertEqual(data['type'], 'CVE')
        self.assertEqual(data['reputation'], 'Suspicious')
        self.assertEqual(data['source'], 'heuristic')


if __name__ == '__main__':
    unittest.main()
