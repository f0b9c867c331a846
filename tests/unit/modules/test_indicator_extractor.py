#!/usr/bin/env python3
"""
Unit tests for Indicator Extraction module
"""

import unittest
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))))

from triageeye.modules.indicator_extractor import (
    IndicatorExtractor, ExtractedIndicators, IndicatorType, is_private_ip, is_valid_ip, is_common_domain
)


SAMPLE_LOG = (
    "Connection from 10.0.0.5 to 185.220.101.42 via http://malicious-site.ru/payload, "
    "hash d41d8cd98f00b204e9800998ecf8427e, CVE-2021-44228 exploited by powershell.exe "
    "and evil.ps1; bad ip 999.1.1.1"
)


class TestAddressHelpers(unittest.TestCase):
    """Test IP helper functions"""

    def test_private_ranges(self):
        """Test private address detection"""
        for ip in ['10.1.2.3', '172.16.0.1', '172.31.255.254', '192.168.1.10', '127.0.0.1', '169.254.1.1']:
            self.assertTrue(is_private_ip(ip), ip)

        for ip in ['8.8.8.8', '172.32.0.1', '185.220.101.42', '11.0.0.1']:
            self.assertFalse(is_private_ip(ip), ip)

    def test_invalid_address_is_not_private(self):
        """Test malformed addresses"""
        self.assertFalse(is_private_ip('not-an-ip'))
        self.assertFalse(is_valid_ip('999.1.1.1'))
        self.assertTrue(is_valid_ip('1.2.3.4'))

    def test_common_domains(self):
        """Test common domain filter"""
        self.assertTrue(is_common_domain('google.com'))
        self.assertTrue(is_common_domain('update.microsoft.com'))
        self.assertFalse(is_common_domain('malicious-site.ru'))


class TestIndicatorExtractor(unittest.TestCase):
    """Test IndicatorExtractor class"""

    def setUp(self):
        """Set up test fixtures"""
        self.extractor = IndicatorExtractor()

    def test_extract_all_types(self):
        """Test extraction of every indicator type"""
        extracted = self.extractor.extract(SAMPLE_LOG)

        self.assertEqual(extracted.ips, ['10.0.0.5', '185.220.101.42'])
        self.assertEqual(extracted.external_ips, ['185.220.101.42'])
        self.assertEqual(extracted.domains, ['malicious-site.ru'])
        self.assertEqual(extracted.urls, ['http://malicious-site.ru/payload'])
        self.assertEqual(extracted.hashes, [{'value': 'd41d8cd98f00b204e9800998ecf8427e', 'type': 'MD5'}])
        self.assertEqual(extracted.cves, ['CVE-2021-44228'])
        self.assertEqual(extracted.processes, ['powershell.exe', 'evil.ps1'])
        self.assertEqual(extracted.count(), 8)

    def test_file_names_are_not_domains(self):
        """Test that executables and documents are not reported as domains"""
        domains = self.extractor.extract_domains('Opened report.docx then ran setup.exe and loader.dll')
        self.assertEqual(domains, [])

    def test_hash_types(self):
        """Test hash classification by length"""
        sha256 = 'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
        sha1 = 'da39a3ee5e6b4b0d3255bfef95601890afd80709'
        hashes = self.extractor.extract_hashes(f"{sha256} {sha1}")

        self.assertEqual(hashes, [
            {'value': sha256, 'type': 'SHA256'},
            {'value': sha1, 'type': 'SHA1'}
        ])

    def test_deduplication_keeps_first_seen_order(self):
        """Test duplicate removal"""
        ips = self.extractor.extract_ips('8.8.4.4 1.1.1.1 8.8.4.4 1.1.1.1')
        self.assertEqual(ips, ['8.8.4.4', '1.1.1.1'])

    def test_per_type_cap(self):
        """Test configured cap per indicator type"""
        text = ' '.join(f'203.0.113.{i}' for i in range(1, 9))

        self.assertEqual(len(self.extractor.extract(text).ips), 5)
        self.assertEqual(len(IndicatorExtractor({'max_per_type': 2}).extract(text).ips), 2)
        self.assertEqual(len(self.extractor.extract(text, limit=8).ips), 8)

    def test_empty_input(self):
        """Test empty text"""
        extracted = self.extractor.extract('')
        self.assertTrue(extracted.is_empty())
        self.assertEqual(extracted.to_dict()['ips'], [])

    def test_extraction_is_deterministic(self):
        """Test repeated extraction yields identical output"""
        first = self.extractor.extract(SAMPLE_LOG).to_dict()
        second = self.extractor.extract(SAMPLE_LOG).to_dict()
        self.assertEqual(first, second)


class TestExtractedIndicators(unittest.TestCase):
    """Test ExtractedIndicators container"""

    def test_to_dict(self):
        """Test dictionary conversion"""
        extracted = ExtractedIndicators(ips=['1.2.3.4'], hashes=[{'value': 'ab' * 16, 'type': 'MD5'}])
        data = extracted.to_dict()

        self.assertEqual(data['ips'], ['1.2.3.4'])
        self.assertEqual(data['hashes'][0]['type'], 'MD5')
        self.assertEqual(extracted.hash_values, ['ab' * 16])

    def test_indicator_type_values(self):
        """Test IndicatorType values"""
        self.assertEqual(IndicatorType.IP.value, 'IP')
        self.assertEqual(IndicatorType.PROCESS.value, 'Process')


if __name__ == '__main__':
    unittest.main()
