#!/usr/bin/env python3
"""
Unit tests for Pattern Matching module
"""

import unittest
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))))

from triageeye.modules.pattern_matcher import (
    PatternMatcher, PatternMatch, LogPattern, Significance, PATTERN_CATALOGUE
)


class TestLogPattern(unittest.TestCase):
    """Test LogPattern class"""

    def setUp(self):
        """Set up test fixtures"""
        self.pattern = LogPattern(
            pattern_id='TEST001',
            name='Test Pattern',
            significance=Significance.MEDIUM,
            description='Test pattern description',
            indicators=[
                {'type': 'contains', 'value': 'suspicious'},
                {'type': 'regex', 'value': r'port\s+\d+', 'label': 'port reference'},
                {'type': 'all_of', 'value': ['alpha', 'beta']}
            ]
        )

    def test_contains_indicator(self):
        """Test substring indicator"""
        matched, terms = self.pattern.match('a suspicious entry')
        self.assertTrue(matched)
        self.assertEqual(terms, ['suspicious'])

    def test_regex_indicator_uses_label(self):
        """Test regex indicator reports its label"""
        matched, terms = self.pattern.match('listening on port 4444')
        self.assertTrue(matched)
        self.assertEqual(terms, ['port reference'])

    def test_all_of_indicator(self):
        """Test conjunction indicator"""
        self.assertFalse(self.pattern.match('alpha only')[0])
        self.assertTrue(self.pattern.match('alpha and beta')[0])

    def test_no_match(self):
        """Test text that matches nothing"""
        matched, terms = self.pattern.match('routine entry')
        self.assertFalse(matched)
        self.assertEqual(terms, [])


class TestPatternMatcher(unittest.TestCase):
    """Test PatternMatcher class"""

    def setUp(self):
        """Set up test fixtures"""
        self.matcher = PatternMatcher()

    def test_credential_dumping(self):
        """Test credential dumping detection"""
        matches = self.matcher.match('Process mimikatz.exe accessed lsass.exe --dump-memory')

        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0].name, 'Credential Dumping')
        self.assertEqual(matches[0].significance, Significance.HIGH)
        self.assertEqual(matches[0].pattern_id, 'CRED001')

    def test_case_insensitive(self):
        """Test matching ignores case"""
        matches = self.matcher.match('MIMIKATZ SEKURLSA::LOGONPASSWORDS')
        self.assertEqual(matches[0].name, 'Credential Dumping')

    def test_output_follows_catalogue_order(self):
        """Test multiple matches are ordered like the catalogue"""
        matches = self.matcher.match('whoami /all && mimikatz && schtasks /create /tn updater')
        names = [match.name for match in matches]

        self.assertEqual(names, ['Credential Dumping', 'Persistence Mechanism', 'Reconnaissance'])

        catalogue_names = [pattern.name for pattern in PATTERN_CATALOGUE]
        self.assertEqual(names, sorted(names, key=catalogue_names.index))

    def test_general_activity_fallback(self):
        """Test fallback for text without known patterns"""
        for text in ['', 'User opened the quarterly report', None]:
            matches = self.matcher.match(text)
            self.assertEqual(len(matches), 1)
            self.assertEqual(matches[0].name, 'General System Activity')
            self.assertEqual(matches[0].significance, Significance.LOW)

    def test_encoded_powershell(self):
        """Test obfuscated scripting detection"""
        matches = self.matcher.match('powershell.exe -nop -w hidden -enc JABjAGwAaQBlAG4AdAA=')
        self.assertIn('Obfuscated Scripting', [match.name for match in matches])

    def test_invalid_custom_pattern_is_skipped(self):
        """Test a broken expression does not abort matching"""
        broken = LogPattern('BAD001', 'Broken', Significance.LOW, 'Broken regex',
                            [{'type': 'regex', 'value': '(unclosed'}])
        good = LogPattern('GOOD001', 'Good', Significance.HIGH, 'Good pattern',
                          [{'type': 'contains', 'value': 'marker'}])
        matcher = PatternMatcher(patterns=[broken, good])

        matches = matcher.match('marker present')
        self.assertEqual([match.name for match in matches], ['Good'])

    def test_matching_is_deterministic(self):
        """Test repeated matching yields equal results"""
        text = 'psexec \\\\host -s cmd.exe; nltest /domain_trusts'
        self.assertEqual(self.matcher.match(text), self.matcher.match(text))


class TestPatternMatch(unittest.TestCase):
    """Test PatternMatch class"""

    def test_to_dict(self):
        """Test dictionary conversion"""
        match = PatternMatch('Reconnaissance', Significance.MEDIUM, 'Discovery commands', 'RECON001')
        self.assertEqual(match.to_dict(), {
            'name': 'Reconnaissance',
            'significance': 'Medium',
            'description': 'Discovery commands',
            'pattern_id': 'RECON001'
        })

    def test_significance_numeric_value(self):
        """Test significance ordering"""
        self.assertGreater(Significance.get_numeric_value(Significance.HIGH),
                           Significance.get_numeric_value(Significance.MEDIUM))
        self.assertGreater(Significance.get_numeric_value(Significance.MEDIUM),
                           Significance.get_numeric_value(Significance.LOW))


if __name__ == '__main__':
    unittest.main()
