#!/usr/bin/env python3
"""
Unit tests for Incident History store
"""

import unittest
import json
import os
import sys
import tempfile

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))))

from triageeye.utils.history import IncidentHistory, build_record


ANALYSIS_RESULT = {
    'incident': {
        'incident_id': 'INC-42',
        'title': 'Credential theft',
        'log_data': 'mimikatz.exe accessed lsass.exe',
        'additional_logs': '',
        'system_context': 'domain controller',
        'severity': 'high'
    },
    'classification': 'true-positive',
    'confidence': 95,
    'adjusted_severity': 'critical',
    'mitre_mapping': {'is_default': False, 'techniques': [{'id': 'T1003'}, {'id': 'T1003.001'}]},
    'iocs': [{'type': 'Process', 'value': 'mimikatz.exe'}],
    'timestamp': '2026-03-01T12:00:00'
}


class TestBuildRecord(unittest.TestCase):
    """Test record flattening"""

    def test_build_record(self):
        """Test stored fields"""
        record = build_record(ANALYSIS_RESULT)

        self.assertEqual(record['incident_id'], 'INC-42')
        self.assertEqual(record['severity'], 'critical')
        self.assertEqual(record['mitre_techniques'], ['T1003', 'T1003.001'])
        self.assertEqual(record['iocs'], ['mimikatz.exe'])
        self.assertEqual(record['created_at'], '2026-03-01T12:00:00')

    def test_default_mapping_has_no_techniques(self):
        """Test the fallback technique is not stored"""
        result = dict(ANALYSIS_RESULT, mitre_mapping={'is_default': True, 'techniques': [{'id': 'T1078'}]})
        self.assertEqual(build_record(result)['mitre_techniques'], [])


class TestIncidentHistory(unittest.TestCase):
    """Test IncidentHistory class"""

    def setUp(self):
        """Set up test fixtures"""
        self.history = IncidentHistory()

    def test_add_assigns_id(self):
        """Test incident ids are generated when missing"""
        first = self.history.add({'log_data': 'one'})
        second = self.history.add({'log_data': 'two'})

        self.assertTrue(first['incident_id'].startswith('INC-'))
        self.assertTrue(first['incident_id'].endswith('-0001'))
        self.assertNotEqual(first['incident_id'], second['incident_id'])
        self.assertIn('created_at', first)

    def test_get_list_all(self):
        """Test lookups and ordering"""
        for i in range(3):
            self.history.add({'incident_id': f'INC-{i}'})

        self.assertEqual(self.history.get('INC-1')['incident_id'], 'INC-1')
        self.assertIsNone(self.history.get('INC-9'))
        self.assertEqual([r['incident_id'] for r in self.history.list()], ['INC-2', 'INC-1', 'INC-0'])
        self.assertEqual([r['incident_id'] for r in self.history.list(limit=1)], ['INC-2'])
        self.assertEqual([r['incident_id'] for r in self.history.all()], ['INC-0', 'INC-1', 'INC-2'])

    def test_returned_records_are_copies(self):
        """Test callers cannot mutate stored records"""
        self.history.add({'incident_id': 'INC-1', 'severity': 'low'})
        self.history.get('INC-1')['severity'] = 'critical'

        self.assertEqual(self.history.get('INC-1')['severity'], 'low')

    def test_max_size(self):
        """Test oldest records are dropped"""
        history = IncidentHistory({'max_size': 2})
        for i in range(3):
            history.add({'incident_id': f'INC-{i}'})

        self.assertEqual(len(history), 2)
        self.assertIsNone(history.get('INC-0'))

    def test_clear(self):
        """Test clearing the store"""
        self.history.add_result(ANALYSIS_RESULT)
        self.history.clear()

        self.assertEqual(len(self.history), 0)


class TestHistoryPersistence(unittest.TestCase):
    """Test JSON persistence"""

    def setUp(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.temp_dir.name, 'data', 'incidents.json')

    def tearDown(self):
        """Clean up temporary files"""
        self.temp_dir.cleanup()

    def test_save_and_reload(self):
        """Test records survive a restart"""
        history = IncidentHistory({'path': self.path})
        history.add_result(ANALYSIS_RESULT)
        history.add({'log_data': 'second'})

        with open(self.path, 'r') as f:
            self.assertEqual(len(json.load(f)), 2)

        reloaded = IncidentHistory({'path': self.path})
        self.assertEqual(len(reloaded), 2)
        self.assertEqual(reloaded.get('INC-42')['classification'], 'true-positive')

        added = reloaded.add({'log_data': 'third'})
        ids = [record['incident_id'] for record in reloaded.all()]
        self.assertEqual(len(set(ids)), 3)
        self.assertTrue(added['incident_id'].endswith('-0002'))

    def test_reload_after_trimming(self):
        """Test ids stay unique when the store was trimmed before a restart"""
        history = IncidentHistory({'path': self.path, 'max_size': 2})
        for i in range(3):
            history.add({'log_data': f'event {i}'})

        reloaded = IncidentHistory({'path': self.path, 'max_size': 2})
        added = reloaded.add({'log_data': 'event 3'})

        ids = [record['incident_id'] for record in reloaded.all()]
        self.assertEqual(len(set(ids)), 2)
        self.assertTrue(added['incident_id'].endswith('-0004'))
        self.assertEqual(reloaded.get(added['incident_id'])['log_data'], 'event 3')

    def test_explicit_ids_are_skipped(self):
        """Test generated ids never collide with stored ones"""
        history = IncidentHistory()
        taken = history.add({'log_data': 'first'})['incident_id']
        history.add({'incident_id': taken.replace('-0001', '-0002')})

        added = history.add({'log_data': 'third'})
        self.assertTrue(added['incident_id'].endswith('-0003'))

    def test_corrupt_file(self):
        """Test an unreadable file leaves the store empty"""
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, 'w') as f:
            f.write('{not json')

        self.assertEqual(len(IncidentHistory({'path': self.path})), 0)


if __name__ == '__main__':
    unittest.main()
