#!/usr/bin/env python3
"""
Unit tests for Web API
"""

import unittest
from unittest.mock import Mock
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))))

from triageeye.web.api import create_api_app, EXPORT_FIELDS


CREDENTIAL_DUMP = {
    'title': 'Credential theft',
    'logData': 'Process mimikatz.exe accessed lsass.exe --dump-memory',
    'severity': 'high'
}


class TestApiServer(unittest.TestCase):
    """Test ApiServer routes"""

    def setUp(self):
        """Set up test fixtures"""
        self.relay = Mock()
        self.relay.relay.return_value = {'success': True, 'attempts': 1}
        self.server = create_api_app({'web': {'max_batch_size': 3}}, relay=self.relay)
        self.client = self.server.app.test_client()

    def test_status(self):
        """Test service status"""
        response = self.client.get('/api/status')
        data = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['status'], 'operational')
        self.assertEqual(data['incidents'], 0)
        self.assertFalse(data['components']['threat_intelligence'])
        self.assertFalse(data['components']['llm'])

    def test_analyze_incident(self):
        """Test incident submission is analyzed and stored"""
        response = self.client.post('/api/incidents/analyze', json=CREDENTIAL_DUMP)
        data = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['classification'], 'true-positive')
        incident_id = data['incident']['incident_id']
        self.assertTrue(incident_id.startswith('INC-'))

        stored = self.client.get(f'/api/incidents/{incident_id}').get_json()
        self.assertEqual(stored['classification'], 'true-positive')

    def test_analyze_with_threat_report(self):
        """Test a supplied threat report is used"""
        payload = dict(CREDENTIAL_DUMP, logData='Beacon to 185.220.101.42', threat_report={
            'risk_score': 90,
            'indicators': [{'type': 'ip', 'value': '185.220.101.42', 'malicious': True, 'threat_score': 95}]
        })

        data = self.client.post('/api/incidents/analyze', json=payload).get_json()

        self.assertEqual(data['threat_report']['threat_level'], 'critical')
        self.assertEqual(data['iocs'][0]['reputation'], 'Malicious')

    def test_threat_report_numeric_strings(self):
        """Test numeric strings and null lists in a threat report are accepted"""
        payload = dict(CREDENTIAL_DUMP, threat_report={'risk_score': '90', 'indicators': None})

        response = self.client.post('/api/incidents/analyze', json=payload)
        data = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['threat_report']['risk_score'], 90)
        self.assertEqual(data['threat_report']['indicators'], [])

    def test_malformed_threat_report(self):
        """Test malformed threat reports are rejected with 400"""
        for threat_report in [{'risk_score': 'high'}, {'indicators': 'none'}, {'indicators': ['8.8.8.8']},
                              {'indicators': [{'value': '8.8.8.8', 'threat_score': [90]}]}, 'critical']:
            payload = dict(CREDENTIAL_DUMP, threat_report=threat_report)

            response = self.client.post('/api/incidents/analyze', json=payload)

            self.assertEqual(response.status_code, 400, threat_report)
            self.assertIn('Invalid threat report', response.get_json()['error'])

        self.assertEqual(len(self.server.history), 0)

    def test_analyze_rejects_invalid_payload(self):
        """Test validation errors return 400"""
        response = self.client.post('/api/incidents/analyze', json={'title': 'Empty', 'log_data': '   '})
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.get_json())

        response = self.client.post('/api/incidents/analyze', data='not json', content_type='text/plain')
        self.assertEqual(response.status_code, 400)

    def test_list_and_missing_incident(self):
        """Test listing and 404"""
        for _ in range(2):
            self.client.post('/api/incidents/analyze', json=CREDENTIAL_DUMP)

        data = self.client.get('/api/incidents?limit=1').get_json()
        self.assertEqual(data['total'], 2)
        self.assertEqual(len(data['incidents']), 1)

        self.assertEqual(self.client.get('/api/incidents/INC-missing').status_code, 404)

    def test_webhook_list_payload(self):
        """Test a bare list of log lines"""
        response = self.client.post('/api/webhooks/splunk', json=[
            'Process mimikatz.exe accessed lsass.exe',
            {'log_data': 'Windows Update service started'},
            {'log_data': ''}
        ])
        data = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['source'], 'splunk')
        self.assertEqual(data['processed'], 2)
        self.assertEqual(data['failed'], 1)
        self.assertEqual(data['results'][0]['classification'], 'true-positive')
        self.assertEqual(data['results'][2]['index'], 2)
        self.assertIn('error', data['results'][2])
        self.assertEqual(data['deliveries'], [])
        self.relay.relay.assert_not_called()

        titles = [record['title'] for record in self.server.history.all()]
        self.assertEqual(titles, ['splunk event 1', 'splunk event 2'])

    def test_webhook_with_callback(self):
        """Test results are relayed to the callback URL"""
        response = self.client.post('/api/webhooks/sentinel', json={
            'entries': ['Process mimikatz.exe accessed lsass.exe'],
            'callback_url': 'https://soar.example.org/callback'
        })
        data = response.get_json()

        self.assertEqual(data['deliveries'], [{'success': True, 'attempts': 1}])
        url, payload = self.relay.relay.call_args[0]
        self.assertEqual(url, 'https://soar.example.org/callback')
        self.assertEqual(payload['source'], 'sentinel')
        self.assertEqual(payload['result']['classification'], 'true-positive')

    def test_webhook_rejections(self):
        """Test empty, malformed and oversized batches"""
        self.assertEqual(self.client.post('/api/webhooks/splunk', json=[]).status_code, 400)
        self.assertEqual(self.client.post('/api/webhooks/splunk', json={'entries': []}).status_code, 400)
        self.assertEqual(self.client.post('/api/webhooks/splunk', json='text').status_code, 400)
        self.assertEqual(self.client.post('/api/webhooks/splunk', json=['a', 'b', 'c', 'd']).status_code, 413)

    def test_predictions(self):
        """Test prediction over stored incidents"""
        self.client.post('/api/incidents/analyze', json=CREDENTIAL_DUMP)

        data = self.client.get('/api/predictions').get_json()

        self.assertEqual(data['incident_count'], 1)
        self.assertIn('overall_threat_level', data)
        self.assertTrue(data['recommendations'])

    def test_export(self):
        """Test JSON and CSV export"""
        self.client.post('/api/incidents/analyze', json=CREDENTIAL_DUMP)

        self.assertEqual(len(self.client.get('/api/export/incidents').get_json()), 1)

        response = self.client.get('/api/export/incidents?format=csv')
        self.assertEqual(response.mimetype, 'text/csv')
        lines = response.get_data(as_text=True).splitlines()
        self.assertEqual(lines[0], ','.join(EXPORT_FIELDS))
        self.assertEqual(len(lines), 2)

        self.assertEqual(self.client.get('/api/export/incidents?format=xml').status_code, 400)


if __name__ == '__main__':
    unittest.main()
