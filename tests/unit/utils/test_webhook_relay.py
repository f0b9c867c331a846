#!/usr/bin/env python3
"""
Unit tests for Result Relay module
"""

import unittest
from unittest.mock import Mock, patch
import os
import sys
import requests

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))))

from triageeye.utils.webhook_relay import ResultRelay


CALLBACK_URL = 'https://soar.example.org/callback'
PAYLOAD = {'incident_id': 'INC-1', 'classification': 'true-positive'}


def _response(status_code=200):
    response = Mock()
    response.status_code = status_code
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Server Error")
    return response


@patch('triageeye.utils.webhook_relay.time.sleep')
@patch('triageeye.utils.webhook_relay.requests.post')
class TestResultRelay(unittest.TestCase):
    """Test ResultRelay class"""

    def setUp(self):
        """Set up test fixtures"""
        self.relay = ResultRelay({'headers': {'X-Source': 'triageeye'}})

    def test_first_attempt_success(self, mock_post, mock_sleep):
        """Test a successful delivery is not retried"""
        mock_post.return_value = _response()

        record = self.relay.relay(CALLBACK_URL, PAYLOAD)

        self.assertTrue(record['success'])
        self.assertEqual(record['attempts'], 1)
        self.assertEqual(record['status_code'], 200)
        self.assertIsNone(record['error'])
        mock_sleep.assert_not_called()
        mock_post.assert_called_once_with(CALLBACK_URL, json=PAYLOAD,
                                          headers={'X-Source': 'triageeye'}, timeout=10)

    def test_retry_with_backoff(self, mock_post, mock_sleep):
        """Test failed attempts are retried with doubling delays"""
        mock_post.side_effect = [_response(503), requests.ConnectionError('reset'), _response()]

        record = self.relay.relay(CALLBACK_URL, PAYLOAD)

        self.assertTrue(record['success'])
        self.assertEqual(record['attempts'], 3)
        self.assertEqual([call[0][0] for call in mock_sleep.call_args_list], [1.0, 2.0])

    def test_give_up(self, mock_post, mock_sleep):
        """Test delivery stops after max attempts without a trailing sleep"""
        mock_post.return_value = _response(500)

        record = self.relay.relay(CALLBACK_URL, PAYLOAD)

        self.assertFalse(record['success'])
        self.assertEqual(record['attempts'], 3)
        self.assertEqual(record['status_code'], 500)
        self.assertIn('500', record['error'])
        self.assertEqual(mock_post.call_count, 3)
        self.assertEqual(mock_sleep.call_count, 2)

    def test_backoff_delay(self, mock_post, mock_sleep):
        """Test delay schedule"""
        relay = ResultRelay({'base_delay': 0.5})

        self.assertEqual([relay.backoff_delay(attempt) for attempt in range(4)], [0.5, 1.0, 2.0, 4.0])

    def test_statistics_and_history(self, mock_post, mock_sleep):
        """Test delivery history and counters"""
        relay = ResultRelay({'max_attempts': 1, 'max_history': 2})
        mock_post.side_effect = [_response(), _response(404), _response()]

        for _ in range(3):
            relay.relay(CALLBACK_URL, PAYLOAD)

        self.assertEqual(len(relay.deliveries), 2)
        self.assertEqual(relay.get_statistics(), {'total': 2, 'delivered': 1, 'failed': 1})
        mock_sleep.assert_not_called()


if __name__ == '__main__':
    unittest.main()
