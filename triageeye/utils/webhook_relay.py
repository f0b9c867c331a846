#!/usr/bin/env python3
"""
Result Relay for TriageEye
Delivers analysis results back to caller-specified callback URLs with
exponential backoff.
"""

import time
import logging
import requests
from datetime import datetime
from typing import Dict, List

logger = logging.getLogger('triageeye.webhook_relay')


class ResultRelay:
    """
    Posts JSON payloads to callback URLs.

    Payloads are treated as opaque serializable data. A failed delivery is
    retried after base_delay * 2 ** attempt seconds, up to max_attempts in total.
    """

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger

        self.max_attempts = self.config.get('max_attempts', 3)
        self.base_delay = self.config.get('base_delay', 1.0)
        self.timeout = self.config.get('timeout', 10)
        self.headers = self.config.get('headers', {})

        self.deliveries: List[Dict] = []
        self.max_history = self.config.get('max_history', 1000)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given zero-based attempt"""
        return self.base_delay * (2 ** attempt)

    def relay(self, url: str, payload: Dict) -> Dict:
        """
        Deliver a payload

        Args:
            url: Callback URL
            payload: JSON-serializable data

        Returns:
            Delivery record with success flag, attempt count and last error
        """
        record = {
            'url': url,
            'success': False,
            'attempts': 0,
            'status_code': None,
            'error': None,
            'timestamp': datetime.now().isoformat()
        }

        for attempt in range(self.max_attempts):
            record['attempts'] = attempt + 1
            try:
                response = requests.post(url, json=payload, headers=self.headers, timeout=self.timeout)
                record['status_code'] = response.status_code
                response.raise_for_status()

                record['success'] = True
                record['error'] = None
                self.logger.info(f"Relayed result to {url} (attempt {attempt + 1})")
                break

            except Exception as e:
                record['error'] = str(e)
                self.logger.warning(f"Relay to {url} failed (attempt {attempt + 1}/{self.max_attempts}): {e}")

                if attempt + 1 < self.max_attempts:
                    time.sleep(self.backoff_delay(attempt))

        if not record['success']:
            self.logger.error(f"Giving up relaying result to {url} after {record['attempts']} attempts")

        self._store_delivery(record)
        return record

    def _store_delivery(self, record: Dict) -> None:
        self.deliveries.append(record)
        if len(self.deliveries) > self.max_history:
            self.deliveries = self.deliveries[-self.max_history:]

    def get_statistics(self) -> Dict:
        delivered = sum(1 for record in self.deliveries if record['success'])
        return {
            'total': len(self.deliveries),
            'delivered': delivered,
            'failed': len(self.deliveries) - delivered
        }
