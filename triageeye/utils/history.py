#!/usr/bin/env python3
"""
Incident History Store for TriageEye
Thread-safe record of analyzed incidents with optional JSON persistence.
"""

import os
import re
import json
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

logger = logging.getLogger('triageeye.history')

INCIDENT_ID_PATTERN = re.compile(r'^INC-(\d{8})-(\d+)$')


def build_record(result: Dict) -> Dict:
    """
    Flatten an analysis result into a stored incident record

    Args:
        result: Output of IncidentAnalyzer.analyze

    Returns:
        Record with the fields used by similarity search and prediction
    """
    incident = result.get('incident', {})
    mitre = result.get('mitre_mapping', {})
    return {
        'incident_id': incident.get('incident_id'),
        'title': incident.get('title', ''),
        'log_data': incident.get('log_data', ''),
        'additional_logs': incident.get('additional_logs', ''),
        'system_context': incident.get('system_context', ''),
        'severity': result.get('adjusted_severity') or incident.get('severity'),
        'classification': result.get('classification'),
        'confidence': result.get('confidence'),
        'mitre_techniques': [] if mitre.get('is_default') else
        [technique['id'] for technique in mitre.get('techniques', [])],
        'iocs': [ioc['value'] for ioc in result.get('iocs', [])],
        'created_at': result.get('timestamp') or datetime.now().isoformat()
    }


class IncidentHistory:
    """
    In-memory incident store, oldest first.

    When a path is configured the store is loaded on construction and
    rewritten after every change.
    """

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger

        self.path = self.config.get('path')
        self.max_size = self.config.get('max_size', 1000)

        self._lock = threading.RLock()
        self._records: List[Dict] = []
        self._counter = 0

        if self.path:
            self.load()

    def add(self, record: Dict) -> Dict:
        """Store a record, assigning an incident id when missing"""
        with self._lock:
            record = dict(record)
            if not record.get('incident_id'):
                existing = {stored.get('incident_id') for stored in self._records}
                incident_id = None
                while incident_id is None or incident_id in existing:
                    self._counter += 1
                    incident_id = f"INC-{datetime.now().strftime('%Y%m%d')}-{self._counter:04d}"
                record['incident_id'] = incident_id
            record.setdefault('created_at', datetime.now().isoformat())

            self._records.append(record)
            if len(self._records) > self.max_size:
                self._records = self._records[-self.max_size:]

            self._save()
            return record

    def add_result(self, result: Dict) -> Dict:
        return self.add(build_record(result))

    def get(self, incident_id: str) -> Optional[Dict]:
        with self._lock:
            for record in self._records:
                if record.get('incident_id') == incident_id:
                    return dict(record)
        return None

    def list(self, limit: Optional[int] = None) -> List[Dict]:
        """Records, newest first"""
        with self._lock:
            records = [dict(record) for record in reversed(self._records)]
        return records[:limit] if limit else records

    def all(self) -> List[Dict]:
        """Records, oldest first"""
        with self._lock:
            return [dict(record) for record in self._records]

    def clear(self) -> None:
        with self._lock:
            self._records = []
            self._save()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def load(self) -> None:
        """Load records from the configured JSON file"""
        if not self.path or not os.path.exists(self.path):
            return

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            with self._lock:
                self._records = [record for record in data if isinstance(record, dict)][-self.max_size:]
                self._counter = self._highest_sequence()
            self.logger.info(f"Loaded {len(self._records)} incidents from {self.path}")
        except Exception as e:
            self.logger.error(f"Error loading incident history from {self.path}: {e}")

    def _highest_sequence(self) -> int:
        """Largest sequence number among today's stored incident ids"""
        today = datetime.now().strftime('%Y%m%d')
        sequence = 0
        for record in self._records:
            match = INCIDENT_ID_PATTERN.match(str(record.get('incident_id') or ''))
            if match and match.group(1) == today:
                sequence = max(sequence, int(match.group(2)))
        return sequence

    def _save(self) -> None:
        if not self.path:
            return

        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump(self._records, f, indent=2)
        except Exception as e:
            self.logger.error(f"Error saving incident history to {self.path}: {e}")
