#!/usr/bin/env python3
"""
Incident input model for TriageEye
"""

import logging
from typing import Dict, Optional

logger = logging.getLogger('triageeye.incident')


class IncidentValidationError(ValueError):
    """Raised when caller-supplied incident data is missing required fields"""


class Severity:
    """Incident severity levels"""
    CRITICAL = 'critical'
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'
    INFORMATIONAL = 'informational'

    ALL = [CRITICAL, HIGH, MEDIUM, LOW, INFORMATIONAL]

    @staticmethod
    def get_numeric_value(severity: str) -> int:
        """Get numeric value for severity comparison"""
        severity_map = {
            Severity.CRITICAL: 4,
            Severity.HIGH: 3,
            Severity.MEDIUM: 2,
            Severity.LOW: 1,
            Severity.INFORMATIONAL: 0
        }
        return severity_map.get(severity, 0)

    @staticmethod
    def normalize(value: Optional[str]) -> str:
        """Normalize a severity string, defaulting to medium"""
        if not value:
            return Severity.MEDIUM

        severity = str(value).strip().lower()
        aliases = {'info': Severity.INFORMATIONAL, 'crit': Severity.CRITICAL, 'med': Severity.MEDIUM}
        severity = aliases.get(severity, severity)

        if severity not in Severity.ALL:
            logger.warning(f"Unknown severity '{value}', using medium")
            return Severity.MEDIUM
        return severity


class IncidentInput:
    """
    Raw incident submitted for analysis.

    Attributes are fixed at construction and never modified by the engine.
    """

    __slots__ = ('_title', '_log_data', '_system_context', '_additional_logs', '_severity', '_incident_id')

    def __init__(self,
                 title: str = '',
                 log_data: str = '',
                 system_context: str = '',
                 additional_logs: str = '',
                 severity: str = Severity.MEDIUM,
                 incident_id: Optional[str] = None):
        object.__setattr__(self, '_title', title or '')
        object.__setattr__(self, '_log_data', log_data or '')
        object.__setattr__(self, '_system_context', system_context or '')
        object.__setattr__(self, '_additional_logs', additional_logs or '')
        object.__setattr__(self, '_severity', Severity.normalize(severity))
        object.__setattr__(self, '_incident_id', incident_id)

    def __setattr__(self, name, value):
        raise AttributeError("IncidentInput is immutable")

    @property
    def title(self) -> str:
        return self._title

    @property
    def log_data(self) -> str:
        return self._log_data

    @property
    def system_context(self) -> str:
        return self._system_context

    @property
    def additional_logs(self) -> str:
        return self._additional_logs

    @property
    def severity(self) -> str:
        return self._severity

    @property
    def incident_id(self) -> Optional[str]:
        return self._incident_id

    @property
    def analysis_text(self) -> str:
        """Text scored by the engine: title, log data and supplementary logs"""
        return '\n'.join(part for part in (self._title, self._log_data, self._additional_logs) if part)

    def to_dict(self) -> Dict:
        return {
            'incident_id': self._incident_id,
            'title': self._title,
            'log_data': self._log_data,
            'system_context': self._system_context,
            'additional_logs': self._additional_logs,
            'severity': self._severity
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'IncidentInput':
        """
        Create an IncidentInput from caller-supplied data

        Accepts both snake_case and camelCase field names.

        Raises:
            IncidentValidationError: if the payload is not a mapping or has no log text
        """
        if not isinstance(data, dict):
            raise IncidentValidationError("Incident payload must be an object")

        log_data = data.get('log_data') or data.get('logData') or data.get('message') or data.get('raw')
        if not log_data or not str(log_data).strip():
            raise IncidentValidationError("Incident log data is required")

        return cls(
            title=str(data.get('title') or data.get('name') or ''),
            log_data=str(log_data),
            system_context=str(data.get('system_context') or data.get('systemContext') or ''),
            additional_logs=str(data.get('additional_logs') or data.get('additionalLogs') or ''),
            severity=data.get('severity'),
            incident_id=data.get('incident_id') or data.get('id')
        )
