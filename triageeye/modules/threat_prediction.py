#!/usr/bin/env python3
"""
Threat Prediction Module for TriageEye
Forecasts the near-term threat level from the incident history.
"""

import logging
import pandas as pd
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .indicator_extractor import is_private_ip

logger = logging.getLogger('triageeye.threat_prediction')

SEVERITY_SCORES = {'critical': 4, 'high': 3, 'medium': 2, 'low': 1, 'informational': 0}

FACTOR_WEIGHTS = {
    'Incident Volume': 25,
    'High Severity Incidents': 30,
    'Detection Accuracy': 20,
    'Attack Technique Diversity': 15,
    'AI Analysis Confidence': 10,
}

LEVEL_RECOMMENDATIONS = [
    (80, ['Activate incident response team and implement enhanced monitoring protocols',
          'Consider threat hunting activities to identify advanced persistent threats',
          'Review and update security controls based on current threat landscape']),
    (60, ['Increase security monitoring frequency and alert sensitivity',
          'Conduct security awareness training for high-risk user groups',
          'Review access controls and implement principle of least privilege']),
    (40, ['Maintain current security posture with regular monitoring',
          'Update threat intelligence feeds and security signatures',
          'Schedule routine security assessments and penetration testing']),
    (0, ['Continue baseline security monitoring and maintenance',
         'Focus on preventive security measures and user education',
         'Review and optimize security tool configurations']),
]

PREDICTION_RECOMMENDATIONS = {
    'Advanced Persistent Threat (APT)': 'Deploy advanced threat detection tools and behavioral analytics',
    'Lateral Movement Attack': 'Implement network segmentation and micro-segmentation strategies',
    'Data Exfiltration Attempt': 'Enable data loss prevention (DLP) tools and monitor data flows',
    'Credential Compromise': 'Enforce multi-factor authentication and monitor privileged accounts',
    'Malware Deployment': 'Update endpoint protection and implement application whitelisting',
}

FACTOR_RECOMMENDATIONS = {
    'Incident Volume': 'Investigate root causes of increasing incident volume',
    'High Severity Incidents': 'Focus resources on critical vulnerability remediation',
    'Attack Technique Diversity': 'Diversify security controls to address multiple attack vectors',
}


def incidents_frame(incidents: List[Dict]) -> pd.DataFrame:
    """
    Normalize incident records into a DataFrame

    Columns: created_at, severity, severity_score, classification,
    confidence, mitre_techniques, iocs, log_data. Ordered oldest first.
    """
    columns = ['created_at', 'severity', 'classification', 'confidence', 'mitre_techniques', 'iocs', 'log_data']
    frame = pd.DataFrame([{column: incident.get(column) for column in columns} for incident in incidents or []],
                         columns=columns)

    frame['created_at'] = pd.to_datetime(frame['created_at'], errors='coerce')
    if getattr(frame['created_at'].dt, 'tz', None) is not None:
        frame['created_at'] = frame['created_at'].dt.tz_localize(None)
    frame['severity'] = frame['severity'].fillna('').astype(str).str.lower()
    frame['severity_score'] = frame['severity'].map(SEVERITY_SCORES).fillna(0)
    frame['classification'] = frame['classification'].fillna('')
    frame['confidence'] = pd.to_numeric(frame['confidence'], errors='coerce').fillna(0)
    frame['mitre_techniques'] = frame['mitre_techniques'].apply(lambda value: list(value) if value else [])
    frame['iocs'] = frame['iocs'].apply(lambda value: list(value) if value else [])
    frame['log_data'] = frame['log_data'].fillna('').astype(str).str.lower()

    frame = frame.dropna(subset=['created_at'])
    return frame.sort_values('created_at', kind='stable').reset_index(drop=True)


def _trend(difference: float, tolerance: float) -> str:
    if abs(difference) < tolerance:
        return 'stable'
    return 'up' if difference > 0 else 'down'


class ThreatPredictionEngine:
    """Weighted-factor threat forecast over historical incidents"""

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.window_days = self.config.get('window_days', 30)

    def generate_prediction(self, incidents: List[Dict], now: Optional[datetime] = None) -> Dict:
        """
        Generate a threat prediction

        Args:
            incidents: Stored incident records
            now: Reference time, defaults to the current time

        Returns:
            Dictionary with overall threat level, confidence, trend,
            predictions, factors and recommendations
        """
        now = now or datetime.now()

        try:
            frame = incidents_frame(incidents)
            recent = frame[frame['created_at'] >= now - timedelta(days=self.window_days)]

            factors = self.analyze_factors(frame, recent, now)
            threat_level = self.calculate_threat_level(factors, recent, now)
            predictions = self.generate_predictions(recent)

            return {
                'overall_threat_level': int(round(float(threat_level))),
                'confidence': int(round(float(self.calculate_confidence(frame, now)))),
                'risk_trend': self.calculate_risk_trend(frame, now),
                'predictions': predictions,
                'factors': factors,
                'recommendations': self.generate_recommendations(threat_level, predictions, factors),
                'incident_count': len(frame),
                'last_updated': now.isoformat()
            }

        except Exception as e:
            self.logger.error(f"Error generating threat prediction: {e}")
            return {
                'overall_threat_level': 0,
                'confidence': 50,
                'risk_trend': 'stable',
                'predictions': [],
                'factors': [],
                'recommendations': [],
                'incident_count': 0,
                'last_updated': now.isoformat(),
                'error': str(e)
            }

    def analyze_factors(self, frame: pd.DataFrame, recent: pd.DataFrame, now: datetime) -> List[Dict]:
        factors = []
        recent_count = max(1, len(recent))

        if frame.empty:
            weeks = 1
        else:
            weeks = max(1, int((now - frame['created_at'].min()).total_seconds() // (7 * 24 * 3600)))
        average_weekly = len(frame) / weeks
        recent_weekly = len(recent) / 4
        factors.append(self._factor(
            'Incident Volume',
            min(95, (recent_weekly / max(1, average_weekly)) * 50),
            _trend(recent_weekly - average_weekly, 1e-9)
        ))

        high_severity = recent['severity'].isin(['critical', 'high']).sum()
        factors.append(self._factor(
            'High Severity Incidents',
            round(high_severity / recent_count * 100),
            self._window_trend(frame, lambda window: window['severity_score'].mean(), 0.3)
        ))

        false_positives = (recent['classification'] == 'false-positive').sum()
        factors.append(self._factor(
            'Detection Accuracy',
            round(100 - false_positives / recent_count * 100),
            self._window_trend(frame, lambda window: (window['classification'] == 'false-positive').mean(), 0.1)
        ))

        techniques = {technique for values in recent['mitre_techniques'] for technique in values}
        factors.append(self._factor(
            'Attack Technique Diversity',
            min(90, len(techniques) * 10),
            self._window_trend(frame, lambda window: (window['mitre_techniques'].apply(len) > 0).mean(), 0.1)
        ))

        factors.append(self._factor(
            'AI Analysis Confidence',
            round(recent['confidence'].sum() / recent_count),
            self._window_trend(frame, lambda window: window['confidence'].mean(), 5)
        ))

        return factors

    def calculate_threat_level(self, factors: List[Dict], recent: pd.DataFrame, now: datetime) -> float:
        total_weight = sum(factor['weight'] for factor in factors)
        weighted = sum(factor['contribution'] * factor['weight'] for factor in factors) / max(1, total_weight)

        modifier = 1.0
        last_week = recent[recent['created_at'] > now - timedelta(days=7)]
        if (last_week['severity'] == 'critical').any():
            modifier += 0.2

        if len(recent) and (recent['classification'] == 'true-positive').sum() / len(recent) > 0.7:
            modifier += 0.15

        return min(100, weighted * modifier)

    def calculate_risk_trend(self, frame: pd.DataFrame, now: datetime) -> str:
        """Week-over-week change in average severity"""
        if len(frame) < 10:
            return 'stable'

        last_week = frame[frame['created_at'] > now - timedelta(days=7)]
        previous_week = frame[(frame['created_at'] > now - timedelta(days=14)) &
                              (frame['created_at'] <= now - timedelta(days=7))]

        difference = self._mean_severity(last_week) - self._mean_severity(previous_week)
        if abs(difference) < 0.5:
            return 'stable'
        return 'increasing' if difference > 0 else 'decreasing'

    def generate_predictions(self, recent: pd.DataFrame) -> List[Dict]:
        predictions = []

        technique_count = len({technique for values in recent['mitre_techniques'] for technique in values})
        if technique_count > 3:
            predictions.append({
                'category': 'Advanced Persistent Threat (APT)',
                'likelihood': min(95, 40 + technique_count * 10),
                'timeframe': '7-14 days',
                'description': 'Sophisticated, multi-stage attack targeting high-value assets with persistent access.',
                'impact': 'critical' if technique_count > 5 else 'high'
            })

        internal = recent['iocs'].apply(
            lambda iocs: any(is_private_ip(str(ioc)) for ioc in iocs)
        ).sum()
        if internal > 2:
            predictions.append({
                'category': 'Lateral Movement Attack',
                'likelihood': min(90, 30 + internal * 15),
                'timeframe': '3-7 days',
                'description': 'Attacker attempting to move laterally through network infrastructure.',
                'impact': 'high'
            })

        data_threats = recent['log_data'].str.contains('data|file|download', regex=True).sum()
        if data_threats > 1:
            predictions.append({
                'category': 'Data Exfiltration Attempt',
                'likelihood': min(85, 25 + data_threats * 20),
                'timeframe': '1-5 days',
                'description': 'Potential unauthorized data access and exfiltration activities detected.',
                'impact': 'critical'
            })

        auth_events = recent['log_data'].str.contains('login|auth|password', regex=True).sum()
        if auth_events > 2:
            predictions.append({
                'category': 'Credential Compromise',
                'likelihood': min(80, 35 + auth_events * 12),
                'timeframe': '2-6 days',
                'description': 'Multiple authentication anomalies suggest potential credential compromise.',
                'impact': 'high'
            })

        serious = ((recent['classification'] == 'true-positive') &
                   recent['severity'].isin(['critical', 'high'])).sum()
        if serious > 1:
            predictions.append({
                'category': 'Malware Deployment',
                'likelihood': min(75, 20 + serious * 18),
                'timeframe': '1-3 days',
                'description': 'Pattern of high-confidence threats suggests possible malware activity.',
                'impact': 'high'
            })

        if not predictions:
            predictions.append({
                'category': 'General Security Event',
                'likelihood': 35,
                'timeframe': '7-14 days',
                'description': 'Baseline security monitoring indicates normal threat levels.',
                'impact': 'medium'
            })

        for prediction in predictions:
            prediction['likelihood'] = int(prediction['likelihood'])

        return predictions[:5]

    def calculate_confidence(self, frame: pd.DataFrame, now: datetime) -> float:
        confidence = 50
        total = len(frame)

        if total > 20:
            confidence += 20
        elif total > 10:
            confidence += 10
        elif total > 5:
            confidence += 5

        recent_count = (frame['created_at'] > now - timedelta(days=7)).sum()
        if recent_count > 3:
            confidence += 15
        elif recent_count > 1:
            confidence += 10

        if total:
            confidence += (frame['classification'] != '').mean() * 15
            confidence += (frame['mitre_techniques'].apply(len) > 0).mean() * 10

        return min(95, confidence)

    def generate_recommendations(self, threat_level: float, predictions: List[Dict],
                                 factors: List[Dict]) -> List[str]:
        recommendations = []

        for minimum, items in LEVEL_RECOMMENDATIONS:
            if threat_level >= minimum:
                recommendations.extend(items)
                break

        for prediction in predictions:
            item = PREDICTION_RECOMMENDATIONS.get(prediction['category'])
            if item:
                recommendations.append(item)

        for factor in factors:
            if factor['contribution'] > 70 and factor['trend'] == 'up':
                item = FACTOR_RECOMMENDATIONS.get(factor['name'])
                if item:
                    recommendations.append(item)

        return list(dict.fromkeys(recommendations))[:6]

    def _factor(self, name: str, contribution: float, trend: str) -> Dict:
        return {
            'name': name,
            'weight': FACTOR_WEIGHTS[name],
            'contribution': round(float(contribution), 2),
            'trend': trend
        }

    def _window_trend(self, frame: pd.DataFrame, metric, tolerance: float) -> str:
        """Compare the last six incidents with the six before them"""
        if len(frame) < 6:
            return 'stable'

        recent = frame.iloc[-6:]
        older = frame.iloc[-12:-6]
        older_value = metric(older) if len(older) else 0
        return _trend(float(metric(recent)) - float(older_value), tolerance)

    def _mean_severity(self, frame: pd.DataFrame) -> float:
        return float(frame['severity_score'].mean()) if len(frame) else 0.0
