#!/usr/bin/env python3
"""
Web API for TriageEye
Incident submission, SIEM webhook ingestion, history and threat prediction
endpoints.
"""

import csv
import io
import logging
from datetime import datetime
from flask import Flask, jsonify, request, Response
from flask_cors import CORS
from typing import Any, Dict, List, Optional

from .. import __version__
from ..modules.incident import IncidentValidationError
from ..modules.incident_analyzer import IncidentAnalyzer
from ..modules.threat_prediction import ThreatPredictionEngine
from ..utils.history import IncidentHistory
from ..utils.threat_intelligence import ThreatReport
from ..utils.webhook_relay import ResultRelay

logger = logging.getLogger('triageeye.api')

EXPORT_FIELDS = ['incident_id', 'created_at', 'title', 'severity', 'classification', 'confidence']


class ApiServer:
    """HTTP API server for TriageEye"""

    def __init__(self,
                 config: Dict = None,
                 analyzer: Optional[IncidentAnalyzer] = None,
                 history: Optional[IncidentHistory] = None,
                 relay: Optional[ResultRelay] = None,
                 predictor: Optional[ThreatPredictionEngine] = None):
        """Initialize API server"""
        self.config = config or {}
        self.logger = logger
        self.app = Flask(__name__)

        web_config = self.config.get('web', {})
        self.max_batch_size = web_config.get('max_batch_size', 100)

        CORS(self.app, resources={r"/api/*": {"origins": web_config.get('cors_origins', '*')}})

        self.start_time = datetime.now()
        self.history = history if history is not None else IncidentHistory(self.config.get('history', {}))
        self.analyzer = analyzer or IncidentAnalyzer(self.config, history=self.history)
        self.relay = relay or ResultRelay(self.config.get('relay', {}))
        self.predictor = predictor or ThreatPredictionEngine(self.config.get('prediction', {}))

        self._setup_routes()

        logger.info("API server initialized")

    def _setup_routes(self):
        """Setup Flask routes"""

        @self.app.route('/api/status')
        def api_status():
            """Service status"""
            uptime = (datetime.now() - self.start_time).total_seconds()
            return jsonify({
                'status': 'operational',
                'uptime': uptime,
                'version': __version__,
                'incidents': len(self.history),
                'components': {
                    'threat_intelligence': bool(self.analyzer.threat_intel and self.analyzer.threat_intel.providers),
                    'llm': self.analyzer.llm_client is not None,
                    'severity_adjustment': self.analyzer.severity_adjuster.enabled
                },
                'timestamp': datetime.now().isoformat()
            })

        @self.app.route('/api/incidents/analyze', methods=['POST'])
        def analyze_incident():
            """Analyze a submitted incident"""
            payload = request.get_json(silent=True)
            try:
                result = self._analyze_payload(payload)
            except IncidentValidationError as e:
                return jsonify({'error': str(e)}), 400

            return jsonify(result)

        @self.app.route('/api/incidents')
        def list_incidents():
            """Stored incidents, newest first"""
            limit = request.args.get('limit', 50, type=int)
            incidents = self.history.list(limit)
            return jsonify({'incidents': incidents, 'total': len(self.history)})

        @self.app.route('/api/incidents/<incident_id>')
        def get_incident(incident_id):
            record = self.history.get(incident_id)
            if record is None:
                return jsonify({'error': f'Incident {incident_id} not found'}), 404
            return jsonify(record)

        @self.app.route('/api/webhooks/<source>', methods=['POST'])
        def ingest_webhook(source):
            """Analyze a batch of log entries delivered by a SIEM"""
            payload = request.get_json(silent=True)
            if isinstance(payload, list):
                entries, callback_url = payload, None
            elif isinstance(payload, dict):
                entries = payload.get('entries') or payload.get('logs') or []
                callback_url = payload.get('callback_url')
            else:
                return jsonify({'error': 'Webhook payload must be a JSON object or array'}), 400

            if not isinstance(entries, list) or not entries:
                return jsonify({'error': 'No log entries supplied'}), 400
            if len(entries) > self.max_batch_size:
                return jsonify({'error': f'Batch exceeds {self.max_batch_size} entries'}), 413

            return jsonify(self._process_batch(source, entries, callback_url))

        @self.app.route('/api/predictions')
        def api_predictions():
            """Threat prediction over stored incidents"""
            return jsonify(self.predictor.generate_prediction(self.history.all()))

        @self.app.route('/api/export/incidents')
        def export_incidents():
            """Export stored incidents as JSON or CSV"""
            format_type = request.args.get('format', 'json')
            incidents = self.history.all()

            if format_type == 'json':
                return jsonify(incidents)
            elif format_type == 'csv':
                return Response(
                    self._convert_to_csv(incidents),
                    mimetype='text/csv',
                    headers={'Content-Disposition': 'attachment; filename=incidents.csv'}
                )

            return jsonify({'error': 'Invalid export format'}), 400

    def _analyze_payload(self, payload: Any) -> Dict:
        """Validate, analyze and store one incident payload"""
        if not isinstance(payload, dict):
            raise IncidentValidationError("Incident payload must be an object")

        threat_report = None
        if payload.get('threat_report') is not None:
            try:
                threat_report = ThreatReport.from_dict(payload['threat_report'])
            except ValueError as e:
                raise IncidentValidationError(f"Invalid threat report: {e}")

        result = self.analyzer.analyze(payload, threat_report=threat_report)
        record = self.history.add_result(result)
        result['incident']['incident_id'] = record['incident_id']
        return result

    def _process_batch(self, source: str, entries: List[Any], callback_url: Optional[str]) -> Dict:
        results = []
        deliveries = []
        failed = 0

        for index, entry in enumerate(entries):
            if isinstance(entry, str):
                entry = {'title': f'{source} event {index + 1}', 'log_data': entry}
            elif isinstance(entry, dict):
                entry = dict(entry)
                entry.setdefault('title', f'{source} event {index + 1}')

            try:
                result = self._analyze_payload(entry)
            except IncidentValidationError as e:
                failed += 1
                results.append({'index': index, 'error': str(e)})
                continue

            summary = {
                'index': index,
                'incident_id': result['incident']['incident_id'],
                'classification': result['classification'],
                'confidence': result['confidence'],
                'severity': result['adjusted_severity'],
                'degraded': result['degraded'],
                'failsafe': result['failsafe']
            }
            results.append(summary)

            if callback_url:
                deliveries.append(self.relay.relay(callback_url, {'source': source, 'result': result}))

        self.logger.info(f"Webhook batch from {source}: {len(entries) - failed} analyzed, {failed} rejected")

        return {
            'source': source,
            'processed': len(entries) - failed,
            'failed': failed,
            'results': results,
            'deliveries': deliveries
        }

    def _convert_to_csv(self, data: List[Dict]) -> str:
        """Convert incident records to CSV format"""
        if not data:
            return ""

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=EXPORT_FIELDS, extrasaction='ignore')
        writer.writeheader()
        for item in data:
            writer.writerow(item)

        return output.getvalue()

    def run(self, host: str = '0.0.0.0', port: int = 5000, debug: bool = False):
        """Run the API server"""
        logger.info(f"Starting API server on {host}:{port}")
        self.app.run(host=host, port=port, debug=debug)


def create_api_app(config: Dict = None, **kwargs) -> ApiServer:
    """Create and configure the API application"""
    return ApiServer(config, **kwargs)
