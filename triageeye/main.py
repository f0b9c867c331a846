#!/usr/bin/env python3
"""
TriageEye - Security Incident Triage
Main entry point for the application.
"""

import os
import sys
import json
import argparse
import logging
import yaml
from datetime import datetime
from typing import Dict, Optional

from .modules.incident import IncidentInput, IncidentValidationError
from .modules.incident_analyzer import IncidentAnalyzer
from .utils.history import IncidentHistory
from .utils.llm_client import LLMAnalysisClient
from .utils.threat_intelligence import ThreatIntelligenceManager, ThreatReport


def setup_logging(log_level):
    """Configure logging settings"""
    log_levels = {
        'debug': logging.DEBUG,
        'info': logging.INFO,
        'warning': logging.WARNING,
        'error': logging.ERROR,
        'critical': logging.CRITICAL
    }

    level = log_levels.get(log_level.lower(), logging.INFO)

    # Create logs directory if it doesn't exist
    if not os.path.exists('logs'):
        os.makedirs('logs')

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = f"logs/triageeye_{timestamp}.log"

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    return logging.getLogger('triageeye')


def load_config(config_path):
    """Load configuration from YAML file"""
    if not config_path:
        return {}
    try:
        with open(config_path, 'r') as config_file:
            return yaml.safe_load(config_file) or {}
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        return {}


def load_threat_report(path: Optional[str]) -> Optional[ThreatReport]:
    """Load a threat report from a JSON file"""
    if not path:
        return None
    try:
        with open(path, 'r') as report_file:
            return ThreatReport.from_dict(json.load(report_file))
    except Exception as e:
        logging.error(f"Failed to load threat report: {e}")
        return None


def build_analyzer(config: Dict, history: Optional[IncidentHistory] = None) -> IncidentAnalyzer:
    """Create an IncidentAnalyzer with the collaborators enabled in config"""
    logger = logging.getLogger('triageeye')

    threat_intel = None
    if config.get('threat_intelligence', {}).get('enabled', False):
        threat_intel = ThreatIntelligenceManager(config.get('threat_intelligence', {}))
        logger.info("Threat intelligence integration enabled")

        connection_status = threat_intel.test_connections()
        for provider, status in connection_status.items():
            if status:
                logger.info(f"Successfully connected to {provider}")
            else:
                logger.warning(f"Failed to connect to {provider}")

    llm_client = None
    if config.get('llm', {}).get('enabled', False):
        llm_client = LLMAnalysisClient(config.get('llm', {}))
        logger.info("LLM analysis enabled")

    return IncidentAnalyzer(config, threat_intel=threat_intel, llm_client=llm_client, history=history)


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='TriageEye - Security Incident Triage'
    )

    parser.add_argument(
        '--config',
        default=None,
        help='Path to configuration file'
    )

    parser.add_argument(
        '--log-level',
        choices=['debug', 'info', 'warning', 'error', 'critical'],
        default='info',
        help='Set logging level'
    )

    input_group = parser.add_argument_group('Incident Options')
    input_group.add_argument(
        'log_file',
        nargs='?',
        help='Log file to analyze (reads stdin when omitted)'
    )
    input_group.add_argument(
        '--title',
        default='',
        help='Incident title'
    )
    input_group.add_argument(
        '--severity',
        choices=['critical', 'high', 'medium', 'low', 'informational'],
        default='medium',
        help='Declared incident severity'
    )
    input_group.add_argument(
        '--context',
        default='',
        help='System context, e.g. "production domain controller"'
    )
    input_group.add_argument(
        '--threat-report',
        help='JSON file with a threat intelligence report'
    )
    input_group.add_argument(
        '--history',
        help='JSON file of prior incidents used for similarity search'
    )
    input_group.add_argument(
        '--adjust-severity',
        action='store_true',
        help='Enable the severity adjustment pass'
    )

    output_group = parser.add_argument_group('Output Options')
    output_group.add_argument(
        '--output',
        help='Write the analysis JSON to this file instead of stdout'
    )

    web_group = parser.add_argument_group('Web API Options')
    web_group.add_argument(
        '--web',
        action='store_true',
        help='Start the web API instead of analyzing a single incident'
    )
    web_group.add_argument(
        '--web-host',
        default='0.0.0.0',
        help='Web API host address'
    )
    web_group.add_argument(
        '--web-port',
        type=int,
        default=5000,
        help='Web API port'
    )

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)

    logger = setup_logging(args.log_level)
    logger.info("Starting TriageEye")

    config = load_config(args.config)
    if args.adjust_severity:
        config.setdefault('severity_adjustment', {})['enabled'] = True

    history_config = dict(config.get('history', {}))
    if args.history:
        history_config['path'] = args.history
    history = IncidentHistory(history_config)

    analyzer = build_analyzer(config, history)

    if args.web:
        from .web.api import create_api_app
        server = create_api_app(config, analyzer=analyzer, history=history)
        server.run(host=args.web_host, port=args.web_port)
        return 0

    if args.log_file:
        try:
            with open(args.log_file, 'r') as log_file:
                log_data = log_file.read()
        except OSError as e:
            logger.error(f"Failed to read log file: {e}")
            return 1
    else:
        log_data = sys.stdin.read()

    try:
        incident = IncidentInput.from_dict({
            'title': args.title or (os.path.basename(args.log_file) if args.log_file else 'stdin'),
            'log_data': log_data,
            'system_context': args.context,
            'severity': args.severity
        })
    except IncidentValidationError as e:
        logger.error(f"Invalid incident: {e}")
        return 2

    result = analyzer.analyze(incident, threat_report=load_threat_report(args.threat_report))
    output = json.dumps(result, indent=2)

    if args.output:
        with open(args.output, 'w') as output_file:
            output_file.write(output)
        logger.info(f"Analysis written to {args.output}")
    else:
        print(output)

    logger.info(f"Classification: {result['classification']} ({result['confidence']}%), "
                f"severity {result['adjusted_severity']}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
