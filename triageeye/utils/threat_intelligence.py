#!/usr/bin/env python3
"""
Threat Intelligence Module for TriageEye
Provides integration with the AlienVault OTX threat intelligence platform and
builds per-incident threat reports from the indicators found in log data.
"""

import math
import time
import logging
import threading
import requests
from collections import OrderedDict
from typing import Dict, List, Optional

from ..modules.indicator_extractor import IndicatorExtractor


class ThreatLevel:
    """Threat report levels"""
    CRITICAL = 'critical'
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'
    INFO = 'info'

    @staticmethod
    def from_score(score: float) -> str:
        """Map a 0-100 risk score to a threat level"""
        if score >= 80:
            return ThreatLevel.CRITICAL
        if score >= 60:
            return ThreatLevel.HIGH
        if score >= 40:
            return ThreatLevel.MEDIUM
        if score >= 20:
            return ThreatLevel.LOW
        return ThreatLevel.INFO


class ThreatIntelligenceCache:
    """
    Thread-safe LRU cache for threat intelligence data with TTL
    """

    def __init__(self, max_size: int = 10000, ttl_seconds: int = 3600):
        """
        Initialize cache with size limit and TTL

        Args:
            max_size: Maximum number of items to store in cache
            ttl_seconds: Time-to-live for cache entries in seconds
        """
        self._cache = OrderedDict()
        self._max_size = max_size
        self._ttl_seconds = ttl_seconds
        self._lock = threading.RLock()
        self._logger = logging.getLogger('triageeye.threat_intelligence.cache')

    def get(self, key: str) -> Optional[Dict]:
        """
        Get item from cache if it exists and is not expired

        Args:
            key: Cache key to look up

        Returns:
            Cached value or None if not in cache or expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if time.time() > entry['expires']:
                self._cache.pop(key)
                return None

            self._cache.move_to_end(key)
            return entry['data']

    def set(self, key: str, value: Dict, ttl_seconds: Optional[int] = None) -> None:
        """
        Add item to cache with expiration time

        Args:
            key: Cache key
            value: Value to store
            ttl_seconds: Optional override for TTL, otherwise uses default
        """
        with self._lock:
            ttl = ttl_seconds if ttl_seconds is not None else self._ttl_seconds
            self._cache[key] = {
                'data': value,
                'expires': time.time() + ttl
            }
            self._cache.move_to_end(key)

            if len(self._cache) > self._max_size:
                self._cache.popitem(last=False)

            self._purge_expired()

    def clear(self) -> None:
        """Clear all items from cache"""
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def _purge_expired(self) -> None:
        now = time.time()
        expired_keys = [k for k, v in self._cache.items() if now > v['expires']]
        if expired_keys:
            self._logger.debug(f"Cleaning up {len(expired_keys)} expired cache entries")
            for key in expired_keys:
                self._cache.pop(key, None)


def _as_number(value, field: str) -> float:
    """Numeric report field; missing values count as 0"""
    if value is None or value == '':
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"{field} must be a number, got {value!r}")

    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"{field} must be a number, got {value!r}")

    if not math.isfinite(number):
        raise ValueError(f"{field} must be finite")
    return int(number) if number.is_integer() else number


class ThreatIndicator:
    """
    Reputation record for one indicator, as returned by a threat intelligence feed
    """

    def __init__(self,
                 indicator_type: str,
                 value: str,
                 malicious: bool = False,
                 threat_score: float = 0,
                 country: Optional[str] = None,
                 organization: Optional[str] = None,
                 asn: Optional[str] = None,
                 pulse_count: int = 0,
                 tags: List[str] = None,
                 reputation: Optional[float] = None):
        """
        Initialize a threat indicator

        Args:
            indicator_type: One of 'ip', 'domain' or 'hash'
            value: The indicator value
            malicious: Whether the feed flags the indicator as malicious
            threat_score: Feed threat score (0-100)
            country: Optional country name
            organization: Optional owning organization
            asn: Optional autonomous system number
            pulse_count: Number of feed reports referencing the indicator
            tags: Feed tags
            reputation: Raw feed reputation value
        """
        self.indicator_type = indicator_type
        self.value = value
        self.malicious = malicious
        self.threat_score = threat_score
        self.country = country
        self.organization = organization
        self.asn = asn
        self.pulse_count = pulse_count
        self.tags = tags or []
        self.reputation = reputation

    def to_dict(self) -> Dict:
        """Convert indicator to dictionary representation"""
        return {
            'type': self.indicator_type,
            'value': self.value,
            'malicious': self.malicious,
            'threat_score': self.threat_score,
            'country': self.country,
            'organization': self.organization,
            'asn': self.asn,
            'pulse_count': self.pulse_count,
            'tags': list(self.tags),
            'reputation': self.reputation
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ThreatIndicator':
        """
        Create ThreatIndicator instance from dictionary

        Raises:
            ValueError: if the record is not an object or a numeric field is not a number
        """
        if not isinstance(data, dict):
            raise ValueError("Threat indicator must be an object")

        return cls(
            indicator_type=str(data.get('type') or '').lower(),
            value=str(data.get('value') or ''),
            malicious=bool(data.get('malicious', False)),
            threat_score=_as_number(data.get('threat_score'), 'threat_score'),
            country=data.get('country'),
            organization=data.get('organization'),
            asn=data.get('asn'),
            pulse_count=int(_as_number(data.get('pulse_count'), 'pulse_count')),
            tags=data.get('tags') or [],
            reputation=data.get('reputation')
        )

    def __str__(self) -> str:
        return f"ThreatIndicator({self.value}, {self.indicator_type}, malicious={self.malicious})"


class ThreatReport:
    """Threat intelligence report for one incident"""

    def __init__(self,
                 risk_score: float = 0,
                 threat_level: str = ThreatLevel.INFO,
                 indicators: List[ThreatIndicator] = None,
                 summary: str = '',
                 recommendations: List[str] = None):
        self.risk_score = max(0, min(100, risk_score))
        self.threat_level = threat_level
        self.indicators = indicators or []
        self.summary = summary
        self.recommendations = recommendations or []

    @property
    def malicious_indicators(self) -> List[ThreatIndicator]:
        return [indicator for indicator in self.indicators if indicator.malicious]

    def find(self, value: str, indicator_type: Optional[str] = None) -> Optional[ThreatIndicator]:
        """
        Find the record for an indicator value

        Args:
            value: Indicator value (compared case-insensitively)
            indicator_type: Optional type filter

        Returns:
            Matching ThreatIndicator or None
        """
        wanted = value.lower()
        for indicator in self.indicators:
            if indicator.value.lower() != wanted:
                continue
            if indicator_type and indicator.indicator_type != indicator_type:
                continue
            return indicator
        return None

    def to_dict(self) -> Dict:
        return {
            'risk_score': self.risk_score,
            'threat_level': self.threat_level,
            'indicators': [indicator.to_dict() for indicator in self.indicators],
            'summary': self.summary,
            'recommendations': list(self.recommendations)
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ThreatReport':
        """
        Create ThreatReport instance from dictionary

        Raises:
            ValueError: if the report or one of its indicators is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("Threat report must be an object")

        indicators = data.get('indicators') or []
        if not isinstance(indicators, list):
            raise ValueError("Threat report indicators must be a list")

        risk_score = _as_number(data.get('risk_score'), 'risk_score')
        return cls(
            risk_score=risk_score,
            threat_level=str(data.get('threat_level') or ThreatLevel.from_score(risk_score)).lower(),
            indicators=[ThreatIndicator.from_dict(item) for item in indicators],
            summary=str(data.get('summary') or ''),
            recommendations=data.get('recommendations') or []
        )


class ThreatIntelligenceProvider:
    """
    Base class for all threat intelligence providers
    """

    def __init__(self, config: Dict = None):
        """
        Initialize provider with configuration

        Args:
            config: Provider-specific configuration
        """
        self.config = config or {}
        self.name = "base"
        self.logger = logging.getLogger('triageeye.threat_intelligence.provider')

        self.timeout = self.config.get('timeout', 10)

        self.cache = ThreatIntelligenceCache(
            max_size=self.config.get('cache_size', 10000),
            ttl_seconds=self.config.get('cache_ttl', 3600)
        )

        # Rate limiting
        self._last_request_time = 0
        self._min_request_interval = self.config.get('min_request_interval', 0.2)
        self._request_lock = threading.Lock()

    def check_indicator(self, value: str, indicator_type: str) -> Optional[ThreatIndicator]:
        """
        Look up an indicator in the threat intelligence database

        Args:
            value: Indicator value to check
            indicator_type: One of 'ip', 'domain' or 'hash'

        Returns:
            ThreatIndicator if found, None otherwise
        """
        raise NotImplementedError("Subclasses must implement check_indicator method")

    def test_connection(self) -> bool:
        """
        Test connection to the threat intelligence platform

        Returns:
            True if connection is successful, False otherwise
        """
        raise NotImplementedError("Subclasses must implement test_connection method")

    def _throttled_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Make a throttled HTTP request to respect rate limits

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            **kwargs: Additional arguments for requests

        Returns:
            Response object
        """
        with self._request_lock:
            time_since_last_request = time.time() - self._last_request_time
            if time_since_last_request < self._min_request_interval:
                time.sleep(self._min_request_interval - time_since_last_request)

            response = requests.request(method, url, timeout=self.timeout, **kwargs)
            self._last_request_time = time.time()

            return response

    def _handle_request_error(self, response: requests.Response, url: str) -> None:
        """
        Handle HTTP request errors with appropriate logging

        Args:
            response: Response object to check
            url: URL being requested (for logging)
        """
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            status_code = response.status_code

            if status_code == 401:
                self.logger.error(f"Authentication error accessing {url} - check API key")
            elif status_code == 403:
                self.logger.error(f"Access forbidden to {url} - check permissions")
            elif status_code == 429:
                self.logger.warning(f"Rate limit exceeded for {url}")
            else:
                self.logger.error(f"HTTP error {status_code} accessing {url}: {str(e)}")

            raise e


class OTXProvider(ThreatIntelligenceProvider):
    """
    AlienVault OTX (Open Threat Exchange) provider
    """

    SECTIONS = {
        'ip': 'IPv4',
        'domain': 'domain',
        'hash': 'file'
    }

    def __init__(self, config: Dict = None):
        """
        Initialize OTX provider with configuration

        Args:
            config: Provider-specific configuration including API key
        """
        super().__init__(config)
        self.name = "otx"
        self.logger = logging.getLogger('triageeye.threat_intelligence.otx')

        self.api_key = self.config.get('api_key')
        self.base_url = self.config.get('base_url', 'https://otx.alienvault.com/api/v1').rstrip('/')
        self.headers = {
            'X-OTX-API-KEY': self.api_key or '',
            'Accept': 'application/json'
        }

    def check_indicator(self, value: str, indicator_type: str) -> Optional[ThreatIndicator]:
        """
        Look up an IP, domain or file hash in OTX

        Args:
            value: Indicator value
            indicator_type: One of 'ip', 'domain' or 'hash'

        Returns:
            ThreatIndicator if OTX knows the indicator, None otherwise
        """
        if not self.api_key:
            self.logger.warning("OTX API key not configured")
            return None

        section = self.SECTIONS.get(indicator_type)
        if not section:
            self.logger.warning(f"Unsupported indicator type for OTX: {indicator_type}")
            return None

        cache_key = f"otx:{indicator_type}:{value}"
        cached_result = self.cache.get(cache_key)
        if cached_result:
            return ThreatIndicator.from_dict(cached_result)

        url = f"{self.base_url}/indicators/{section}/{value}/general"
        response = self._throttled_request('GET', url, headers=self.headers)

        if response.status_code == 404:
            return None

        self._handle_request_error(response, url)
        data = response.json()

        pulse_info = data.get('pulse_info') or {}
        pulse_count = pulse_info.get('count', 0) or 0
        pulses = pulse_info.get('pulses') or []

        tags = []
        for pulse in pulses[:5]:
            for tag in pulse.get('tags', []):
                if tag not in tags:
                    tags.append(tag)

        asn = data.get('asn')
        if indicator_type == 'ip':
            country = data.get('country_name') or data.get('country_code')
            organization = f"AS{asn}" if asn and not str(asn).startswith('AS') else asn
        else:
            country = data.get('country') or data.get('country_name') or data.get('country_code')
            organization = data.get('registrar') or data.get('org')

        indicator = ThreatIndicator(
            indicator_type=indicator_type,
            value=value,
            malicious=pulse_count > 0,
            threat_score=calculate_threat_score(data),
            country=country,
            organization=organization,
            asn=str(asn) if asn else None,
            pulse_count=pulse_count,
            tags=tags,
            reputation=data.get('reputation')
        )

        self.cache.set(cache_key, indicator.to_dict())
        return indicator

    def test_connection(self) -> bool:
        """
        Test connection to OTX platform

        Returns:
            True if connection is successful, False otherwise
        """
        if not self.api_key:
            self.logger.warning("OTX API key not configured")
            return False

        try:
            response = self._throttled_request('GET', f"{self.base_url}/user/me", headers=self.headers)

            if response.status_code == 200:
                username = response.json().get('username', 'unknown')
                self.logger.info(f"Successfully connected to OTX as user: {username}")
                return True

            self.logger.warning(f"Failed to connect to OTX: HTTP {response.status_code}")
            return False

        except Exception as e:
            self.logger.error(f"Error testing connection to OTX: {e}")
            return False


class ThreatIntelligenceManager:
    """
    Builds threat reports by querying the configured providers
    """

    def __init__(self, config: Dict = None):
        """
        Initialize threat intelligence manager

        Args:
            config: Configuration dictionary for all providers
        """
        self.logger = logging.getLogger('triageeye.threat_intelligence')
        self.config = config or {}
        self.extractor = IndicatorExtractor()

        self.max_ips = self.config.get('max_ips', 10)
        self.max_domains = self.config.get('max_domains', 10)
        self.max_hashes = self.config.get('max_hashes', 5)

        self.providers = {}
        self._load_providers()

    def _load_providers(self) -> None:
        """Load and initialize configured threat intelligence providers"""
        provider_configs = self.config.get('providers', {})

        otx_config = provider_configs.get('otx', {})
        if otx_config.get('enabled', False):
            self.providers['otx'] = OTXProvider(otx_config)
            self.logger.info("AlienVault OTX provider initialized")

        self.logger.info(f"Initialized {len(self.providers)} threat intelligence providers")

    def add_provider(self, name: str, provider: ThreatIntelligenceProvider) -> None:
        self.providers[name] = provider

    def check_indicator(self, value: str, indicator_type: str) -> Optional[ThreatIndicator]:
        """
        Check an indicator against providers, first answer wins

        Returns:
            ThreatIndicator or None when no provider knows it
        """
        for provider_name, provider in self.providers.items():
            try:
                indicator = provider.check_indicator(value, indicator_type)
                if indicator:
                    return indicator
            except Exception as e:
                self.logger.error(f"Error checking {value} with provider {provider_name}: {e}")
        return None

    def build_report(self, text: str) -> Optional[ThreatReport]:
        """
        Extract indicators from log text and build a threat report

        Args:
            text: Raw log text

        Returns:
            ThreatReport, or None when no provider is configured
        """
        if not self.providers:
            self.logger.debug("No threat intelligence providers configured")
            return None

        external_ips = self.extractor.extract_external_ips(text)[:self.max_ips]
        domains = self.extractor.extract_domains(text)[:self.max_domains]
        hashes = self.extractor.extract_hashes(text)[:self.max_hashes]
        cves = self.extractor.extract_cves(text)
        urls = self.extractor.extract_urls(text)

        candidates = ([('ip', ip) for ip in external_ips] +
                      [('domain', domain) for domain in domains] +
                      [('hash', entry['value']) for entry in hashes])

        indicators = []
        for indicator_type, value in candidates:
            indicator = self.check_indicator(value, indicator_type)
            if indicator:
                indicators.append(indicator)

        malicious_count = sum(1 for indicator in indicators if indicator.malicious)
        average_score = (sum(indicator.threat_score for indicator in indicators) / len(indicators)
                         if indicators else 0)
        risk_score = round(min(100, average_score + malicious_count * 10))

        total_iocs = len(external_ips) + len(domains) + len(hashes) + len(cves) + len(urls)

        report = ThreatReport(
            risk_score=risk_score,
            threat_level=ThreatLevel.from_score(risk_score),
            indicators=indicators,
            summary=generate_summary(indicators, total_iocs),
            recommendations=generate_recommendations(indicators, cves)
        )

        self.logger.info(f"Threat report built: risk {report.risk_score} ({report.threat_level}), "
                         f"{malicious_count} malicious of {len(indicators)} known indicators")
        return report

    def test_connections(self) -> Dict[str, bool]:
        """
        Test connections to all configured providers

        Returns:
            Dictionary mapping provider names to connection status
        """
        results = {}

        for provider_name, provider in self.providers.items():
            try:
                results[provider_name] = provider.test_connection()
            except Exception as e:
                self.logger.error(f"Error testing connection to {provider_name}: {e}")
                results[provider_name] = False

        return results


def calculate_threat_score(data: Dict) -> int:
    """
    Score an OTX general-section record

    Args:
        data: OTX indicator general data

    Returns:
        Threat score between 0-100
    """
    score = 0

    pulse_count = (data.get('pulse_info') or {}).get('count', 0) or 0
    if pulse_count:
        score += min(pulse_count * 2, 50)

    reputation = data.get('reputation')
    if isinstance(reputation, (int, float)) and reputation < 0:
        score += 30

    if data.get('validation'):
        score += 20

    return min(score, 100)


def generate_summary(indicators: List[ThreatIndicator], total_iocs: int) -> str:
    """One-line report summary"""
    malicious_count = sum(1 for indicator in indicators if indicator.malicious)

    if malicious_count == 0:
        return f"Analyzed {total_iocs} indicators. No known malicious activity detected."

    return (f"Detected {malicious_count} malicious indicators out of {total_iocs} total IOCs analyzed. "
            f"Immediate investigation recommended for identified threats.")


def generate_recommendations(indicators: List[ThreatIndicator], cves: List[str]) -> List[str]:
    """Recommendations derived from malicious indicators and CVE references"""
    recommendations = []

    malicious_ips = [i for i in indicators if i.indicator_type == 'ip' and i.malicious]
    malicious_domains = [i for i in indicators if i.indicator_type == 'domain' and i.malicious]
    malicious_hashes = [i for i in indicators if i.indicator_type == 'hash' and i.malicious]

    if malicious_ips:
        ip_list = ', '.join(i.value for i in malicious_ips[:3])
        more = f" and {len(malicious_ips) - 3} more" if len(malicious_ips) > 3 else ''
        recommendations.append(f"Block malicious IPs at firewall: {ip_list}{more}")
        first = malicious_ips[0]
        location = f" ({first.country})" if first.country else ''
        recommendations.append(f"Investigate connections to/from: {first.value}{location}")

    if malicious_domains:
        domain_list = ', '.join(i.value for i in malicious_domains[:3])
        more = f" and {len(malicious_domains) - 3} more" if len(malicious_domains) > 3 else ''
        recommendations.append(f"Add to DNS blacklist: {domain_list}{more}")
        recommendations.append(f"Check proxy logs for access to: {malicious_domains[0].value}")

    if malicious_hashes:
        sample = malicious_hashes[0].value[:16]
        recommendations.append(f"Scan for malicious file hash: {sample}... ({len(malicious_hashes)} total)")
        recommendations.append('Initiate EDR investigation for detected malware signatures')

    if cves:
        cve_list = ', '.join(cves[:3])
        more = f" and {len(cves) - 3} more" if len(cves) > 3 else ''
        recommendations.append(f"Verify patches for: {cve_list}{more}")

    if not recommendations:
        recommendations.append('Continue monitoring for suspicious activity')
        recommendations.append('Update threat intelligence feeds')

    return recommendations
