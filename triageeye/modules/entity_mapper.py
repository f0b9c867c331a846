#!/usr/bin/env python3
"""
Entity Relationship Mapping Module for TriageEye
Builds a typed graph of the users, hosts, processes, files, domains and
hashes seen in an incident and infers the relationships between them.
"""

import re
import logging
import networkx as nx
from typing import Dict, List, Optional

from .indicator_extractor import ExtractedIndicators, is_private_ip
from .threat_correlator import Indicator, Reputation, SUSPICIOUS_PROCESSES

logger = logging.getLogger('triageeye.entity_mapper')

MAX_NODES_PER_TYPE = 5

USER_PATTERNS = [
    re.compile(r'\b(?:user|username|account|acct|uid)\s*[=:]\s*"?([A-Za-z0-9_.$@-]{2,64})', re.IGNORECASE),
    re.compile(r'\baccount name:\s*([A-Za-z0-9_.$@-]{2,64})', re.IGNORECASE),
    re.compile(r'\b(?:by|for) user\s+"?([A-Za-z0-9_.$@-]{2,64})', re.IGNORECASE),
    re.compile(r'(?<![\\\w])[A-Z][A-Z0-9-]{1,15}\\([A-Za-z0-9_.$-]{2,64})'),
]
FILE_PATTERN = re.compile(
    r'(?:[A-Za-z]:\\(?:[^\\\s"\'<>|]+\\)*[^\\\s"\'<>|]+\.[A-Za-z0-9]{1,5}'
    r'|(?<![\w.])/(?:[\w.-]+/)+[\w.-]+)'
)

IGNORED_USERS = {'system', 'null', 'none', 'n/a', '-'}
PRIVILEGED_USER_TERMS = ['admin', 'root', 'administrator', 'svc_', 'service', 'domain admins']
SENSITIVE_FILE_TERMS = ['\\system32\\config\\', 'ntds.dit', '/etc/shadow', '/etc/passwd', '.dmp', 'sam']


class EntityType:
    """Entity node types"""
    IP = 'IP'
    USER = 'User'
    PROCESS = 'Process'
    FILE = 'File'
    DOMAIN = 'Domain'
    HASH = 'Hash'


class RiskLevel:
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


class Relationship:
    """Edge verbs"""
    AUTHENTICATED_FROM = 'authenticated_from'
    CONNECTED_TO = 'connected_to'
    EXECUTED = 'executed'
    ACCESSED = 'accessed'


def extract_users(text: str) -> List[str]:
    """Account names referenced in log text"""
    users = []
    for pattern in USER_PATTERNS:
        for match in pattern.finditer(text or ''):
            user = match.group(1).strip('."\'')
            if user and user.lower() not in IGNORED_USERS and user not in users:
                users.append(user)
    return users


def extract_files(text: str) -> List[str]:
    """Windows and POSIX file paths referenced in log text"""
    files = []
    for match in FILE_PATTERN.finditer(text or ''):
        path = match.group(0).rstrip('.,;:')
        if path not in files:
            files.append(path)
    return files


class EntityGraph:
    """Directed entity graph backed by networkx"""

    def __init__(self):
        self.graph = nx.DiGraph()

    def add_entity(self, entity_type: str, value: str, risk_level: str = RiskLevel.LOW) -> str:
        node_id = f"{entity_type}:{value}"
        if not self.graph.has_node(node_id):
            self.graph.add_node(node_id, type=entity_type, value=value, risk_level=risk_level)
        return node_id

    def add_relationship(self, source: str, action: str, target: str, description: str = '') -> None:
        if source != target and not self.graph.has_edge(source, target):
            self.graph.add_edge(source, target, action=action, description=description)

    def nodes_of_type(self, entity_type: str) -> List[str]:
        return [node for node, data in self.graph.nodes(data=True) if data['type'] == entity_type]

    @property
    def node_count(self) -> int:
        return self.graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self.graph.number_of_edges()

    def to_dict(self) -> Dict:
        return {
            'nodes': [
                {'id': node, 'type': data['type'], 'value': data['value'], 'risk_level': data['risk_level']}
                for node, data in self.graph.nodes(data=True)
            ],
            'edges': [
                {'source': source, 'action': data['action'], 'target': target,
                 'description': data['description']}
                for source, target, data in self.graph.edges(data=True)
            ],
            'connected_groups': [sorted(group) for group in nx.weakly_connected_components(self.graph)
                                 if len(group) > 1]
        }


class EntityMapper:
    """
    Deduplicates incident entities into graph nodes and infers relationships
    from co-occurrence.
    """

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logger
        self.max_per_type = self.config.get('max_nodes_per_type', MAX_NODES_PER_TYPE)

    def build(self, text: str, extracted: ExtractedIndicators,
              indicators: Optional[List[Indicator]] = None) -> EntityGraph:
        """
        Build the entity graph for one incident

        Args:
            text: Raw log text
            extracted: Indicators pulled from the text
            indicators: Correlated indicators, used for node risk levels

        Returns:
            EntityGraph, possibly empty
        """
        entity_graph = EntityGraph()

        try:
            reputations = {indicator.value: indicator.reputation for indicator in indicators or []}
            limit = self.max_per_type

            ips = [entity_graph.add_entity(EntityType.IP, ip, self._ip_risk(ip, reputations))
                   for ip in extracted.ips[:limit]]
            users = [entity_graph.add_entity(EntityType.USER, user, self._user_risk(user))
                     for user in extract_users(text)[:limit]]
            processes = [entity_graph.add_entity(EntityType.PROCESS, process, self._process_risk(process, reputations))
                         for process in extracted.processes[:limit]]
            files = [entity_graph.add_entity(EntityType.FILE, path, self._file_risk(path))
                     for path in extract_files(text)[:limit]]
            for domain in extracted.domains[:limit]:
                entity_graph.add_entity(EntityType.DOMAIN, domain, self._reputation_risk(reputations.get(domain)))
            for hash_value in extracted.hash_values[:limit]:
                entity_graph.add_entity(EntityType.HASH, hash_value, self._reputation_risk(reputations.get(hash_value)))

            external_ips = [node for node in ips if not is_private_ip(entity_graph.graph.nodes[node]['value'])]

            for user in users:
                for ip in ips:
                    entity_graph.add_relationship(
                        user, Relationship.AUTHENTICATED_FROM, ip,
                        f"{self._value(entity_graph, user)} authenticated from {self._value(entity_graph, ip)}"
                    )
                for process in processes:
                    entity_graph.add_relationship(
                        user, Relationship.EXECUTED, process,
                        f"{self._value(entity_graph, user)} executed {self._value(entity_graph, process)}"
                    )

            for process in processes:
                for ip in external_ips:
                    entity_graph.add_relationship(
                        process, Relationship.CONNECTED_TO, ip,
                        f"{self._value(entity_graph, process)} connected to external address "
                        f"{self._value(entity_graph, ip)}"
                    )
                for path in files:
                    entity_graph.add_relationship(
                        process, Relationship.ACCESSED, path,
                        f"{self._value(entity_graph, process)} accessed {self._value(entity_graph, path)}"
                    )

            self.logger.debug(f"Entity graph built: {entity_graph.node_count} nodes, {entity_graph.edge_count} edges")

        except Exception as e:
            self.logger.error(f"Error building entity graph: {e}")

        return entity_graph

    def _value(self, entity_graph: EntityGraph, node: str) -> str:
        return entity_graph.graph.nodes[node]['value']

    def _reputation_risk(self, reputation: Optional[str]) -> str:
        if reputation == Reputation.MALICIOUS:
            return RiskLevel.HIGH
        if reputation == Reputation.SUSPICIOUS:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _ip_risk(self, ip: str, reputations: Dict[str, str]) -> str:
        reputation = reputations.get(ip)
        if reputation and reputation != Reputation.UNKNOWN:
            return self._reputation_risk(reputation)
        return RiskLevel.LOW if is_private_ip(ip) else RiskLevel.MEDIUM

    def _user_risk(self, user: str) -> str:
        lowered = user.lower()
        return RiskLevel.MEDIUM if any(term in lowered for term in PRIVILEGED_USER_TERMS) else RiskLevel.LOW

    def _process_risk(self, process: str, reputations: Dict[str, str]) -> str:
        if process.lower() in SUSPICIOUS_PROCESSES:
            return RiskLevel.HIGH
        return self._reputation_risk(reputations.get(process))

    def _file_risk(self, path: str) -> str:
        lowered = path.lower()
        return RiskLevel.HIGH if any(term in lowered for term in SENSITIVE_FILE_TERMS) else RiskLevel.LOW
