"""
TriageEye - security incident triage and classification engine
"""

__version__ = "1.0.0"
