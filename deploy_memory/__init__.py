"""
Deploy Memory - failure fingerprinting and remediation playbooks for deployments.

Turns CloudFormation stack events and CDK console output into stable
fingerprints, classified error categories and factory action recommendations,
and keeps a TTL-bounded history of classified failures per fingerprint.
"""

__version__ = "0.1.0"
__author__ = "Arvo AI"
