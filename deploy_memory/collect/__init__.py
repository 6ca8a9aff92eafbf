"""
Failure signal collection from CloudFormation stack events and CDK console output.
"""

from .cfn import collect_cfn_failure_signals, is_failure_status
from .cdk_output import parse_cdk_output

__all__ = [
    "collect_cfn_failure_signals",
    "is_failure_status",
    "parse_cdk_output",
]
