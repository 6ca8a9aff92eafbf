"""
Structured failure signals from CloudFormation stack events.
"""

import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from ..config import DEFAULT_MAX_EVENTS, DEFAULT_REGION
from ..errors import StackAccessDeniedError, StackNotFoundError
from ..models import FailureSignal, utc_now

logger = logging.getLogger(__name__)

_ACCESS_DENIED_CODES = {"AccessDenied", "AccessDeniedException", "UnauthorizedOperation"}


def is_failure_status(status: Optional[str]) -> bool:
    """True for failed, rollback and delete-in-progress resource statuses."""
    if not status:
        return False
    return "FAILED" in status or "ROLLBACK" in status or status == "DELETE_IN_PROGRESS"


def collect_cfn_failure_signals(
    stack_name: str,
    region: str = DEFAULT_REGION,
    max_events: int = DEFAULT_MAX_EVENTS,
    client: Any = None,
) -> List[FailureSignal]:
    """
    Collect failure signals from a stack's most recent events.

    Args:
        stack_name: Stack name or id
        region: AWS region
        max_events: Number of most recent events to inspect
        client: Optional CloudFormation client (created from boto3 if omitted)

    Returns:
        Failure signals, most recent first

    Raises:
        StackNotFoundError: If the stack does not exist
        StackAccessDeniedError: If the caller cannot describe the stack
    """
    cfn = client or boto3.client('cloudformation', region_name=region)

    try:
        response = cfn.describe_stacks(StackName=stack_name)
        stacks = response.get('Stacks', [])
        if not stacks:
            raise StackNotFoundError(stack_name, f"Stack {stack_name} not found in {region}")
        stack_status = stacks[0].get('StackStatus')
        logger.info(f"Stack {stack_name} is {stack_status}, reading up to {max_events} events")

        events = _recent_events(cfn, stack_name, max_events)
    except ClientError as e:
        _raise_lookup_error(stack_name, region, e)
        raise

    signals = []
    for event in events:
        signal = _event_to_signal(event, stack_name)
        if signal is not None:
            signals.append(signal)

    logger.info(f"Collected {len(signals)} failure signal(s) from {len(events)} event(s) for {stack_name}")
    return signals


def _recent_events(cfn: Any, stack_name: str, max_events: int) -> List[Dict[str, Any]]:
    """Read at most max_events events, newest first."""
    events: List[Dict[str, Any]] = []
    paginator = cfn.get_paginator('describe_stack_events')
    for page in paginator.paginate(StackName=stack_name):
        events.extend(page.get('StackEvents', []))
        if len(events) >= max_events:
            break
    return events[:max_events]


def _event_to_signal(event: Dict[str, Any], stack_name: str) -> Optional[FailureSignal]:
    status = event.get('ResourceStatus')
    reason = (event.get('ResourceStatusReason') or '').strip()
    if not is_failure_status(status) or not reason:
        return None

    return FailureSignal(
        resource_type=event.get('ResourceType', 'Unknown'),
        logical_id=event.get('LogicalResourceId', 'Unknown'),
        status_reason=reason,
        timestamp=event.get('Timestamp') or utc_now(),
        physical_id=event.get('PhysicalResourceId'),
        resource_status=status,
        stack_name=event.get('StackName', stack_name),
    )


def _raise_lookup_error(stack_name: str, region: str, error: ClientError) -> None:
    """Translate stack lookup failures; other client errors are left to the caller."""
    code = error.response.get('Error', {}).get('Code', '')
    message = error.response.get('Error', {}).get('Message', '')

    if code == 'ValidationError' and 'does not exist' in message:
        raise StackNotFoundError(stack_name, f"Stack {stack_name} not found in {region}: {message}") from error
    if code in _ACCESS_DENIED_CODES:
        raise StackAccessDeniedError(stack_name, f"Access denied for stack {stack_name}: {message}") from error
