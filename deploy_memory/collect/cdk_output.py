"""
Failure signals parsed from CDK console output.

The parser is a single pass over lines that threads a small context through
each step: the last stack name seen and the last generic error message that
has not yet been attributed to a resource. It only re-reads text that was
already captured, so it never raises; worst case it returns no signals.
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from typing import List, Optional, Tuple

from ..models import FailureSignal, utc_now

logger = logging.getLogger(__name__)

STACK_RESOURCE_TYPE = "AWS::CloudFormation::Stack"

# "MyStack | 3/12 | ..." progress rows and "MyStack: deploying..." headers
_STACK_PREFIX = re.compile(
    r'^\s*(?:[❌✅]\s*)?([A-Za-z][\w-]*)\s*'
    r'(?:\|\s*\d+/\d+|:\s*(?:deploying|creating|updating|destroying|building|publishing|checking))',
    re.IGNORECASE,
)
_ROLLBACK_STATUS = re.compile(
    r'\b(UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS|UPDATE_ROLLBACK_(?:IN_PROGRESS|COMPLETE|FAILED)'
    r'|ROLLBACK_(?:IN_PROGRESS|COMPLETE|FAILED))\b'
)
_STACK_FAILED = re.compile(
    r'(?:The stack named\s+([\w-]+)\s+failed(?: to deploy| creation)?:?\s*(.*)$)'
    r'|(?:^\s*(?:❌\s*)?(?!Deployment\b|Error\b|Synthesis\b)([A-Za-z][\w-]*)\s+failed:\s*(.+)$)'
)
# "UPDATE_FAILED | AWS::Lambda::Function | Api/Handler/Resource (ApiHandler1A2B3C) reason"
_RESOURCE_FAILED = re.compile(
    r'\b((?:CREATE|UPDATE|DELETE)_FAILED)\b\s*\|\s*((?:AWS|Custom)::[\w:]+)\s*\|\s*([\w/.-]+)'
    r'(?:\s*\(([A-Za-z0-9]+)\))?\s*(.*)$'
)
_GENERIC_ERROR = re.compile(r'^\s*(?:❌\s*)?(?:Error|ERROR)\s*:\s*(.+)$|^\s*❌\s*(.+)$')
_RESOURCE_TYPE = re.compile(r'\b(?:AWS|Custom)::\w+')
_KNOWN_EXCEPTION = re.compile(
    r'\b(ResourceNotFoundException|AccessDeniedException|ValidationException|LimitExceededException'
    r'|ResourceInUseException|InvalidParameterValueException|ResourceConflictException)\b'
)


@dataclass(frozen=True)
class _ParseContext:
    """State carried from one line to the next."""
    now: datetime
    current_stack: Optional[str] = None
    pending_error: Optional[str] = None
    signals: Tuple[FailureSignal, ...] = ()

    def emit(self, signal: FailureSignal) -> "_ParseContext":
        return replace(self, signals=self.signals + (signal,))


def parse_cdk_output(output: Optional[str], now: Optional[datetime] = None) -> List[FailureSignal]:
    """
    Extract failure signals from CDK deploy console output.

    Args:
        output: Raw multi-line console text
        now: Timestamp stamped on every signal (defaults to current UTC time)

    Returns:
        Failure signals in the order they appear
    """
    if not output:
        return []

    initial = _ParseContext(now=now or utc_now())
    final = reduce(_parse_line, output.splitlines(), initial)

    logger.debug(f"Parsed {len(final.signals)} signal(s) from CDK output")
    return list(final.signals)


def _parse_line(ctx: _ParseContext, line: str) -> _ParseContext:
    if not line.strip():
        return ctx

    stack_match = _STACK_PREFIX.match(line)
    if stack_match:
        ctx = replace(ctx, current_stack=stack_match.group(1))

    ctx = _match_status_line(ctx, line)

    exception_match = _KNOWN_EXCEPTION.search(line)
    if exception_match:
        ctx = ctx.emit(FailureSignal(
            resource_type=exception_match.group(1),
            logical_id=ctx.current_stack or "Unknown",
            status_reason=line.strip(),
            timestamp=ctx.now,
            stack_name=ctx.current_stack,
        ))

    return ctx


def _match_status_line(ctx: _ParseContext, line: str) -> _ParseContext:
    """Apply the first matching status matcher; rollback must precede the rest."""
    rollback_match = _ROLLBACK_STATUS.search(line)
    if rollback_match:
        status = rollback_match.group(1)
        detail = _table_detail(line)
        reason = f"Stack is in {status} state"
        if detail:
            reason = f"{reason}: {detail}"
        return ctx.emit(FailureSignal(
            resource_type=STACK_RESOURCE_TYPE,
            logical_id=ctx.current_stack or "Unknown",
            status_reason=reason,
            timestamp=ctx.now,
            resource_status=status,
            stack_name=ctx.current_stack,
        ))

    stack_failed = _STACK_FAILED.search(line)
    if stack_failed:
        stack = stack_failed.group(1) or stack_failed.group(3)
        message = (stack_failed.group(2) or stack_failed.group(4) or "").strip()
        ctx = replace(ctx, current_stack=stack)
        return ctx.emit(FailureSignal(
            resource_type=STACK_RESOURCE_TYPE,
            logical_id=stack,
            status_reason=message or f"Stack {stack} failed",
            timestamp=ctx.now,
            stack_name=stack,
        ))

    resource_failed = _RESOURCE_FAILED.search(line)
    if resource_failed:
        status, resource_type, construct_path, logical_id, detail = resource_failed.groups()
        parts = [p for p in (detail.strip(), ctx.pending_error) if p]
        ctx = replace(ctx, pending_error=None)
        return ctx.emit(FailureSignal(
            resource_type=resource_type,
            logical_id=logical_id or construct_path,
            status_reason=" ".join(parts) or status,
            timestamp=ctx.now,
            resource_status=status,
            stack_name=ctx.current_stack,
        ))

    generic = _GENERIC_ERROR.match(line)
    if generic:
        message = (generic.group(1) or generic.group(2)).strip()
        ctx = replace(ctx, pending_error=message)
        if not _RESOURCE_TYPE.search(line):
            ctx = ctx.emit(FailureSignal(
                resource_type=STACK_RESOURCE_TYPE,
                logical_id=ctx.current_stack or "Unknown",
                status_reason=message,
                timestamp=ctx.now,
                stack_name=ctx.current_stack,
            ))
        return ctx

    return ctx


def _table_detail(line: str) -> str:
    """Trailing free text of a CDK progress row, without the logical id column."""
    columns = [c.strip() for c in line.split("|")]
    if len(columns) < 6:
        return ""
    rest = columns[-1].split(None, 1)
    return rest[1].strip() if len(rest) > 1 else ""
