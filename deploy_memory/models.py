"""
Data models for failure signals, classifications, playbooks and memory events.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ErrorClass(Enum):
    """Closed set of failure categories. Append new members, never rename."""
    ACM_DNS_VALIDATION_PENDING = "ACM_DNS_VALIDATION_PENDING"
    ROUTE53_DELEGATION_PENDING = "ROUTE53_DELEGATION_PENDING"
    CFN_IN_PROGRESS_LOCK = "CFN_IN_PROGRESS_LOCK"
    CFN_ROLLBACK_LOCK = "CFN_ROLLBACK_LOCK"
    MISSING_SECRET = "MISSING_SECRET"
    MISSING_ENV_VAR = "MISSING_ENV_VAR"
    DEPRECATED_CDK_API = "DEPRECATED_CDK_API"
    UNIT_MISMATCH = "UNIT_MISMATCH"
    UNKNOWN = "UNKNOWN"


class FactoryAction(Enum):
    """What the surrounding automation should do next."""
    WAIT_AND_RETRY = "WAIT_AND_RETRY"
    OPEN_ISSUE = "OPEN_ISSUE"
    HUMAN_REQUIRED = "HUMAN_REQUIRED"


@dataclass(frozen=True)
class FailureSignal:
    """One observed failure from a stack event or a line of CDK output."""
    resource_type: str
    logical_id: str
    status_reason: str
    timestamp: datetime
    physical_id: Optional[str] = None
    resource_status: Optional[str] = None
    stack_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "logical_id": self.logical_id,
            "status_reason": self.status_reason,
            "timestamp": self.timestamp.isoformat(),
            "physical_id": self.physical_id,
            "resource_status": self.resource_status,
            "stack_name": self.stack_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailureSignal":
        return cls(
            resource_type=data["resource_type"],
            logical_id=data["logical_id"],
            status_reason=data["status_reason"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            physical_id=data.get("physical_id"),
            resource_status=data.get("resource_status"),
            stack_name=data.get("stack_name"),
        )


@dataclass(frozen=True)
class FailureClassification:
    """Result of classifying a burst of failure signals."""
    fingerprint_id: str
    error_class: ErrorClass
    service: str
    confidence: float
    tokens: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint_id": self.fingerprint_id,
            "error_class": self.error_class.value,
            "service": self.service,
            "confidence": self.confidence,
            "tokens": list(self.tokens),
        }


@dataclass(frozen=True)
class Playbook:
    """Static remediation guidance for one error class."""
    fingerprint_id: str
    error_class: ErrorClass
    proposed_factory_action: FactoryAction
    steps: str  # markdown
    guardrails: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint_id": self.fingerprint_id,
            "error_class": self.error_class.value,
            "proposed_factory_action": self.proposed_factory_action.value,
            "steps": self.steps,
            "guardrails": list(self.guardrails),
        }


@dataclass(frozen=True)
class DeployMemoryRecommendation:
    """Externally visible output of one classify-and-resolve cycle."""
    fingerprint_id: str
    error_class: ErrorClass
    proposed_factory_action: FactoryAction
    recommended_steps: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint_id": self.fingerprint_id,
            "error_class": self.error_class.value,
            "proposed_factory_action": self.proposed_factory_action.value,
            "recommended_steps": self.recommended_steps,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class DeployMemoryEvent:
    """A persisted classification plus the context it was observed in."""
    event_id: str
    fingerprint_id: str
    error_class: ErrorClass
    service: str
    confidence: float
    tokens: Tuple[str, ...]
    signals_json: str
    created_at: datetime
    stack_name: Optional[str] = None
    region: Optional[str] = None

    @property
    def signals(self) -> List[FailureSignal]:
        """Raw signals, deserialized."""
        return [FailureSignal.from_dict(s) for s in json.loads(self.signals_json)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "fingerprint_id": self.fingerprint_id,
            "error_class": self.error_class.value,
            "service": self.service,
            "confidence": self.confidence,
            "tokens": list(self.tokens),
            "signals_json": self.signals_json,
            "created_at": self.created_at.isoformat(),
            "stack_name": self.stack_name,
            "region": self.region,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeployMemoryEvent":
        return cls(
            event_id=data["event_id"],
            fingerprint_id=data["fingerprint_id"],
            error_class=ErrorClass(data["error_class"]),
            service=data["service"],
            confidence=float(data["confidence"]),
            tokens=tuple(data.get("tokens") or ()),
            signals_json=data.get("signals_json") or "[]",
            created_at=datetime.fromisoformat(data["created_at"]),
            stack_name=data.get("stack_name"),
            region=data.get("region"),
        )


@dataclass
class EventStats:
    """Aggregate view of one fingerprint's history."""
    fingerprint_id: str
    total_occurrences: int
    first_seen: datetime
    last_seen: datetime
    average_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint_id": self.fingerprint_id,
            "total_occurrences": self.total_occurrences,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "average_confidence": self.average_confidence,
        }


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)
