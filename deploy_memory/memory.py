"""
Classify-and-recommend pipeline with best-effort recording.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .classifier import classify_failure
from .collect import collect_cfn_failure_signals, parse_cdk_output
from .config import Settings, get_settings
from .models import (
    DeployMemoryEvent,
    DeployMemoryRecommendation,
    FailureClassification,
    FailureSignal,
    utc_now,
)
from .playbook import determine_factory_action, get_playbook
from .store import MemoryStore, create_store

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Outcome of one analyze cycle."""
    classification: FailureClassification
    recommendation: DeployMemoryRecommendation
    signals: Tuple[FailureSignal, ...]
    event: Optional[DeployMemoryEvent] = None
    store_error: Optional[Exception] = None

    @property
    def recorded(self) -> bool:
        return self.event is not None and self.store_error is None

    def to_dict(self):
        return {
            "classification": self.classification.to_dict(),
            "recommendation": self.recommendation.to_dict(),
            "signal_count": len(self.signals),
            "recorded": self.recorded,
            "event_id": self.event.event_id if self.event else None,
            "store_error": str(self.store_error) if self.store_error else None,
        }


def build_recommendation(classification: FailureClassification) -> DeployMemoryRecommendation:
    """Resolve the playbook and factory action for a classification."""
    playbook = get_playbook(classification.error_class)
    return DeployMemoryRecommendation(
        fingerprint_id=classification.fingerprint_id,
        error_class=classification.error_class,
        proposed_factory_action=determine_factory_action(
            classification.error_class, classification.confidence
        ),
        recommended_steps=playbook.steps,
        confidence=classification.confidence,
    )


def build_event(
    classification: FailureClassification,
    signals: Sequence[FailureSignal],
    stack_name: Optional[str] = None,
    region: Optional[str] = None,
) -> DeployMemoryEvent:
    """Wrap a classification and its signals into a storable event."""
    return DeployMemoryEvent(
        event_id=str(uuid.uuid4()),
        fingerprint_id=classification.fingerprint_id,
        error_class=classification.error_class,
        service=classification.service,
        confidence=classification.confidence,
        tokens=classification.tokens,
        signals_json=json.dumps([s.to_dict() for s in signals]),
        created_at=utc_now(),
        stack_name=stack_name,
        region=region,
    )


class DeployMemory:
    """Classifies deploy failures, recommends an action and records history."""

    def __init__(self, store: Optional[MemoryStore] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._store = store

    @property
    def store(self) -> MemoryStore:
        if self._store is None:
            self._store = create_store(self.settings)
        return self._store

    def recommend(
        self, signals: Sequence[FailureSignal]
    ) -> Tuple[FailureClassification, DeployMemoryRecommendation]:
        """Classify signals and resolve a recommendation. Touches no storage."""
        classification = classify_failure(signals)
        recommendation = build_recommendation(classification)
        logger.info(
            f"Classified {len(signals)} signal(s) as {classification.error_class.value} "
            f"(confidence={classification.confidence:.2f}, fingerprint={classification.fingerprint_id}) "
            f"-> {recommendation.proposed_factory_action.value}"
        )
        return classification, recommendation

    def analyze(
        self,
        signals: Sequence[FailureSignal],
        stack_name: Optional[str] = None,
        region: Optional[str] = None,
        record: bool = True,
    ) -> AnalysisResult:
        """
        Classify, recommend, and append the classification to the store.

        A store failure is reported on the result; it never replaces the
        recommendation already computed.
        """
        classification, recommendation = self.recommend(signals)
        result = AnalysisResult(
            classification=classification,
            recommendation=recommendation,
            signals=tuple(signals),
        )
        if not record:
            return result

        event = build_event(classification, signals, stack_name, region or self.settings.region)
        result.event = event
        try:
            self.store.put_event(event)
        except Exception as e:
            logger.error(f"Failed to record deploy memory event for {classification.fingerprint_id}: {e}")
            result.store_error = e

        return result

    def analyze_stack(self, stack_name: str, record: bool = True, client=None) -> AnalysisResult:
        """Collect failure signals from a stack's events and analyze them."""
        signals = collect_cfn_failure_signals(
            stack_name,
            region=self.settings.region,
            max_events=self.settings.max_events,
            client=client,
        )
        return self.analyze(signals, stack_name=stack_name, record=record)

    def analyze_cdk_output(
        self, output: str, stack_name: Optional[str] = None, record: bool = True
    ) -> AnalysisResult:
        """Parse CDK console output and analyze the resulting signals."""
        signals = parse_cdk_output(output)
        if stack_name is None:
            stack_name = next((s.stack_name for s in signals if s.stack_name), None)
        return self.analyze(signals, stack_name=stack_name, record=record)
