"""
Tests for the classify-recommend-record pipeline.
"""

from dataclasses import replace
from datetime import datetime, timezone

import boto3
import pytest
from botocore.stub import Stubber

from deploy_memory.config import Settings
from deploy_memory.errors import StoreError
from deploy_memory.memory import DeployMemory, build_recommendation
from deploy_memory.models import ErrorClass, FactoryAction, FailureSignal
from deploy_memory.store import LocalMemoryStore, MemoryStore

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def certificate_signal():
    return FailureSignal(
        resource_type="Certificate",
        logical_id="SiteCertificate",
        status_reason="DNS validation is pending for this certificate",
        timestamp=NOW,
    )


class FailingStore(MemoryStore):
    def put_event(self, event):
        raise StoreError("table unavailable")

    def query_by_fingerprint(self, fingerprint_id, limit=10):
        return []


@pytest.fixture
def settings(tmp_path):
    return Settings(backend="local", home=tmp_path)


@pytest.fixture
def memory(settings):
    return DeployMemory(store=LocalMemoryStore(settings.home), settings=settings)


class TestRecommendation:
    """Test the confidence gate on top of the playbook default."""

    def test_confident_acm_failure_waits_and_retries(self, memory):
        classification, recommendation = memory.recommend([certificate_signal()])

        assert classification.error_class == ErrorClass.ACM_DNS_VALIDATION_PENDING
        assert classification.confidence == 0.9
        assert recommendation.proposed_factory_action == FactoryAction.WAIT_AND_RETRY
        assert recommendation.fingerprint_id == classification.fingerprint_id
        assert "ACM DNS Validation Pending" in recommendation.recommended_steps

    def test_low_confidence_overrides_playbook(self, memory):
        classification, _ = memory.recommend([certificate_signal()])

        recommendation = build_recommendation(replace(classification, confidence=0.4))

        assert recommendation.proposed_factory_action == FactoryAction.OPEN_ISSUE
        assert recommendation.confidence == 0.4

    def test_empty_signals_open_issue(self, memory):
        classification, recommendation = memory.recommend([])

        assert classification.error_class == ErrorClass.UNKNOWN
        assert recommendation.proposed_factory_action == FactoryAction.OPEN_ISSUE


class TestAnalyze:
    """Test recording around a recommendation."""

    def test_analyze_records_event(self, memory):
        result = memory.analyze([certificate_signal()], stack_name="MyAppStack")

        assert result.recorded
        latest = memory.store.get_latest_event(result.classification.fingerprint_id)
        assert latest.event_id == result.event.event_id
        assert latest.stack_name == "MyAppStack"
        assert latest.region == "us-west-2"
        assert latest.signals == [certificate_signal()]

    def test_repeat_failures_share_history(self, memory):
        first = memory.analyze([certificate_signal()])
        second = memory.analyze([certificate_signal()])

        assert first.classification.fingerprint_id == second.classification.fingerprint_id
        stats = memory.store.get_event_stats(first.classification.fingerprint_id)
        assert stats.total_occurrences == 2
        assert stats.average_confidence == pytest.approx(0.9)

    def test_no_record(self, memory):
        result = memory.analyze([certificate_signal()], record=False)

        assert result.event is None
        assert not result.recorded
        assert memory.store.get_latest_event(result.classification.fingerprint_id) is None

    def test_store_failure_keeps_recommendation(self, settings):
        memory = DeployMemory(store=FailingStore(), settings=settings)

        result = memory.analyze([certificate_signal()])

        assert isinstance(result.store_error, StoreError)
        assert not result.recorded
        assert result.recommendation.proposed_factory_action == FactoryAction.WAIT_AND_RETRY
        assert result.to_dict()["store_error"] == "table unavailable"

    def test_store_is_created_from_settings(self, settings):
        memory = DeployMemory(settings=settings)

        assert isinstance(memory.store, LocalMemoryStore)
        assert memory.store.home == settings.home


class TestAnalyzeSources:
    """Test the collector entry points."""

    def test_analyze_stack(self, memory):
        client = boto3.client(
            'cloudformation',
            region_name='us-west-2',
            aws_access_key_id='testing',
            aws_secret_access_key='testing',
        )
        stack_id = "arn:aws:cloudformation:us-west-2:123456789012:stack/MyAppStack/0a1b2c3d"
        event = {
            'StackId': stack_id,
            'EventId': 'event-1',
            'StackName': 'MyAppStack',
            'LogicalResourceId': 'ApiSecret',
            'ResourceType': 'AWS::SecretsManager::Secret',
            'Timestamp': NOW,
            'ResourceStatus': 'CREATE_FAILED',
            'ResourceStatusReason': "Secrets Manager can't find the specified secret.",
        }

        with Stubber(client) as stubber:
            stubber.add_response(
                'describe_stacks',
                {'Stacks': [{
                    'StackId': stack_id,
                    'StackName': 'MyAppStack',
                    'CreationTime': NOW,
                    'StackStatus': 'ROLLBACK_COMPLETE',
                }]},
                {'StackName': 'MyAppStack'},
            )
            stubber.add_response('describe_stack_events', {'StackEvents': [event]}, {'StackName': 'MyAppStack'})

            result = memory.analyze_stack('MyAppStack', client=client)

        assert result.classification.error_class == ErrorClass.MISSING_SECRET
        assert result.recommendation.proposed_factory_action == FactoryAction.OPEN_ISSUE
        assert result.event.stack_name == 'MyAppStack'
        assert result.recorded

    def test_analyze_cdk_output_infers_stack(self, memory):
        output = "\n".join([
            "MyAppStack | 3/4 | 12:00:01 PM | CREATE_FAILED        | AWS::CertificateManager::Certificate | SiteCert "
            "DNS validation is pending for this certificate",
        ])

        result = memory.analyze_cdk_output(output)

        assert result.classification.error_class == ErrorClass.ACM_DNS_VALIDATION_PENDING
        assert result.event.stack_name == "MyAppStack"

    def test_analyze_cdk_output_without_failures(self, memory):
        result = memory.analyze_cdk_output("MyAppStack: deploying... [1/1]\n", record=False)

        assert result.signals == ()
        assert result.classification.error_class == ErrorClass.UNKNOWN
        assert result.recommendation.proposed_factory_action == FactoryAction.OPEN_ISSUE
