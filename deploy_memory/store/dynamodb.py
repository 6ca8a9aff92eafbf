"""
DynamoDB-backed deploy memory store.

Items are partitioned by fingerprint (``pk = FP#<fingerprint>``) and sorted by
write time (``sk = <ISO timestamp>#<event id>``), with a numeric ``ttl``
attribute so DynamoDB expires history on its own.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List

import boto3
from boto3.dynamodb.conditions import Attr, Key

from ..config import DEFAULT_REGION, DEFAULT_TABLE_NAME, DEFAULT_TTL_DAYS
from ..errors import StoreError
from ..models import DeployMemoryEvent, utc_now
from .base import MemoryStore

logger = logging.getLogger(__name__)

TTL_ATTRIBUTE = "ttl"


def partition_key(fingerprint_id: str) -> str:
    return f"FP#{fingerprint_id}"


def sort_key(event: DeployMemoryEvent) -> str:
    return f"{event.created_at.isoformat()}#{event.event_id}"


class DynamoDBMemoryStore(MemoryStore):
    """Stores deploy memory events in a DynamoDB table."""

    def __init__(
        self,
        table_name: str = DEFAULT_TABLE_NAME,
        region: str = DEFAULT_REGION,
        ttl_days: int = DEFAULT_TTL_DAYS,
        table: Any = None,
    ):
        super().__init__(ttl_days)
        self.table_name = table_name
        self.region = region
        self._table = table

    @property
    def table(self):
        """Lazy initialization of the DynamoDB table resource."""
        if self._table is None:
            self._table = boto3.resource('dynamodb', region_name=self.region).Table(self.table_name)
        return self._table

    def put_event(self, event: DeployMemoryEvent) -> None:
        written_at = utc_now()
        item = self._to_item(event)
        item[TTL_ATTRIBUTE] = int(self.expires_at(written_at).timestamp())

        self.table.put_item(Item=item)
        logger.info(f"Stored deploy memory event {event.event_id} for fingerprint {event.fingerprint_id}")

    def query_by_fingerprint(self, fingerprint_id: str, limit: int = 10) -> List[DeployMemoryEvent]:
        if limit <= 0:
            return []

        now = int(utc_now().timestamp())
        kwargs: Dict[str, Any] = {
            'KeyConditionExpression': Key('pk').eq(partition_key(fingerprint_id)),
            # TTL deletion lags; hide items that are already expired.
            'FilterExpression': Attr(TTL_ATTRIBUTE).gt(now),
            'ScanIndexForward': False,
            'Limit': limit,
        }

        items: List[Dict[str, Any]] = []
        while True:
            response = self.table.query(**kwargs)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if len(items) >= limit or not last_key:
                break
            kwargs['ExclusiveStartKey'] = last_key
            kwargs['Limit'] = limit - len(items)

        return [self._from_item(item) for item in items[:limit]]

    def ensure_table(self, client: Any = None) -> bool:
        """
        Create the table with TTL enabled if it does not exist.

        Returns:
            True if the table was created, False if it already existed
        """
        dynamodb = client or boto3.client('dynamodb', region_name=self.region)

        existing = dynamodb.list_tables().get('TableNames', [])
        if self.table_name in existing:
            return False

        dynamodb.create_table(
            TableName=self.table_name,
            KeySchema=[
                {'AttributeName': 'pk', 'KeyType': 'HASH'},
                {'AttributeName': 'sk', 'KeyType': 'RANGE'},
            ],
            AttributeDefinitions=[
                {'AttributeName': 'pk', 'AttributeType': 'S'},
                {'AttributeName': 'sk', 'AttributeType': 'S'},
            ],
            BillingMode='PAY_PER_REQUEST',
        )
        dynamodb.get_waiter('table_exists').wait(TableName=self.table_name)
        dynamodb.update_time_to_live(
            TableName=self.table_name,
            TimeToLiveSpecification={'Enabled': True, 'AttributeName': TTL_ATTRIBUTE},
        )
        logger.info(f"Created deploy memory table {self.table_name} in {self.region}")
        return True

    @staticmethod
    def _to_item(event: DeployMemoryEvent) -> Dict[str, Any]:
        item = {
            'pk': partition_key(event.fingerprint_id),
            'sk': sort_key(event),
            'event_id': event.event_id,
            'fingerprint_id': event.fingerprint_id,
            'error_class': event.error_class.value,
            'service': event.service,
            'confidence': Decimal(str(event.confidence)),
            'tokens': list(event.tokens),
            'signals_json': event.signals_json,
            'created_at': event.created_at.isoformat(),
        }
        if event.stack_name:
            item['stack_name'] = event.stack_name
        if event.region:
            item['region'] = event.region
        return item

    @staticmethod
    def _from_item(item: Dict[str, Any]) -> DeployMemoryEvent:
        try:
            return DeployMemoryEvent.from_dict(item)
        except (KeyError, ValueError) as e:
            raise StoreError(f"Malformed deploy memory item {item.get('sk')!r}: {e}") from e
