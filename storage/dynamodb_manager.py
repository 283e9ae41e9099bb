"""DynamoDB manager for integration records and sync-run logs."""
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.models import Integration
from processor.utils import format_datetime

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'SUCCESS'
STATUS_FAILED = 'FAILED'


def _to_dynamodb(value: Any) -> Any:
    """Convert a JSON-like structure into DynamoDB-safe types (floats -> Decimal)."""
    return json.loads(json.dumps(value), parse_float=Decimal)


def _from_dynamodb(value: Any) -> Any:
    """Convert DynamoDB Decimals back into ints/floats."""
    if isinstance(value, list):
        return [_from_dynamodb(v) for v in value]
    if isinstance(value, dict):
        return {k: _from_dynamodb(v) for k, v in value.items()}
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


class DynamoDBManager:
    """Manager for integration and sync-log persistence."""

    def __init__(self, integrations_table: str, sync_logs_table: str,
                 region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and table references.

        Args:
            integrations_table: Table holding integration records (key: integration_id)
            sync_logs_table: Table holding sync-run logs (key: log_id)
            region_name: Optional AWS region override
        """
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.integrations = self.dynamodb.Table(integrations_table)
        self.sync_logs = self.dynamodb.Table(sync_logs_table)
        logger.info(
            f"Initialized DynamoDBManager for tables: {integrations_table}, {sync_logs_table}"
        )

    def get_integration(self, integration_id: str) -> Optional[Integration]:
        """
        Load an integration record.

        Args:
            integration_id: Integration identifier

        Returns:
            Integration, or None if it does not exist
        """
        try:
            response = self.integrations.get_item(Key={'integration_id': integration_id})
        except ClientError as e:
            logger.error(f"Error reading integration {integration_id}: {e}")
            raise

        item = response.get('Item')
        if not item:
            return None

        return Integration(
            integration_id=item['integration_id'],
            provider=item.get('provider', ''),
            is_active=bool(item.get('is_active', True)),
            config=_from_dynamodb(item.get('config')) if item.get('config') is not None else None,
            last_sync_at=item.get('last_sync_at'),
        )

    def save_integration(self, integration: Integration) -> None:
        """Create or replace an integration record."""
        item = {
            'integration_id': integration.integration_id,
            'provider': integration.provider,
            'is_active': integration.is_active,
        }
        if integration.config is not None:
            item['config'] = _to_dynamodb(integration.config)
        if integration.last_sync_at:
            item['last_sync_at'] = integration.last_sync_at
        self.integrations.put_item(Item=item)

    def update_last_sync(self, integration_id: str, synced_at: Optional[datetime] = None) -> str:
        """
        Set ``last_sync_at`` on an integration.

        Returns:
            The stored timestamp
        """
        timestamp = format_datetime(synced_at or datetime.now(timezone.utc))
        self.integrations.update_item(
            Key={'integration_id': integration_id},
            UpdateExpression='SET last_sync_at = :ts',
            ExpressionAttributeValues={':ts': timestamp},
        )
        return timestamp

    def write_sync_log(self, integration_id: str, event: str, status: str,
                       payload: Dict[str, Any], response: Optional[Dict[str, Any]] = None,
                       error_message: Optional[str] = None) -> str:
        """
        Append a sync-run log record.

        Args:
            integration_id: Integration the run belongs to
            event: ``sync_completed`` or ``sync_failed``
            status: SUCCESS or FAILED
            payload: Run statistics
            response: Aggregated counts
            error_message: Error text for failed runs

        Returns:
            Generated log_id
        """
        log_id = str(uuid.uuid4())
        item = {
            'log_id': log_id,
            'integration_id': integration_id,
            'event': event,
            'status': status,
            'payload': _to_dynamodb(payload),
            'created_at': format_datetime(datetime.now(timezone.utc)),
        }
        if response is not None:
            item['response'] = _to_dynamodb(response)
        if error_message:
            item['error_message'] = error_message

        self.sync_logs.put_item(Item=item)
        logger.info(f"Wrote {status} sync log {log_id} for integration {integration_id}")
        return log_id

    def get_sync_logs(self, integration_id: str) -> List[Dict[str, Any]]:
        """
        Retrieve all sync logs of an integration, oldest first.

        Returns:
            List of log records with DynamoDB numbers converted back
        """
        scan_filter = Attr('integration_id').eq(integration_id)
        response = self.sync_logs.scan(FilterExpression=scan_filter)
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.sync_logs.scan(
                FilterExpression=scan_filter,
                ExclusiveStartKey=response['LastEvaluatedKey'],
            )
            items.extend(response.get('Items', []))

        logs = [_from_dynamodb(item) for item in items]
        return sorted(logs, key=lambda log: log.get('created_at', ''))
