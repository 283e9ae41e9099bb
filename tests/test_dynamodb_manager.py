"""Unit tests for DynamoDB manager."""
from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

from processor.models import Integration
from storage.dynamodb_manager import STATUS_FAILED, STATUS_SUCCESS, DynamoDBManager


@pytest.fixture
def dynamodb_tables():
    """Create mock integration and sync-log tables."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        dynamodb.create_table(
            TableName='test-integrations',
            KeySchema=[{'AttributeName': 'integration_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'integration_id', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )
        dynamodb.create_table(
            TableName='test-integration-logs',
            KeySchema=[{'AttributeName': 'log_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'log_id', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb


@pytest.fixture
def dynamodb_manager(dynamodb_tables):
    """Create DynamoDBManager instance with mock tables."""
    return DynamoDBManager('test-integrations', 'test-integration-logs', region_name='us-east-1')


@pytest.fixture
def sample_integration():
    return Integration(
        integration_id='int-1',
        provider='DESTINATION_ONE',
        is_active=True,
        config={
            'experience': 'city-app',
            'licensekey': 'secret',
            'cityId': 'city-1',
            'pageSize': 50,
            'typeFilter': ['Event', 'Tour'],
            'categoryMappings': [
                {
                    'doTypes': ['Event'],
                    'doCategoryValues': ['Konzert'],
                    'targetCategorySlug': 'events',
                    'targetSubcategorySlug': 'events-concerts'
                }
            ]
        }
    )


def test_get_integration_missing(dynamodb_manager):
    """Test get_integration returns None for unknown ids."""
    assert dynamodb_manager.get_integration('does-not-exist') is None


def test_save_and_get_integration(dynamodb_manager, sample_integration):
    """Test integration records round-trip with numbers restored."""
    dynamodb_manager.save_integration(sample_integration)

    integration = dynamodb_manager.get_integration('int-1')

    assert integration.provider == 'DESTINATION_ONE'
    assert integration.is_active is True
    assert integration.config['pageSize'] == 50
    assert isinstance(integration.config['pageSize'], int)
    assert integration.config['categoryMappings'][0]['targetSubcategorySlug'] == 'events-concerts'
    assert integration.last_sync_at is None


def test_update_last_sync(dynamodb_manager, sample_integration):
    """Test update_last_sync stores an ISO timestamp."""
    dynamodb_manager.save_integration(sample_integration)

    stored = dynamodb_manager.update_last_sync(
        'int-1', datetime(2025, 5, 20, 12, 30, tzinfo=timezone.utc)
    )

    assert stored == '2025-05-20T12:30:00.000Z'
    assert dynamodb_manager.get_integration('int-1').last_sync_at == stored


def test_write_sync_log_success(dynamodb_manager):
    """Test a successful run log is persisted with its statistics."""
    payload = {
        'itemsProcessed': 3,
        'itemsByType': {'Event': 3},
        'apiCalls': ['https://example.com/?licensekey=***'],
        'apiCallCount': 1
    }
    response = {'created': 2, 'updated': 1, 'skipped': 0, 'errors': 0}

    log_id = dynamodb_manager.write_sync_log(
        'int-1', event='sync_completed', status=STATUS_SUCCESS, payload=payload, response=response
    )

    logs = dynamodb_manager.get_sync_logs('int-1')
    assert len(logs) == 1
    log = logs[0]
    assert log['log_id'] == log_id
    assert log['event'] == 'sync_completed'
    assert log['status'] == STATUS_SUCCESS
    assert log['payload'] == payload
    assert log['response'] == response
    assert 'error_message' not in log


def test_write_sync_log_failure(dynamodb_manager):
    """Test a failed run log carries the error message."""
    dynamodb_manager.write_sync_log(
        'int-1',
        event='sync_failed',
        status=STATUS_FAILED,
        payload={'error': 'provider down'},
        error_message='provider down'
    )

    logs = dynamodb_manager.get_sync_logs('int-1')
    assert logs[0]['status'] == STATUS_FAILED
    assert logs[0]['error_message'] == 'provider down'
    assert 'response' not in logs[0]


def test_get_sync_logs_filters_by_integration(dynamodb_manager):
    """Test logs of other integrations are not returned."""
    for integration_id in ('int-1', 'int-2', 'int-1'):
        dynamodb_manager.write_sync_log(
            integration_id, event='sync_completed', status=STATUS_SUCCESS, payload={}
        )

    assert len(dynamodb_manager.get_sync_logs('int-1')) == 2
    assert len(dynamodb_manager.get_sync_logs('int-2')) == 1
    assert dynamodb_manager.get_sync_logs('int-3') == []
