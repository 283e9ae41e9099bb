"""AWS Lambda handler for catalog synchronization runs."""
import json
import logging
import os
import time
from typing import Any, Dict

import requests

from dispatch.catalog_ingestion import CatalogIngestionClient
from storage.dynamodb_manager import DynamoDBManager
from sync.errors import ConfigurationError, IntegrationNotFoundError, ProviderNotApplicableError
from sync.orchestrator import SyncOrchestrator
from sync.registry import build_registry

# Attributes present on every LogRecord; anything else came from ``extra``
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _error_response(status_code: int, message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    return _response(status_code, {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
        'duration_seconds': round(time.time() - start_time, 2)
    })


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for a catalog sync trigger.

    Args:
        event: Trigger payload ``{"integrationId": ..., "timestamp": ...}``
        context: Lambda context object

    Returns:
        Response dict with statusCode and created/updated/skipped counts
    """
    # Read configuration from environment variables
    integrations_table = os.environ.get('INTEGRATIONS_TABLE', 'integrations')
    sync_logs_table = os.environ.get('SYNC_LOGS_TABLE', 'integration-logs')
    ingestion_function = os.environ.get('INGESTION_FUNCTION_NAME', 'catalog-ingestion')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    dispatch_timeout_seconds = int(os.environ.get('DISPATCH_TIMEOUT_SECONDS', '30'))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    event = event or {}
    integration_id = event.get('integrationId')

    logger.info(
        "Received integration sync request",
        extra={
            'integration_id': integration_id,
            'requested_at': event.get('timestamp'),
            'timeout_seconds': timeout_seconds
        }
    )

    if not integration_id:
        logger.error("Sync request without integrationId")
        return _response(400, {'message': 'integrationId is required'})

    session = requests.Session()
    try:
        store = DynamoDBManager(
            integrations_table=integrations_table,
            sync_logs_table=sync_logs_table
        )
        ingestion = CatalogIngestionClient(
            function_name=ingestion_function,
            timeout=dispatch_timeout_seconds
        )
        orchestrator = SyncOrchestrator(
            store=store,
            ingestion=ingestion,
            registry=build_registry(timeout=timeout_seconds, session=session)
        )

        result = orchestrator.sync_integration(integration_id)

    except IntegrationNotFoundError as e:
        logger.error(f"Integration not found: {e}")
        return _error_response(404, 'Integration not found', e, start_time)

    except (ProviderNotApplicableError, ConfigurationError) as e:
        logger.error(f"Integration cannot be synced: {e}", extra={'error_type': type(e).__name__})
        return _error_response(400, 'Integration cannot be synced', e, start_time)

    except Exception as e:
        logger.error(
            f"Sync failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response(500, 'Sync failed', e, start_time)

    finally:
        session.close()

    duration = time.time() - start_time
    logger.info(
        "Lambda execution completed successfully",
        extra={
            'integration_id': integration_id,
            'duration_seconds': round(duration, 2),
            'listings_created': result.created,
            'listings_updated': result.updated,
            'listings_skipped': result.skipped,
            'listing_errors': result.errors
        }
    )

    body = {'integrationId': integration_id, 'duration_seconds': round(duration, 2)}
    body.update(result.to_dict())
    return _response(200, body)
