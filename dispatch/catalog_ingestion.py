"""Request/response client for the catalog-ingestion service."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import DispatchResult, TransformedListing
from processor.utils import format_datetime
from sync.errors import DispatchError

logger = logging.getLogger(__name__)


class CatalogIngestionClient:
    """Invokes the catalog-ingestion Lambda synchronously."""

    VALID_ACTIONS = ('created', 'updated', 'skipped')
    SYNC_LISTING = 'integration.sync_listing'
    SYNC_CATEGORIES = 'integration.sync_categories'

    def __init__(self, function_name: str, timeout: int = 30, client: Any = None):
        """
        Initialize the ingestion client.

        Args:
            function_name: Name or ARN of the catalog-ingestion function
            timeout: Read timeout per call in seconds (default: 30)
            client: Optional pre-built boto3 Lambda client
        """
        self.function_name = function_name
        self.timeout = timeout
        if client is None:
            client = boto3.client(
                'lambda',
                config=Config(
                    read_timeout=timeout,
                    connect_timeout=min(timeout, 10),
                    retries={'total_max_attempts': 1},
                ),
            )
        self.client = client

    def _invoke(self, pattern: str, data: Dict[str, Any]) -> Any:
        """
        Invoke the ingestion function and decode its response.

        Raises:
            DispatchError: If the call fails or the function raised
        """
        body = {'pattern': pattern, 'data': data}
        try:
            response = self.client.invoke(
                FunctionName=self.function_name,
                InvocationType='RequestResponse',
                Payload=json.dumps(body, ensure_ascii=False).encode('utf-8'),
            )
        except (ClientError, BotoCoreError) as e:
            raise DispatchError(f"Catalog ingestion call {pattern} failed: {e}") from e

        raw_payload = response['Payload'].read() if response.get('Payload') is not None else b''
        try:
            payload = json.loads(raw_payload) if raw_payload else None
        except ValueError as e:
            raise DispatchError(f"Catalog ingestion returned invalid JSON for {pattern}") from e

        if response.get('FunctionError'):
            message = payload.get('errorMessage') if isinstance(payload, dict) else payload
            raise DispatchError(f"Catalog ingestion {pattern} raised: {message}")

        return payload

    def sync_listing(self, integration_id: str, listing: TransformedListing,
                     timestamp: Optional[datetime] = None) -> DispatchResult:
        """
        Submit one listing for idempotent upsert.

        Args:
            integration_id: Integration the listing was synced by
            listing: Transformed listing
            timestamp: Dispatch timestamp (defaults to now)

        Returns:
            DispatchResult with the action taken by the catalog

        Raises:
            DispatchError: If the call fails or the response is malformed
        """
        payload = self._invoke(self.SYNC_LISTING, {
            'integrationId': integration_id,
            'listingData': listing.to_payload(),
            'timestamp': format_datetime(timestamp or datetime.now(timezone.utc)),
        })

        if not isinstance(payload, dict) or payload.get('action') not in self.VALID_ACTIONS:
            raise DispatchError(
                f"Unexpected response for listing {listing.external_id}: {payload!r}"
            )

        return DispatchResult(action=payload['action'], listing_id=payload.get('listingId'))

    def sync_categories(self, integration_id: str, city_id: str, provider: str,
                        category_facets: List[Dict[str, str]],
                        timestamp: Optional[datetime] = None) -> Any:
        """Send the resolved category facets so the catalog can prepare categories."""
        return self._invoke(self.SYNC_CATEGORIES, {
            'integrationId': integration_id,
            'cityId': city_id,
            'provider': provider,
            'categoryFacets': category_facets,
            'timestamp': format_datetime(timestamp or datetime.now(timezone.utc)),
        })
