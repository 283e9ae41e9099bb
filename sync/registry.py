"""Registry of provider-specific fetch/transform capabilities."""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import requests

from processor.listing_transformer import ListingTransformer
from processor.models import IntegrationConfig, ProviderItem, TransformedListing
from provider.destination_one_client import DestinationOneClient, build_category_query

DESTINATION_ONE = 'DESTINATION_ONE'


@dataclass(frozen=True)
class ProviderAdapter:
    """
    Capabilities the orchestrator needs from a provider.

    fetch(config, content_type, category_values, api_calls) -> items
    fetch_facets(config, content_type, api_calls) -> category values
    transform(item, config, facets, matching_mappings, now) -> listing
    """
    provider: str
    external_source: str
    fetch: Callable[[IntegrationConfig, Optional[str], Sequence[str], List[str]], List[ProviderItem]]
    fetch_facets: Callable[[IntegrationConfig, str, List[str]], List[str]]
    transform: Callable[..., TransformedListing]


def destination_one_adapter(client: DestinationOneClient,
                            transformer: ListingTransformer) -> ProviderAdapter:
    """Bind the destination.one client and transformer into an adapter."""

    def fetch(config, content_type, category_values, api_calls):
        query = build_category_query(category_values)
        return client.fetch_all_pages(config, content_type, query, api_calls)

    return ProviderAdapter(
        provider=DESTINATION_ONE,
        external_source=transformer.external_source,
        fetch=fetch,
        fetch_facets=client.fetch_category_facets,
        transform=transformer.transform,
    )


def build_registry(timeout: int = 30,
                   session: Optional[requests.Session] = None) -> Dict[str, ProviderAdapter]:
    """
    Build the provider registry.

    Args:
        timeout: Provider HTTP timeout in seconds
        session: Optional requests session shared by provider clients

    Returns:
        Mapping of provider identifier to adapter
    """
    client = DestinationOneClient(timeout=timeout, session=session)
    transformer = ListingTransformer(external_source='destination_one')
    return {DESTINATION_ONE: destination_one_adapter(client, transformer)}
