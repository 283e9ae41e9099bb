"""Sync orchestrator: validate, fetch, transform, dispatch and log one run."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from processor.models import (
    CategoryMapping,
    Integration,
    IntegrationConfig,
    ProviderItem,
    SyncResult,
    SyncRunStats,
)
from storage.dynamodb_manager import STATUS_FAILED, STATUS_SUCCESS
from sync.errors import (
    ConfigurationError,
    DispatchError,
    IntegrationNotFoundError,
    ProviderFetchError,
    ProviderNotApplicableError,
)
from sync.registry import ProviderAdapter, build_registry

logger = logging.getLogger(__name__)

ERROR_LISTING_PROCESSING = 'listing_processing'
ERROR_MAPPING_FETCH = 'mapping_fetch'


@dataclass
class SyncRunState:
    """Run-local accumulators passed through the pipeline stages."""
    items: List[ProviderItem] = field(default_factory=list)
    processed_ids: Set[str] = field(default_factory=set)
    item_mappings: Dict[str, List[CategoryMapping]] = field(default_factory=dict)
    facets: Dict[str, List[str]] = field(default_factory=dict)
    stats: SyncRunStats = field(default_factory=SyncRunStats)

    def collect(self, items: List[ProviderItem], mapping: Optional[CategoryMapping] = None) -> int:
        """
        Add fetched items, keeping the first occurrence of each id.

        Every mapping that returned an item is recorded, including for
        items already collected by an earlier query.

        Returns:
            Number of items that were new to this run
        """
        added = 0
        for item in items:
            if mapping is not None:
                matched = self.item_mappings.setdefault(item.id, [])
                if mapping not in matched:
                    matched.append(mapping)
            if item.id in self.processed_ids:
                continue
            self.processed_ids.add(item.id)
            self.items.append(item)
            self.stats.count_item(item.type)
            added += 1
        return added


class SyncOrchestrator:
    """Runs catalog synchronization for one integration at a time."""

    def __init__(self, store, ingestion, registry: Optional[Dict[str, ProviderAdapter]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the orchestrator.

        Args:
            store: Persistence adapter (integration records and sync logs)
            ingestion: Catalog-ingestion client
            registry: Provider adapters keyed by provider identifier
            clock: Callable returning the current aware datetime
        """
        self.store = store
        self.ingestion = ingestion
        self.registry = registry if registry is not None else build_registry()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def sync_integration(self, integration_id: str) -> SyncResult:
        """
        Synchronize one integration.

        Args:
            integration_id: Integration identifier

        Returns:
            Aggregated created/updated/skipped counts

        Raises:
            IntegrationNotFoundError: Unknown integration
            ProviderNotApplicableError: No adapter for the integration's provider
            ConfigurationError: Required configuration is missing
            ProviderFetchError: The fetch phase failed as a whole
        """
        integration = self.store.get_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found")

        adapter = self.registry.get(integration.provider)
        if adapter is None:
            raise ProviderNotApplicableError(
                f"Integration {integration_id} has unsupported provider {integration.provider!r}"
            )

        if not integration.is_active:
            logger.info(f"Integration {integration_id} is not active")
            return SyncResult()

        config = self._load_config(integration)
        if config is None:
            return SyncResult()

        logger.info(f"Starting sync for integration {integration_id}")
        now = self.clock()
        state = SyncRunState()

        try:
            self._fetch_items(adapter, config, state)
            if config.use_category_facets:
                self._resolve_facets(adapter, config, state)
                self._send_category_facets(integration_id, adapter, config, state, now)

            logger.info(f"Processing {len(state.items)} items for integration {integration_id}")
            self._process_items(integration_id, adapter, config, state, now)

            self.store.update_last_sync(integration_id, now)
            self.store.write_sync_log(
                integration_id,
                event='sync_completed',
                status=STATUS_SUCCESS,
                payload=state.stats.to_log_payload(),
                response=state.stats.to_log_response(),
            )
        except Exception as e:
            logger.error(f"Sync failed for integration {integration_id}: {e}", exc_info=True)
            self._write_failure(integration_id, state.stats, e)
            raise

        stats = state.stats
        logger.info(
            f"Sync completed: {stats.created} created, {stats.updated} updated, "
            f"{stats.skipped} skipped, {stats.error_count} errors",
            extra={'integration_id': integration_id, 'errors_by_category': stats.errors_by_category},
        )
        return stats.to_result()

    def _load_config(self, integration: Integration) -> Optional[IntegrationConfig]:
        """Parse and validate configuration; None means the integration is disabled."""
        if not integration.config:
            error = ConfigurationError(f"Integration {integration.integration_id} has no configuration")
            self._write_failure(integration.integration_id, SyncRunStats(), error)
            raise error

        config = IntegrationConfig.from_dict(integration.provider, integration.config)
        if not config.enabled:
            logger.info(f"Integration {integration.integration_id} is disabled")
            return None

        missing = config.missing_fields()
        if missing:
            error = ConfigurationError(
                f"Integration {integration.integration_id} has invalid configuration: "
                f"missing required fields {', '.join(missing)}"
            )
            self._write_failure(integration.integration_id, SyncRunStats(), error)
            raise error
        return config

    def _fetch_items(self, adapter: ProviderAdapter, config: IntegrationConfig,
                     state: SyncRunState) -> None:
        api_calls = state.stats.api_calls

        if config.category_mappings:
            self._fetch_by_mappings(adapter, config, state)
        elif config.type_filter:
            for content_type in config.type_filter:
                items = adapter.fetch(config, content_type, (), api_calls)
                added = state.collect(items)
                logger.info(f"Type {content_type}: {len(items)} fetched, {added} new")
        else:
            items = adapter.fetch(config, None, (), api_calls)
            state.collect(items)
            logger.info(f"Unfiltered fetch returned {len(items)} items")

    def _mapping_types(self, mapping: CategoryMapping, config: IntegrationConfig) -> List[Optional[str]]:
        if not mapping.do_types:
            return list(config.type_filter) or [None]
        if config.type_filter:
            return [t for t in mapping.do_types if t in config.type_filter]
        return list(mapping.do_types)

    def _fetch_by_mappings(self, adapter: ProviderAdapter, config: IntegrationConfig,
                           state: SyncRunState) -> None:
        """
        Run one query per mapping and type.

        A failed query is counted and skipped. If every query fails the
        provider is considered unavailable and the run fails.
        """
        attempts = 0
        failures = 0
        last_error = None

        for mapping in config.category_mappings:
            content_types = self._mapping_types(mapping, config)
            if not content_types:
                logger.info(f"Mapping {mapping.label} has no types within the type filter, skipping")
                continue

            for content_type in content_types:
                attempts += 1
                try:
                    items = adapter.fetch(config, content_type, mapping.do_category_values,
                                          state.stats.api_calls)
                except ProviderFetchError as e:
                    failures += 1
                    last_error = e
                    state.stats.record_error(ERROR_MAPPING_FETCH)
                    logger.error(f"Fetch failed for mapping {mapping.label} type={content_type}: {e}")
                    continue

                state.stats.count_mapping(mapping.label, len(items))
                added = state.collect(items, mapping)
                logger.info(
                    f"Mapping {mapping.label} type={content_type}: {len(items)} fetched, {added} new"
                )

        if attempts and failures == attempts:
            raise ProviderFetchError(f"All {attempts} category mapping fetches failed: {last_error}")

    def _resolve_facets(self, adapter: ProviderAdapter, config: IntegrationConfig,
                        state: SyncRunState) -> None:
        content_types = []
        for item in state.items:
            if item.type and item.type not in content_types:
                content_types.append(item.type)

        for content_type in content_types:
            values = adapter.fetch_facets(config, content_type, state.stats.api_calls)
            state.facets[content_type] = values
            state.stats.category_facets[content_type] = values
            logger.info(f"Resolved {len(values)} category facets for type {content_type}")

    def _send_category_facets(self, integration_id: str, adapter: ProviderAdapter,
                              config: IntegrationConfig, state: SyncRunState, now: datetime) -> None:
        category_facets = [
            {'type': content_type, 'field': 'category', 'value': value}
            for content_type, values in state.facets.items()
            for value in values
        ]
        if not category_facets:
            return

        try:
            self.ingestion.sync_categories(
                integration_id, config.city_id, adapter.provider, category_facets, timestamp=now
            )
            logger.info(f"Sent {len(category_facets)} category facets to catalog ingestion")
        except DispatchError as e:
            logger.warning(f"Failed to send category facets: {e}")

    def _process_items(self, integration_id: str, adapter: ProviderAdapter,
                       config: IntegrationConfig, state: SyncRunState, now: datetime) -> None:
        stats = state.stats
        for item in state.items:
            try:
                listing = adapter.transform(
                    item,
                    config,
                    state.facets,
                    state.item_mappings.get(item.id, []),
                    now=now,
                )
                result = self.ingestion.sync_listing(integration_id, listing, timestamp=now)
            except Exception as e:
                stats.record_error(ERROR_LISTING_PROCESSING)
                logger.error(f"Failed to process item {item.id}: {e}", exc_info=True)
                continue

            stats.record_action(result.action)
            if listing.tags:
                stats.tag_operations['listings_with_tags'] += 1
                stats.tag_operations['tag_values'] += len(listing.tags)

        stats.items_processed = len(state.items)

    def _write_failure(self, integration_id: str, stats: SyncRunStats, error: Exception) -> None:
        payload = stats.to_log_payload()
        payload['error'] = str(error)
        try:
            self.store.write_sync_log(
                integration_id,
                event='sync_failed',
                status=STATUS_FAILED,
                payload=payload,
                response=stats.to_log_response(),
                error_message=str(error) or type(error).__name__,
            )
        except Exception as log_error:
            logger.error(f"Could not write failure log for integration {integration_id}: {log_error}")
