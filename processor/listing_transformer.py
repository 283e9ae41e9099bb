"""Transformer mapping provider items onto normalized catalog listings."""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from processor.models import (
    TYPE_TO_ROOT_CATEGORY,
    CategoryMapping,
    IntegrationConfig,
    MediaItem,
    ProviderItem,
    TransformedListing,
)
from processor.recurrence import calculate_event_window
from processor.utils import format_datetime, generate_sync_hash, html_to_text, parse_datetime, slugify

logger = logging.getLogger(__name__)


class ListingTransformer:
    """Builds TransformedListing payloads from provider items."""

    HERO_IMAGE_REL = 'default'
    GALLERY_REL = 'imagegallery'

    def __init__(self, external_source: str = 'destination_one'):
        """
        Initialize the transformer.

        Args:
            external_source: Value stored as ``externalSource`` on every listing
        """
        self.external_source = external_source

    def transform(
        self,
        item: ProviderItem,
        config: IntegrationConfig,
        facets: Optional[Dict[str, List[str]]] = None,
        matching_mappings: Optional[Iterable[CategoryMapping]] = None,
        now: Optional[datetime] = None,
    ) -> TransformedListing:
        """
        Transform one provider item into a listing payload.

        Args:
            item: Provider item
            config: Integration configuration
            facets: Resolved category facet values per content type
            matching_mappings: Mappings whose query returned this item
            now: Evaluation instant for the event window

        Returns:
            TransformedListing
        """
        content = self._select_content(item)
        summary = self._select_summary(item)
        time_intervals = [interval.to_payload() for interval in item.time_intervals] or None

        window = calculate_event_window(
            item.time_intervals,
            now=now,
            precomputed=self._precomputed_window(item),
        )

        sync_hash = generate_sync_hash({
            'title': item.title,
            'summary': summary,
            'content': content,
            'timeIntervals': time_intervals,
        })

        return TransformedListing(
            title=item.title,
            summary=summary,
            content=content,
            slug=self.build_slug(item),
            external_source=self.external_source,
            external_id=item.id,
            sync_hash=sync_hash,
            primary_city_id=config.city_id,
            venue_name=item.company or item.title or None,
            address=self._build_address(item),
            geo_lat=item.latitude,
            geo_lng=item.longitude,
            timezone=item.time_intervals[0].timezone if item.time_intervals else None,
            contact_phone=item.phone,
            contact_email=item.email,
            website=item.web,
            hero_image_url=self._hero_image(item),
            media_items=self._gallery(item),
            category_slugs=self.build_category_slugs(item, facets, matching_mappings),
            tags=self._build_tags(item) if config.store_item_categories_as_tags else None,
            time_intervals=time_intervals,
            event_start=format_datetime(window.start),
            event_end=format_datetime(window.end),
        )

    def _select_content(self, item: ProviderItem) -> str:
        # Rich HTML details first, then HTML teaser, then the plain-text variants
        return (
            item.find_text('details', 'text/html')
            or item.find_text('teaser', 'text/html')
            or item.find_text('details', 'text/plain')
            or item.find_text('teaser', 'text/plain')
            or item.title
            or ''
        )

    def _select_summary(self, item: ProviderItem) -> Optional[str]:
        teaser_plain = item.find_text('teaser', 'text/plain')
        if teaser_plain:
            return teaser_plain.strip()
        teaser_html = item.find_text('teaser', 'text/html')
        return html_to_text(teaser_html) or None

    def build_slug(self, item: ProviderItem) -> str:
        return slugify(item.title) or slugify(f"item-{item.id}")

    def _build_address(self, item: ProviderItem) -> Optional[str]:
        parts = [part.strip() for part in (item.street, item.zip, item.city) if part and part.strip()]
        return ', '.join(parts) if parts else None

    def _hero_image(self, item: ProviderItem) -> Optional[str]:
        for media in item.media:
            if media.rel == self.HERO_IMAGE_REL:
                return media.url
        return None

    def _gallery(self, item: ProviderItem) -> List[MediaItem]:
        gallery = [media for media in item.media if media.rel == self.GALLERY_REL]
        return [
            MediaItem(
                type='IMAGE',
                url=media.url,
                order=index,
                alt_text=media.value or item.title or None,
                caption=media.value,
                metadata={
                    'rel': media.rel,
                    'mimeType': media.mime_type,
                    'source': media.source,
                    'license': media.license,
                },
            )
            for index, media in enumerate(gallery)
        ]

    def build_category_slugs(
        self,
        item: ProviderItem,
        facets: Optional[Dict[str, List[str]]] = None,
        matching_mappings: Optional[Iterable[CategoryMapping]] = None,
    ) -> List[str]:
        """
        Union of root, mapping and facet-derived category slugs.

        Subcategories are only derived from the item's own category values
        that the provider lists as facets for the item's type.

        Args:
            item: Provider item
            facets: Category facet values per content type
            matching_mappings: Mappings whose query returned this item

        Returns:
            Ordered, de-duplicated list of slugs
        """
        slugs: List[str] = []

        def add(slug: Optional[str]) -> None:
            if slug and slug not in slugs:
                slugs.append(slug)

        root_slug = TYPE_TO_ROOT_CATEGORY.get(item.type)
        add(root_slug)

        for mapping in matching_mappings or []:
            for slug in mapping.target_slugs:
                add(slug)

        known_values = set((facets or {}).get(item.type) or [])
        if root_slug and known_values:
            for value in item.categories:
                value = value.strip()
                if value in known_values and slugify(value):
                    add(f"{root_slug}-{slugify(value)}")

        return slugs

    def _build_tags(self, item: ProviderItem) -> List[str]:
        tags: List[str] = []
        for value in item.categories:
            value = value.strip()
            if value and value not in tags:
                tags.append(value)
        return tags

    def _precomputed_window(self, item: ProviderItem):
        start_attr = item.attributes.get('interval_start')
        end_attr = item.attributes.get('interval_end')
        if not start_attr or not end_attr:
            return None
        tz_name = item.time_intervals[0].timezone if item.time_intervals else None
        start = parse_datetime(start_attr, tz_name)
        end = parse_datetime(end_attr, tz_name)
        if start is None or end is None:
            logger.debug(f"Unparseable interval attributes on item {item.id}")
            return None
        return start, end
