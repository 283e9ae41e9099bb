"""Data models for catalog synchronization."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from processor.utils import format_datetime, parse_datetime

DEFAULT_BASE_URL = 'https://meta.et4.de/rest.ashx/search/'
DEFAULT_TEMPLATE = 'ET2014A_MULTI.json'
DEFAULT_PAGE_SIZE = 100


class ContentType(str, Enum):
    """Provider content types the catalog knows about."""
    EVENT = 'Event'
    TOUR = 'Tour'
    POI = 'POI'
    GASTRO = 'Gastro'
    HOTEL = 'Hotel'
    ARTICLE = 'Article'


class Frequency(str, Enum):
    """Recurrence cadence of a time interval."""
    NONE = 'NONE'
    DAILY = 'DAILY'
    WEEKLY = 'WEEKLY'
    MONTHLY = 'MONTHLY'
    YEARLY = 'YEARLY'

    @classmethod
    def from_provider(cls, value: Optional[str]) -> 'Frequency':
        """Map provider values such as ``Weekly`` onto a Frequency."""
        if not value:
            return cls.NONE
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.NONE


WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')

# Content type -> root category slug in the catalog
TYPE_TO_ROOT_CATEGORY = {
    ContentType.GASTRO.value: 'food-and-drink',
    ContentType.EVENT.value: 'events',
    ContentType.TOUR.value: 'tours',
    ContentType.POI.value: 'points-of-interest',
    ContentType.HOTEL.value: 'hotels-and-stays',
    ContentType.ARTICLE.value: 'articles-and-stories',
}


def _as_int(value: Any, default: int) -> int:
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ('false', '0', 'no', '')
    return bool(value)


def _as_str_list(value: Any) -> List[str]:
    """Normalize a string, list or set into a de-duplicated list of stripped strings."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    result = []
    for entry in value:
        text = str(entry).strip()
        if text and text not in result:
            result.append(text)
    return result


@dataclass(frozen=True)
class CategoryMapping:
    """Operator rule translating a provider category query into catalog slugs."""
    do_types: Tuple[str, ...]
    do_category_values: Tuple[str, ...]
    target_category_slug: str
    target_subcategory_slug: Optional[str] = None

    @property
    def label(self) -> str:
        """Readable key used in run statistics."""
        if self.target_subcategory_slug:
            return f"{self.target_category_slug}/{self.target_subcategory_slug}"
        return self.target_category_slug

    @property
    def target_slugs(self) -> List[str]:
        slugs = [self.target_category_slug]
        if self.target_subcategory_slug:
            slugs.append(self.target_subcategory_slug)
        return slugs

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CategoryMapping':
        return cls(
            do_types=tuple(_as_str_list(data.get('doTypes'))),
            do_category_values=tuple(_as_str_list(data.get('doCategoryValues'))),
            target_category_slug=str(data.get('targetCategorySlug') or '').strip(),
            target_subcategory_slug=(str(data['targetSubcategorySlug']).strip()
                                     if data.get('targetSubcategorySlug') else None),
        )


@dataclass
class IntegrationConfig:
    """Persisted configuration of one provider integration."""
    provider: str
    experience: str
    license_key: str
    city_id: str
    enabled: bool = True
    base_url: str = DEFAULT_BASE_URL
    template: str = DEFAULT_TEMPLATE
    type_filter: List[str] = field(default_factory=list)
    category_mappings: List[CategoryMapping] = field(default_factory=list)
    page_size: int = DEFAULT_PAGE_SIZE
    store_item_categories_as_tags: bool = False
    use_category_facets: bool = True

    @classmethod
    def from_dict(cls, provider: str, data: Dict[str, Any]) -> 'IntegrationConfig':
        """
        Build a config from its persisted camelCase representation.

        Args:
            provider: Provider identifier of the owning integration
            data: Stored configuration map

        Returns:
            IntegrationConfig instance (required fields may be empty)
        """
        mappings = [
            CategoryMapping.from_dict(entry)
            for entry in (data.get('categoryMappings') or [])
            if isinstance(entry, dict)
        ]
        return cls(
            provider=provider,
            experience=str(data.get('experience') or '').strip(),
            license_key=str(data.get('licensekey') or data.get('licenseKey') or '').strip(),
            city_id=str(data.get('cityId') or '').strip(),
            enabled=_as_bool(data.get('enabled'), True),
            base_url=data.get('baseUrl') or DEFAULT_BASE_URL,
            template=data.get('template') or DEFAULT_TEMPLATE,
            type_filter=_as_str_list(data.get('typeFilter')),
            category_mappings=mappings,
            page_size=max(1, _as_int(data.get('pageSize'), DEFAULT_PAGE_SIZE)),
            store_item_categories_as_tags=_as_bool(data.get('storeItemCategoriesAsTags'), False),
            use_category_facets=_as_bool(data.get('useCategoryFacets'), True),
        )

    def missing_fields(self) -> List[str]:
        """Names of required fields that are empty."""
        required = {
            'experience': self.experience,
            'licensekey': self.license_key,
            'cityId': self.city_id,
        }
        return [name for name, value in required.items() if not value]


@dataclass
class Integration:
    """Integration record as stored by the persistence layer."""
    integration_id: str
    provider: str
    is_active: bool
    config: Optional[Dict[str, Any]]
    last_sync_at: Optional[str] = None


@dataclass
class TimeInterval:
    """Single occurrence or recurrence rule attached to a provider item."""
    start: datetime
    end: Optional[datetime]
    weekdays: FrozenSet[str] = frozenset()
    timezone: Optional[str] = None
    frequency: Frequency = Frequency.NONE
    interval: int = 1
    repeat_until: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['TimeInterval']:
        """Parse a provider interval; returns None when it has no usable start."""
        tz_name = data.get('tz') or data.get('timezone')
        start = parse_datetime(data.get('start'), tz_name)
        if start is None:
            return None
        weekdays = frozenset(
            day for day in _as_str_list(data.get('weekdays')) if day in WEEKDAYS
        )
        return cls(
            start=start,
            end=parse_datetime(data.get('end'), tz_name),
            weekdays=weekdays,
            timezone=tz_name,
            frequency=Frequency.from_provider(data.get('freq') or data.get('frequency')),
            interval=max(1, _as_int(data.get('interval'), 1)),
            repeat_until=parse_datetime(data.get('repeatUntil'), tz_name, end_of_day=True),
        )

    @property
    def is_recurring(self) -> bool:
        return self.frequency != Frequency.NONE

    def to_payload(self) -> Dict[str, Any]:
        """Normalized representation sent to the catalog."""
        payload = {
            'weekdays': [day for day in WEEKDAYS if day in self.weekdays],
            'start': format_datetime(self.start),
            'end': format_datetime(self.end),
            'tz': self.timezone,
            'freq': self.frequency.value,
            'interval': self.interval,
        }
        if self.repeat_until is not None:
            payload['repeatUntil'] = format_datetime(self.repeat_until)
        return payload


@dataclass
class ProviderText:
    rel: str
    mime_type: Optional[str]
    value: str


@dataclass
class ProviderMedia:
    url: str
    rel: Optional[str] = None
    mime_type: Optional[str] = None
    value: Optional[str] = None
    source: Optional[str] = None
    license: Optional[str] = None


@dataclass
class ProviderItem:
    """Item returned by the provider search endpoint (read-only)."""
    id: str
    type: str
    title: str = ''
    global_id: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    texts: List[ProviderText] = field(default_factory=list)
    street: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    web: Optional[str] = None
    company: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    media: List[ProviderMedia] = field(default_factory=list)
    time_intervals: List[TimeInterval] = field(default_factory=list)
    attributes: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProviderItem':
        """
        Parse a raw provider item.

        Args:
            data: Item dictionary as found in ``results[0].items``

        Returns:
            ProviderItem instance

        Raises:
            ValueError: If the item has no id
        """
        item_id = data.get('id')
        if item_id is None or str(item_id).strip() == '':
            raise ValueError('Provider item without id')

        texts = [
            ProviderText(rel=t.get('rel') or '', mime_type=t.get('type'), value=t.get('value') or '')
            for t in (data.get('texts') or [])
            if isinstance(t, dict)
        ]
        media = [
            ProviderMedia(
                url=m['url'],
                rel=m.get('rel'),
                mime_type=m.get('type'),
                value=m.get('value'),
                source=m.get('source'),
                license=m.get('license'),
            )
            for m in (data.get('media_objects') or [])
            if isinstance(m, dict) and m.get('url')
        ]
        intervals = []
        for raw_interval in data.get('timeIntervals') or []:
            if isinstance(raw_interval, dict):
                interval = TimeInterval.from_dict(raw_interval)
                if interval is not None:
                    intervals.append(interval)

        attributes = {}
        for attribute in data.get('attributes') or []:
            if isinstance(attribute, dict) and attribute.get('key'):
                attributes[attribute['key']] = attribute.get('value')

        geo = (data.get('geo') or {}).get('main') or {}

        return cls(
            id=str(item_id),
            type=data.get('type') or '',
            title=(data.get('title') or '').strip(),
            global_id=data.get('global_id'),
            categories=[c for c in (data.get('categories') or []) if isinstance(c, str)],
            texts=texts,
            street=data.get('street'),
            zip=data.get('zip'),
            city=data.get('city'),
            phone=data.get('phone'),
            email=data.get('email'),
            web=data.get('web'),
            company=data.get('company'),
            latitude=geo.get('latitude'),
            longitude=geo.get('longitude'),
            media=media,
            time_intervals=intervals,
            attributes=attributes,
        )

    def find_text(self, rel: str, mime_type: str) -> Optional[str]:
        for text in self.texts:
            if text.rel == rel and text.mime_type == mime_type and text.value:
                return text.value
        return None


@dataclass
class ProviderPage:
    """One page of provider search results."""
    items: List[ProviderItem]
    count: int
    overall_count: Optional[int]
    facet_groups: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class EventWindow:
    """Single display window computed for an event listing."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class MediaItem:
    type: str
    url: str
    order: int
    alt_text: Optional[str] = None
    caption: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = {'type': self.type, 'url': self.url, 'order': self.order, 'metadata': self.metadata}
        if self.alt_text:
            payload['altText'] = self.alt_text
        if self.caption:
            payload['caption'] = self.caption
        return payload


@dataclass
class TransformedListing:
    """Normalized listing payload sent to catalog ingestion."""
    title: str
    content: str
    slug: str
    external_source: str
    external_id: str
    sync_hash: str
    primary_city_id: str
    category_slugs: List[str]
    summary: Optional[str] = None
    source_type: str = 'API_IMPORT'
    venue_name: Optional[str] = None
    address: Optional[str] = None
    geo_lat: Optional[float] = None
    geo_lng: Optional[float] = None
    timezone: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    website: Optional[str] = None
    hero_image_url: Optional[str] = None
    media_items: List[MediaItem] = field(default_factory=list)
    tags: Optional[List[str]] = None
    time_intervals: Optional[List[Dict[str, Any]]] = None
    event_start: Optional[str] = None
    event_end: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """
        Serialize to the camelCase contract of the ingestion service.

        Optional fields without a value are omitted.
        """
        payload = {
            'title': self.title,
            'summary': self.summary,
            'content': self.content,
            'slug': self.slug,
            'externalSource': self.external_source,
            'externalId': self.external_id,
            'syncHash': self.sync_hash,
            'sourceType': self.source_type,
            'primaryCityId': self.primary_city_id,
            'venueName': self.venue_name,
            'address': self.address,
            'geoLat': self.geo_lat,
            'geoLng': self.geo_lng,
            'timezone': self.timezone,
            'contactPhone': self.contact_phone,
            'contactEmail': self.contact_email,
            'website': self.website,
            'heroImageUrl': self.hero_image_url,
            'categorySlugs': list(self.category_slugs),
            'tags': self.tags,
            'timeIntervals': self.time_intervals,
            'eventStart': self.event_start,
            'eventEnd': self.event_end,
        }
        if self.media_items:
            payload['mediaItems'] = [media.to_payload() for media in self.media_items]
        return {key: value for key, value in payload.items() if value is not None}


@dataclass
class DispatchResult:
    """Response of the catalog-ingestion upsert."""
    action: str
    listing_id: Optional[str]


@dataclass
class SyncResult:
    """Aggregated outcome returned to the sync trigger."""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'errors': self.errors,
        }


@dataclass
class SyncRunStats:
    """Per-run accumulator persisted as the sync log record."""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    items_processed: int = 0
    items_by_type: Dict[str, int] = field(default_factory=dict)
    items_by_mapping: Dict[str, int] = field(default_factory=dict)
    tag_operations: Dict[str, int] = field(default_factory=lambda: {
        'listings_with_tags': 0,
        'tag_values': 0,
    })
    category_facets: Dict[str, List[str]] = field(default_factory=dict)
    errors_by_category: Dict[str, int] = field(default_factory=dict)
    api_calls: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(self.errors_by_category.values())

    def record_error(self, category: str) -> None:
        self.errors_by_category[category] = self.errors_by_category.get(category, 0) + 1

    def record_action(self, action: str) -> None:
        if action == 'created':
            self.created += 1
        elif action == 'updated':
            self.updated += 1
        elif action == 'skipped':
            self.skipped += 1

    def count_item(self, content_type: str) -> None:
        key = content_type or 'Unknown'
        self.items_by_type[key] = self.items_by_type.get(key, 0) + 1

    def count_mapping(self, label: str, count: int) -> None:
        self.items_by_mapping[label] = self.items_by_mapping.get(label, 0) + count

    def to_result(self) -> SyncResult:
        return SyncResult(
            created=self.created,
            updated=self.updated,
            skipped=self.skipped,
            errors=self.error_count,
        )

    def to_log_payload(self) -> Dict[str, Any]:
        return {
            'itemsProcessed': self.items_processed,
            'itemsByType': dict(self.items_by_type),
            'itemsByMapping': dict(self.items_by_mapping),
            'errorsByCategory': dict(self.errors_by_category),
            'tagOperations': dict(self.tag_operations),
            'categoryFacets': {key: list(values) for key, values in self.category_facets.items()},
            'apiCalls': list(self.api_calls),
            'apiCallCount': len(self.api_calls),
        }

    def to_log_response(self) -> Dict[str, int]:
        return {
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'errors': self.error_count,
        }
