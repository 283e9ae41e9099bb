"""HTTP client for the destination.one search API."""
import logging
from typing import Iterable, List, Optional
from urllib.parse import quote_plus

import requests

from processor.models import IntegrationConfig, ProviderItem, ProviderPage
from sync.errors import FacetResolutionError, ProviderFetchError

logger = logging.getLogger(__name__)


def build_category_query(category_values: Iterable[str]) -> Optional[str]:
    """
    Build an OR-joined category filter.

    Args:
        category_values: Provider category values

    Returns:
        Query such as ``category:"Konzert" OR category:"Theater"``, or None
        when there are no values (fetch everything of the type)
    """
    clauses = []
    for value in category_values or []:
        value = str(value).strip()
        if value:
            escaped = value.replace('"', '\\"')
            clauses.append(f'category:"{escaped}"')
    if not clauses:
        return None
    return ' OR '.join(clauses)


def redact_url(url: str, license_key: str) -> str:
    """Replace the license key in a URL with ``***``."""
    if not license_key:
        return url
    return url.replace(quote_plus(license_key), '***').replace(license_key, '***')


class DestinationOneClient:
    """Paginated fetcher for provider search results."""

    MAX_PAGES = 1000

    def __init__(self, timeout: int = 30, session: Optional[requests.Session] = None):
        """
        Initialize the provider client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional requests session to reuse
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def _build_params(self, config: IntegrationConfig, content_type: Optional[str] = None,
                      query: Optional[str] = None) -> dict:
        params = {
            'experience': config.experience,
            'licensekey': config.license_key,
            'template': config.template,
        }
        if content_type:
            params['type'] = content_type
        elif config.type_filter:
            params['type'] = ','.join(config.type_filter)
        if query:
            params['q'] = query
        return params

    def _search(self, config: IntegrationConfig, params: dict, api_calls: Optional[List[str]]) -> dict:
        """
        Issue one search request and return its first result block.

        Raises:
            ProviderFetchError: On network errors, timeouts, non-2xx status,
                a body that is not JSON or a body without the results shape
        """
        url = requests.Request('GET', config.base_url, params=params).prepare().url
        safe_url = redact_url(url, config.license_key)
        if api_calls is not None:
            api_calls.append(safe_url)
        logger.debug(f"Fetching from provider: {safe_url}")

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Provider request failed: {safe_url}: {e}")
            raise ProviderFetchError(f"Provider request failed: {e}", url=safe_url) from e
        except ValueError as e:
            logger.error(f"Provider returned invalid JSON: {safe_url}")
            raise ProviderFetchError(f"Invalid JSON from provider: {e}", url=safe_url) from e

        results = (data.get('results') or [{}]) if isinstance(data, dict) else None
        result = (results[0] or {}) if isinstance(results, list) else None
        if not isinstance(result, dict) or not isinstance(result.get('items') or [], list):
            logger.error(f"Provider returned an unexpected response shape: {safe_url}")
            raise ProviderFetchError("Unexpected response shape from provider", url=safe_url)
        return result

    def fetch_page(self, config: IntegrationConfig, content_type: Optional[str], query: Optional[str],
                   page: int, page_size: int, api_calls: Optional[List[str]] = None) -> ProviderPage:
        """
        Fetch a single page of search results.

        Args:
            config: Integration configuration
            content_type: Provider type to restrict to, or None
            query: Category query (``q`` parameter), or None
            page: 1-based page number
            page_size: Requested page size
            api_calls: Buffer receiving the redacted URL

        Returns:
            ProviderPage with parsed items and reported counts
        """
        params = self._build_params(config, content_type, query)
        params['page'] = page
        params['pagesize'] = page_size

        result = self._search(config, params, api_calls)
        raw_items = result.get('items') or []

        items = []
        for raw_item in raw_items:
            try:
                items.append(ProviderItem.from_dict(raw_item))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed provider item on page {page}: {e}")

        try:
            reported_count = int(result['count'])
        except (KeyError, TypeError, ValueError):
            reported_count = len(raw_items)

        return ProviderPage(
            items=items,
            count=reported_count,
            overall_count=result.get('overallcount'),
            facet_groups=result.get('facetGroups') or [],
        )

    def fetch_all_pages(self, config: IntegrationConfig, content_type: Optional[str] = None,
                        query: Optional[str] = None,
                        api_calls: Optional[List[str]] = None) -> List[ProviderItem]:
        """
        Fetch every page for a type/query, de-duplicating items by id.

        Stops when a page is empty, when the overall count has been reached,
        when a page reports fewer items than requested, or after MAX_PAGES.

        Args:
            config: Integration configuration
            content_type: Provider type to restrict to, or None
            query: Category query, or None
            api_calls: Buffer receiving every redacted URL

        Returns:
            Items in provider order, first occurrence of each id kept
        """
        page_size = config.page_size
        items: List[ProviderItem] = []
        seen_ids = set()
        fetched = 0

        for page in range(1, self.MAX_PAGES + 1):
            result = self.fetch_page(config, content_type, query, page, page_size, api_calls)
            fetched += len(result.items)

            for item in result.items:
                if item.id not in seen_ids:
                    seen_ids.add(item.id)
                    items.append(item)

            if not result.items:
                break
            if result.overall_count and fetched >= result.overall_count:
                break
            if result.count < page_size:
                break
        else:
            logger.warning(f"Stopped after {self.MAX_PAGES} pages for type={content_type!r}")

        logger.info(
            f"Fetched {len(items)} items for type={content_type!r} query={query!r} "
            f"in {page} page(s)"
        )
        return items

    def fetch_category_facets(self, config: IntegrationConfig, content_type: str,
                              api_calls: Optional[List[str]] = None) -> List[str]:
        """
        Fetch the provider's category vocabulary for a content type.

        Failures are logged and yield an empty list.

        Args:
            config: Integration configuration
            content_type: Provider type
            api_calls: Buffer receiving the redacted URL

        Returns:
            Sorted, unique, non-empty category values
        """
        params = self._build_params(config, content_type)
        params['facets'] = 'true'
        params['page'] = 1
        params['pagesize'] = 1

        try:
            result = self._search(config, params, api_calls)
            return self._extract_category_facets(result)
        except (ProviderFetchError, FacetResolutionError) as e:
            logger.warning(f"Could not resolve category facets for type={content_type!r}: {e}")
            return []

    def _extract_category_facets(self, result: dict) -> List[str]:
        try:
            groups = result.get('facetGroups') or []
            values = set()
            for group in groups:
                if group.get('field') != 'category':
                    continue
                for facet in group.get('facets') or []:
                    value = str(facet.get('value') or '').strip()
                    if value:
                        values.add(value)
        except (AttributeError, TypeError) as e:
            raise FacetResolutionError(f"Malformed facet groups: {e}") from e
        return sorted(values)
