"""
Full-text index client - primary candidate source.

Talks to an Elasticsearch/OpenSearch compatible index over HTTP. Text is
matched with fuzzy multi-field matching on title and description; category,
price, and date are exact filters. Only listing ids are fetched; the
authoritative listing data is read from the relational store later.
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from listing_search.config import IndexConfig
from listing_search.error_handling import IndexUnavailable
from listing_search.models import SearchCriteria
from .base import CandidateFilter, SourceKind


logger = logging.getLogger(__name__)


class TextIndexClient:
    """
    Index-backed candidate source.

    Every failure (connection error, non-2xx status, malformed body) is
    raised as IndexUnavailable so the orchestrator can fall back to the
    relational store.
    """

    kind = SourceKind.PRIMARY

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.config = config or IndexConfig()
        self.base_url = self.config.url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._auth = None
        if self.config.username:
            self._auth = aiohttp.BasicAuth(
                self.config.username, self.config.password or ""
            )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure we have an open session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the session if this client created it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def build_query(self, candidate_filter: CandidateFilter) -> Dict[str, Any]:
        """
        Build the bool query for a candidate filter.

        Args:
            candidate_filter: Shared filter predicates

        Returns:
            Query DSL dict
        """
        filters: List[Dict[str, Any]] = [
            {"term": {"status": candidate_filter.status}}
        ]

        if candidate_filter.category_id is not None:
            filters.append({"term": {"category_id": candidate_filter.category_id}})

        if candidate_filter.has_price_range:
            price_range = {}
            if candidate_filter.min_price is not None:
                price_range["gte"] = str(candidate_filter.min_price)
            if candidate_filter.max_price is not None:
                price_range["lte"] = str(candidate_filter.max_price)
            filters.append({"range": {"price": price_range}})

        if candidate_filter.has_date_range:
            date_range = {}
            if candidate_filter.min_date is not None:
                date_range["gte"] = candidate_filter.min_date.isoformat()
            if candidate_filter.max_date is not None:
                date_range["lte"] = candidate_filter.max_date.isoformat()
            filters.append({"range": {"created_at": date_range}})

        bool_query: Dict[str, Any] = {"filter": filters}

        # Empty query matches everything
        if candidate_filter.text is not None:
            bool_query["must"] = [{
                "multi_match": {
                    "query": candidate_filter.text,
                    "fields": ["title", "description"],
                    "fuzziness": self.config.fuzziness,
                }
            }]

        return {"bool": bool_query}

    def build_sort(self, candidate_filter: CandidateFilter) -> List[Dict[str, Any]]:
        """Sort clauses: effective sort, then id ascending as tie-breaker."""
        sort = candidate_filter.sort
        return [
            {sort.field.value: {
                "order": "desc" if sort.descending else "asc",
                "missing": "_last",
            }},
            {"id": {"order": "asc"}},
        ]

    def build_search_body(
        self,
        criteria: SearchCriteria,
        window_offset: int,
        window_limit: int
    ) -> Dict[str, Any]:
        """
        Build a _search request body for one candidate window.

        Args:
            criteria: Validated search criteria
            window_offset: First candidate to return
            window_limit: Number of candidates to return

        Returns:
            Request body dict
        """
        candidate_filter = CandidateFilter.from_criteria(criteria)
        return {
            "query": self.build_query(candidate_filter),
            "sort": self.build_sort(candidate_filter),
            "from": window_offset,
            "size": window_limit,
            "_source": False,
            "track_total_hits": False,
        }

    async def find_candidates(
        self,
        criteria: SearchCriteria,
        window_offset: int,
        window_limit: int
    ) -> List[str]:
        """
        Fetch one window of ranked candidate ids.

        Args:
            criteria: Validated search criteria
            window_offset: First candidate to return
            window_limit: Number of candidates to return

        Returns:
            Listing ids in effective-sort order

        Raises:
            IndexUnavailable: If the index cannot serve the request
        """
        body = self.build_search_body(criteria, window_offset, window_limit)
        logger.debug(f"Index search body: {body}")

        result = await self._post("_search", body)
        return [hit["_id"] for hit in self._hits(result)]

    async def count_candidates(self, criteria: SearchCriteria) -> int:
        """
        Count all matching active listings.

        Raises:
            IndexUnavailable: If the index cannot serve the request
        """
        candidate_filter = CandidateFilter.from_criteria(criteria)
        result = await self._post("_count", {"query": self.build_query(candidate_filter)})
        try:
            return int(result["count"])
        except (KeyError, TypeError, ValueError) as e:
            raise IndexUnavailable(f"Malformed count response: {e}", phase="index") from e

    async def collect_candidate_ids(self, criteria: SearchCriteria) -> List[str]:
        """
        Collect every matching candidate id, paging with search_after.

        Used where the complete candidate set is needed rather than a window,
        such as counting the listings within a radius.

        Args:
            criteria: Validated search criteria

        Returns:
            All matching listing ids in effective-sort order
        """
        candidate_filter = CandidateFilter.from_criteria(criteria)
        batch_size = self.config.scan_batch_size
        body: Dict[str, Any] = {
            "query": self.build_query(candidate_filter),
            "sort": self.build_sort(candidate_filter),
            "size": batch_size,
            "_source": False,
            "track_total_hits": False,
        }

        ids: List[str] = []
        while True:
            result = await self._post("_search", body)
            hits = self._hits(result)
            ids.extend(hit["_id"] for hit in hits)

            if len(hits) < batch_size:
                break

            last_sort = hits[-1].get("sort")
            if not last_sort:
                raise IndexUnavailable("Hit is missing sort values for paging", phase="index")
            body["search_after"] = last_sort

        logger.debug(f"Collected {len(ids)} candidate ids from index")
        return ids

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a request to the index and return the decoded JSON body."""
        session = await self._ensure_session()
        url = f"{self.base_url}/{self.config.index_name}/{endpoint}"

        try:
            async with session.post(url, json=body, auth=self._auth) as response:
                if response.status < 200 or response.status >= 300:
                    text = await response.text()
                    raise IndexUnavailable(
                        f"Index returned HTTP {response.status}: {text[:200]}",
                        phase="index"
                    )
                return await response.json()
        except aiohttp.ClientError as e:
            raise IndexUnavailable(f"Index request failed: {e}", phase="index") from e
        except ValueError as e:
            raise IndexUnavailable(f"Index returned invalid JSON: {e}", phase="index") from e

    def _hits(self, result: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return result["hits"]["hits"]
        except (KeyError, TypeError) as e:
            raise IndexUnavailable(f"Malformed search response: {e}", phase="index") from e
