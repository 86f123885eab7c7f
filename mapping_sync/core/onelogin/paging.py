"""Paged list requests for OneLogin v2 collection endpoints.

Pagination reference:
https://developers.onelogin.com/api-docs/2/getting-started/using-query-parameters#pagination
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, Optional

from .client import (
    OneLoginClient,
    PATH_APPS,
    PATH_CONNECTORS,
    PATH_ROLES,
    PATH_USERS,
    QueryParams,
    RequestSpec,
    decode_response,
)
from .exceptions import (
    BadGatewayError,
    HTTPStatusError,
    MissingPaginationMetadataError,
    OneLoginError,
    PageSizeNotConfiguredError,
    RateLimitExceededError,
)

logger = logging.getLogger(__name__)

TOTAL_PAGES_HEADER = "Total-Pages"

MAX_PAGE_SIZE: Dict[str, int] = {
    PATH_ROLES: 650,
    PATH_APPS: 1000,
    PATH_USERS: 50,
    PATH_CONNECTORS: 1000,
}

_APP_USERS_PATH = re.compile(r"/api/2/apps/[0-9]+/users")


@dataclass
class Page:
    """Requested page; ``page`` is 1-based as in the OneLogin API."""
    limit: int
    page: int = 1


@dataclass
class PageResult:
    data: Any
    page: int
    total_pages: int

    @property
    def more_pages(self) -> bool:
        return self.page < self.total_pages


class PagedFetchExecutor:
    """Fetch one page at a time with per-path page size ceilings."""

    def __init__(self, client: OneLoginClient, max_page_size: Optional[Dict[str, int]] = None):
        self.client = client
        self.max_page_size = dict(MAX_PAGE_SIZE if max_page_size is None else max_page_size)

    def page_size_limit(self, path: str) -> int:
        lookup = PATH_APPS if _APP_USERS_PATH.match(path) else path
        try:
            return self.max_page_size[lookup]
        except KeyError:
            raise PageSizeNotConfiguredError(path) from None

    def fetch(self, spec: RequestSpec, page: Page) -> PageResult:
        """Fetch a single page.

        ``page.limit`` is clamped to the path's ceiling in place. The request
        is sent once; ``spec.retry`` is ignored.

        Returns:
            PageResult whose ``more_pages`` is False once ``page.page`` reaches
            the total page count reported by OneLogin

        Raises:
            PageSizeNotConfiguredError: If the path has no known ceiling
            BadGatewayError / RateLimitExceededError / HTTPStatusError: On non-2xx
            MissingPaginationMetadataError: If Total-Pages is absent or invalid
        """
        logger.info(f"executing paged request method={spec.method} path={spec.path} page={page.page}")
        try:
            result = self._fetch(spec, page)
        except OneLoginError as e:
            logger.error(f"paged request failed method={spec.method} path={spec.path} error={e}")
            raise
        logger.info(
            f"paged request succeeded method={spec.method} path={spec.path} more_pages={result.more_pages}"
        )
        return result

    def _fetch(self, spec: RequestSpec, page: Page) -> PageResult:
        max_limit = self.page_size_limit(spec.path)
        if page.limit > max_limit:
            page.limit = max_limit

        query = QueryParams(spec.query_params)
        query.add("limit", page.limit)
        query.add("page", page.page)
        resp = self.client.send(replace(spec, query_params=query))

        if resp.status_code == 502:
            raise BadGatewayError(spec.path, resp.text)
        if resp.status_code == 429:
            raise RateLimitExceededError(spec.path, resp.text)
        if resp.status_code // 100 != 2:
            raise HTTPStatusError(resp.status_code, resp.text, spec.path)

        data = decode_response(resp, spec.response_model, spec.path)

        total_pages_raw = resp.headers.get(TOTAL_PAGES_HEADER)
        if not total_pages_raw:
            raise MissingPaginationMetadataError(f"missing {TOTAL_PAGES_HEADER} header on {spec.path}")
        try:
            total_pages = int(total_pages_raw)
        except ValueError:
            raise MissingPaginationMetadataError(
                f"invalid {TOTAL_PAGES_HEADER} header on {spec.path}: {total_pages_raw!r}"
            ) from None

        return PageResult(data=data, page=page.page, total_pages=total_pages)

    def iter_pages(self, spec: RequestSpec, limit: int) -> Iterator[Any]:
        """Yield the decoded data of every page, starting at page 1."""
        page = Page(limit=limit, page=1)
        while True:
            result = self.fetch(spec, page)
            yield result.data
            if not result.more_pages:
                return
            page.page += 1
