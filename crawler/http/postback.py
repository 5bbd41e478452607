"""
ASP.NET postback pagination.

Page 1 of a paginated grid is fetched with GET; its hidden ``__VIEWSTATE``
fields are captured and replayed verbatim in POSTs for pages 2..N. The state
values are opaque and never interpreted.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from typing import TypeVar

from bs4 import BeautifulSoup

from crawler.http.client import FetchClient
from crawler.logging_utils import log_event
from crawler.workers.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PAGE_ARGUMENT = re.compile(r"Page\$(\d+)")


@dataclass(frozen=True)
class PostbackState:
    view_state: str
    view_state_generator: str
    event_validation: str
    current_page: int = 1
    total_pages: int = 1

    @property
    def has_more(self) -> bool:
        return self.current_page < self.total_pages


def _hidden_value(soup: BeautifulSoup, name: str) -> str:
    node = soup.find("input", attrs={"name": name}) or soup.find("input", attrs={"id": name})
    if node is None:
        return ""
    value = node.get("value", "")
    return value if isinstance(value, str) else ""


def last_listed_page(html: bytes | str) -> int:
    """
    Highest ``Page$N`` argument among a page's pager links.

    Numeric pagers only list a window of pages (``1 .. 10 ...``), so this is a
    lower bound on the grid size until the later pages have been seen.
    """

    text = html.decode("utf-8", "replace") if isinstance(html, bytes) else html
    return max([1, *(int(match) for match in _PAGE_ARGUMENT.findall(text))])


def extract_postback_state(html: bytes | str) -> PostbackState:
    """
    Capture the hidden postback fields and pager size from a grid page.
    """

    soup = BeautifulSoup(html, "html.parser")
    total_pages = last_listed_page(str(soup))
    return PostbackState(
        view_state=_hidden_value(soup, "__VIEWSTATE"),
        view_state_generator=_hidden_value(soup, "__VIEWSTATEGENERATOR"),
        event_validation=_hidden_value(soup, "__EVENTVALIDATION"),
        current_page=1,
        total_pages=total_pages,
    )


def build_postback_form(state: PostbackState, *, event_target: str, page: int) -> dict[str, str]:
    return {
        "__EVENTTARGET": event_target,
        "__EVENTARGUMENT": f"Page${page}",
        "__VIEWSTATE": state.view_state,
        "__VIEWSTATEGENERATOR": state.view_state_generator,
        "__EVENTVALIDATION": state.event_validation,
    }


def fetch_all_pages(
    client: FetchClient,
    path: str,
    *,
    event_target: str,
    parse_page: Callable[[bytes], T],
    token: CancellationToken,
    max_pages: int | None = None,
) -> Iterator[T]:
    """
    Yield parsed pages of a postback-paginated grid, page 1 first.

    The pager is re-read on every fetched page, so grids whose pager shows a
    sliding window of page numbers are followed to their last page.
    ``max_pages`` caps the total number of pages yielded.
    """

    first = client.get(path, token=token)
    state = extract_postback_state(first)
    yield parse_page(first)

    log_event(
        logger,
        logging.DEBUG,
        "postback_pagination_started",
        source=client.source,
        path=path,
        listed_pages=state.total_pages,
        max_pages=max_pages,
    )
    page = 2
    while page <= state.total_pages and (max_pages is None or page <= max_pages):
        if token.cancelled:
            return
        body = client.post_form(
            path,
            build_postback_form(state, event_target=event_target, page=page),
            token=token,
        )
        state = replace(
            state,
            current_page=page,
            total_pages=max(state.total_pages, last_listed_page(body)),
        )
        yield parse_page(body)
        page += 1
