"""
HTTP access to source sites.
"""

from crawler.http.client import BROWSER_USER_AGENT, FetchClient
from crawler.http.postback import (
    PostbackState,
    build_postback_form,
    extract_postback_state,
    fetch_all_pages,
)

__all__ = [
    "BROWSER_USER_AGENT",
    "FetchClient",
    "PostbackState",
    "build_postback_form",
    "extract_postback_state",
    "fetch_all_pages",
]
