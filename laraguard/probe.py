"""
External collaborators: HTTP fetcher and live-application introspection.

Both answer conservatively. A fetch that fails for any transport reason is
``None`` ("not reachable"), and an introspection probe that cannot reach a
running application answers ``INDETERMINATE`` so callers fall back to
static file analysis.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import httpx

logger = logging.getLogger(__name__)


# ============================================================================
# HTTP reachability
# ============================================================================

@dataclass(frozen=True)
class FetchResponse:
    status: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class Fetcher:
    """``fetch(url) -> FetchResponse | None``; never raises."""

    def fetch(self, url: str) -> Optional[FetchResponse]:
        raise NotImplementedError


class HttpxFetcher(Fetcher):
    """GET over httpx with short connect/read timeouts.

    Certificates are not verified so staging hosts with self-signed
    certificates can still be probed. Redirects are not followed.
    """

    def __init__(self, connect_timeout: float = 3.0, read_timeout: float = 5.0,
                 client: Optional[httpx.Client] = None):
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self.client = client

    def fetch(self, url: str) -> Optional[FetchResponse]:
        try:
            if self.client is not None:
                response = self.client.get(url, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout, verify=False) as client:
                    response = client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, OSError) as e:
            logger.debug("Fetching %s failed: %s", url, e)
            return None
        return FetchResponse(
            status=response.status_code,
            body=response.text,
            headers=dict(response.headers),
        )


def is_local_url(url: str) -> bool:
    return 'localhost' in url or '127.0.0.1' in url


def with_scheme(url: str) -> str:
    """``example.com`` -> ``https://example.com``; URLs with a scheme are unchanged."""
    url = url.strip()
    if '://' in url:
        return url
    return 'https://' + url.lstrip('/')


def base_url(url: str) -> Optional[str]:
    """``https://example.com/login`` -> ``https://example.com``; None without a host."""
    try:
        parsed = httpx.URL(with_scheme(url))
    except (httpx.InvalidURL, ValueError):
        return None
    if not parsed.host:
        return None
    port = f":{parsed.port}" if parsed.port else ""
    return f"{parsed.scheme}://{parsed.host}{port}"


# ============================================================================
# Live introspection
# ============================================================================

class ProbeAnswer(Enum):
    YES = "yes"
    NO = "no"
    INDETERMINATE = "indeterminate"


class LiveIntrospectionProbe:
    """Questions only a running application instance can answer."""

    def middleware_registered(self, middleware: str) -> ProbeAnswer:
        """Whether ``middleware`` is registered globally."""
        raise NotImplementedError


class NullIntrospectionProbe(LiveIntrospectionProbe):
    """Used when no running application is reachable."""

    def middleware_registered(self, middleware: str) -> ProbeAnswer:
        return ProbeAnswer.INDETERMINATE
