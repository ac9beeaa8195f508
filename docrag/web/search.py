"""
Live web search for the synthesis chat mode.

Providers are tried in a fixed order, each with a bounded timeout; the first
provider that returns results wins. A provider failing several times in a row
is skipped until its cooldown expires.
"""
import time
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Protocol
import httpx
from docrag.core.config import settings
from docrag.core.errors import WebSearchError
from docrag.utils.logger import get_logger
from docrag.web.firecrawl import FirecrawlClient, WebResult

logger = get_logger("docrag.web.search")


class SearchProvider(Protocol):
    name: str

    async def search(self, query: str, limit: int) -> List[WebResult]:
        ...


class FirecrawlProvider:
    def __init__(self, client: FirecrawlClient):
        self.client = client
        self.name = "firecrawl"

    async def search(self, query: str, limit: int) -> List[WebResult]:
        return await self.client.search(query, limit=limit)


class SearxngProvider:
    """One SearXNG instance queried through its JSON API."""

    def __init__(
            self,
            base_url: str,
            timeout: float = 20.0,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.name = f"searxng:{self.base_url}"

    async def search(self, query: str, limit: int) -> List[WebResult]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.get(f"{self.base_url}/search", params={"q": query, "format": "json"})
            resp.raise_for_status()
            data = resp.json()

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise ValueError(f"unexpected SearXNG response shape: {type(data).__name__}")

        return [
            WebResult(url=r["url"], title=r.get("title") or r["url"], text=r.get("content") or "")
            for r in results[:limit]
            if isinstance(r, dict) and r.get("url")
        ]


class CircuitBreaker:
    def __init__(self, threshold: int, cooldown: float, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.cooldown = cooldown
        self.clock = clock
        self._failures: Dict[str, int] = {}
        self._opened_at: Dict[str, float] = {}

    def is_open(self, name: str) -> bool:
        opened = self._opened_at.get(name)
        if opened is None:
            return False
        if self.clock() - opened >= self.cooldown:
            # half-open: allow one more try
            del self._opened_at[name]
            self._failures[name] = self.threshold - 1
            return False
        return True

    def record_success(self, name: str) -> None:
        self._failures.pop(name, None)
        self._opened_at.pop(name, None)

    def record_failure(self, name: str) -> None:
        count = self._failures.get(name, 0) + 1
        self._failures[name] = count
        if count >= self.threshold:
            self._opened_at[name] = self.clock()
            logger.warning("Web search provider disabled", extra={
                "provider": name,
                "cooldown": self.cooldown,
            })


class WebSearch:
    def __init__(self, providers: List[SearchProvider], limit: int = 3, breaker: Optional[CircuitBreaker] = None):
        self.providers = providers
        self.limit = limit
        self.breaker = breaker or CircuitBreaker(threshold=3, cooldown=60.0)

    async def search(self, query: str) -> List[WebResult]:
        """
        Raises:
            WebSearchError: no provider configured, or none of them succeeded
        """
        if not self.providers:
            raise WebSearchError("web search is not configured")

        errors: List[str] = []
        any_succeeded = False
        for provider in self.providers:
            if self.breaker.is_open(provider.name):
                errors.append(f"{provider.name}: temporarily disabled")
                continue
            try:
                results = await provider.search(query, self.limit)
            except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
                self.breaker.record_failure(provider.name)
                errors.append(f"{provider.name}: {e}")
                logger.warning("Web search provider failed", extra={"provider": provider.name, "error": str(e)})
                continue

            self.breaker.record_success(provider.name)
            any_succeeded = True
            if results:
                logger.info("Web search completed", extra={"provider": provider.name, "results_count": len(results)})
                return results[: self.limit]

        if not any_succeeded:
            raise WebSearchError("; ".join(errors))
        return []


@lru_cache(maxsize=1)
def get_firecrawl() -> Optional[FirecrawlClient]:
    if not settings.FIRECRAWL_API_KEY:
        return None
    return FirecrawlClient(
        settings.FIRECRAWL_API_KEY,
        base_url=settings.FIRECRAWL_URL,
        timeout=settings.WEB_SEARCH_TIMEOUT,
    )


@lru_cache(maxsize=1)
def get_web_search() -> WebSearch:
    providers: List[SearchProvider] = []
    firecrawl = get_firecrawl()
    if firecrawl is not None:
        providers.append(FirecrawlProvider(firecrawl))
    for instance in settings.SEARXNG_INSTANCES:
        providers.append(SearxngProvider(instance, timeout=settings.WEB_SEARCH_TIMEOUT))

    return WebSearch(
        providers,
        limit=settings.WEB_SEARCH_LIMIT,
        breaker=CircuitBreaker(
            threshold=settings.WEB_SEARCH_BREAKER_THRESHOLD,
            cooldown=settings.WEB_SEARCH_BREAKER_COOLDOWN,
        ),
    )
