from dataclasses import dataclass
from typing import List, Optional
import httpx
from docrag.utils.logger import get_logger

logger = get_logger("docrag.web.firecrawl")


@dataclass
class WebResult:
    url: str
    title: str
    text: str


class FirecrawlClient:
    """Minimal Firecrawl v1 client: web search and single-page scraping."""

    def __init__(
            self,
            api_key: str,
            base_url: str = "https://api.firecrawl.dev",
            timeout: float = 20.0,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def search(self, query: str, limit: int = 3) -> List[WebResult]:
        async with self._client() as client:
            resp = await client.post(
                "/v1/search",
                json={
                    "query": query,
                    "limit": limit,
                    "scrapeOptions": {"formats": ["markdown"]},
                },
            )
            resp.raise_for_status()
            data = resp.json()

        if not isinstance(data, dict):
            raise ValueError(f"unexpected Firecrawl response shape: {type(data).__name__}")
        if not data.get("success") or not data.get("data"):
            return []

        items = data["data"]
        # v2 groups results by source: {"data": {"web": [...]}}
        if isinstance(items, dict):
            items = items.get("web")
        if not isinstance(items, list):
            raise ValueError("unexpected Firecrawl search payload")

        return [
            WebResult(
                url=item["url"],
                title=item.get("title") or item["url"],
                text=item.get("markdown") or item.get("description") or "",
            )
            for item in items
            if isinstance(item, dict) and item.get("url")
        ]

    async def scrape(self, url: str) -> str:
        """Fetch one page as markdown. Returns "" when nothing usable came back."""
        async with self._client() as client:
            resp = await client.post("/v1/scrape", json={"url": url, "formats": ["markdown"]})
            resp.raise_for_status()
            data = resp.json()

        if not isinstance(data, dict) or not data.get("success"):
            logger.warning("Firecrawl scrape unsuccessful", extra={"url": url})
            return ""
        page = data.get("data")
        if not isinstance(page, dict):
            return ""
        return page.get("markdown") or ""
