"""Page fetch and main-content extraction (httpx + BeautifulSoup)."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from deepcite.config import Settings
from deepcite.errors import ScrapeFailure
from deepcite.tools.web_utils import is_valid_url, normalize_whitespace, truncate, word_count

CONTENT_SELECTORS = ("article", "main", ".content", ".post", ".article", "section")
NOISE_SELECTORS = (
    "script",
    "style",
    "nav",
    "header",
    "footer",
    "aside",
    ".sidebar",
    ".ads",
    ".advertisement",
    ".cookie",
    ".popup",
    ".modal",
    "noscript",
    "iframe",
)
MIN_CONTENT_BLOCK_CHARS = 200
TITLE_MAX_CHARS = 200

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; DeepCite/0.1; research crawler)",
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass(slots=True)
class FetchedPage:
    url: str
    title: str
    text: str
    word_count: int


def extract_title(soup: BeautifulSoup) -> str:
    og_title = soup.select_one("meta[property='og:title']")
    candidates = [
        og_title.get("content") if og_title else None,
        soup.title.get_text() if soup.title else None,
        soup.h1.get_text() if soup.h1 else None,
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return truncate(normalize_whitespace(candidate), TITLE_MAX_CHARS)
    return "Untitled"


def extract_content(html: str, *, max_chars: int = 8000) -> tuple[str, str]:
    """Return ``(title, text)`` from raw HTML.

    Noise elements are removed first. The first content selector whose first
    match holds more than 200 characters of text wins; otherwise the whole
    body (or document) text is used.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = extract_title(soup)

    for selector in NOISE_SELECTORS:
        for element in soup.select(selector):
            element.decompose()

    content = ""
    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None and len(element.get_text(" ").strip()) > MIN_CONTENT_BLOCK_CHARS:
            content = element.get_text(" ")
            break

    if not content:
        root = soup.body or soup
        content = root.get_text(" ")

    return title, truncate(normalize_whitespace(content), max_chars)


class PageFetcher:
    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        max_chars: int = 8000,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_chars = max_chars
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PageFetcher":
        return cls(timeout_seconds=settings.scrape_timeout_seconds, max_chars=settings.scrape_max_chars)

    async def fetch(self, url: str) -> FetchedPage:
        if not is_valid_url(url):
            raise ScrapeFailure(url, "invalid url")
        try:
            response = await asyncio.wait_for(self._client.get(url), timeout=self.timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ScrapeFailure(url, f"timed out after {self.timeout_seconds}s", kind="timeout") from e
        except httpx.HTTPError as e:
            raise ScrapeFailure(url, str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            raise ScrapeFailure(
                url,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                kind="http_status",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type.lower():
            raise ScrapeFailure(url, f"unsupported content type: {content_type or 'unknown'}", kind="content_type")

        title, text = extract_content(response.text, max_chars=self.max_chars)
        return FetchedPage(url=url, title=title, text=text, word_count=word_count(text))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
