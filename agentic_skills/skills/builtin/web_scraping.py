"""Web scraping skill - fetch a page over HTTP and extract its title and text."""

from __future__ import annotations

import re
import time
from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult
from agentic_skills.skills.cancellation import current_token
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.errors import SkillErrorCode

log = structlog.get_logger(__name__)

MAX_TEXT_LENGTH = 5000


class WebScrapingSkill(BaseSkill):
    """Extract data from a web page.

    Params:
        url: Absolute http(s) URL to fetch
        selector: CSS selector the caller is interested in (echoed back;
            extraction covers the whole document)

    The HTTP client is created in ``on_load`` and closed in ``on_unload``
    unless one is injected, in which case the caller owns it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout_seconds = timeout_seconds
        self._metadata = SkillMetadata(
            skill_id="web-scraping",
            name="Web Scraping",
            version="1.0.0",
            description="Extract data from web pages using CSS selectors",
            author="agentic-skills",
            tags=frozenset({"scraping", "extraction", "web"}),
            required_params=("url",),
        )

    @property
    def metadata(self) -> SkillMetadata:
        return self._metadata

    async def on_load(self, context: SkillContext) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout_seconds,
                follow_redirects=True,
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
            )

    async def on_unload(self, context: SkillContext) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def validate(self, context: SkillContext, params: Mapping[str, Any]) -> list[str]:
        if params.get("url") is not None and not isinstance(params["url"], str):
            return ["Parameter 'url' must be a string"]
        return []

    async def before_execute(self, context: SkillContext, params: Mapping[str, Any]) -> str | None:
        url = params.get("url")
        if isinstance(url, str) and not url.startswith(("http://", "https://")):
            return f"Unsupported URL scheme: {url}. Only http and https are allowed"
        return None

    async def execute(self, context: SkillContext, params: dict[str, Any]) -> SkillResult:
        url: str = params["url"]
        selector = params.get("selector", "body")
        token = current_token()

        token.raise_if_cancelled()
        try:
            response = await self._get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            log.warning("web_scraping.http_error", url=url, status_code=exc.response.status_code)
            return SkillResult.failed(
                SkillErrorCode.EXECUTION_ERROR,
                f"Failed to load page: HTTP {exc.response.status_code}",
                url=url,
                status_code=exc.response.status_code,
            )
        except httpx.HTTPError as exc:
            log.warning("web_scraping.request_failed", url=url, error=str(exc))
            return SkillResult.failed(
                SkillErrorCode.EXECUTION_ERROR,
                f"Failed to load page: {exc}",
                url=url,
                exception_type=type(exc).__name__,
            )
        token.raise_if_cancelled()

        title, text = extract_page(response.text)
        log.info("web_scraping.extracted", url=url, text_chars=len(text))
        return SkillResult.succeeded(
            {
                "url": url,
                "selector": selector,
                "title": title,
                "text": text[:MAX_TEXT_LENGTH],
                "status_code": response.status_code,
            },
            message=f"Successfully extracted data from {url}",
        )

    async def after_execute(
        self,
        context: SkillContext,
        params: Mapping[str, Any],
        result: SkillResult,
    ) -> SkillResult:
        if result.success:
            context.set("last_scraping_success", int(time.time() * 1000))
        return result

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url)
        async with httpx.AsyncClient(
            timeout=self._timeout_seconds, follow_redirects=True
        ) as client:
            return await client.get(url)


def extract_page(html: str) -> tuple[str, str]:
    """Return ``(title, text)`` of an HTML document.

    Script and style blocks are dropped and whitespace is collapsed.
    """
    html = re.sub(r"<script[^>]*>.*?</script>", "", html, flags=re.DOTALL | re.IGNORECASE)
    html = re.sub(r"<style[^>]*>.*?</style>", "", html, flags=re.DOTALL | re.IGNORECASE)

    title_match = re.search(r"<title[^>]*>(.*?)</title>", html, flags=re.DOTALL | re.IGNORECASE)
    title = title_match.group(1).strip() if title_match else ""

    body_match = re.search(r"<body[^>]*>(.*)</body>", html, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", body_match.group(1) if body_match else html)
    text = re.sub(r"\s+", " ", text).strip()
    return title, text
