from __future__ import annotations

import asyncio
from io import BytesIO
from pathlib import Path

import httpx
from bs4 import BeautifulSoup

from duocast_contracts.errors import UnreachableError, UnsupportedError
from duocast_podcast.domain.models import PageText
from duocast_podcast.infrastructure.ingest.normalize import (
    MAX_INPUT_BYTES,
    clean_page_text,
    clean_text,
    drop_repeated_headers_footers,
    ensure_min_words,
)
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)

_DROP_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg")


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(_DROP_TAGS)):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    title = soup.title.get_text(strip=True) if soup.title else ""
    body = root.get_text("\n", strip=True)
    return clean_text(f"{title}\n\n{body}" if title and title not in body[:200] else body)


def pdf_to_text(pdf_bytes: bytes, source_name: str = "document.pdf") -> str:
    try:
        import pdfplumber
    except Exception as e:  # pragma: no cover - import/runtime errors
        raise RuntimeError("pdfplumber is required for PDF extraction. Install with `pip install pdfplumber`.") from e

    pages: list[PageText] = []
    try:
        with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
            for idx, page in enumerate(pdf.pages, start=1):
                pages.append(PageText(page_number=idx, text=clean_page_text(page.extract_text() or ""), source=source_name))
    except Exception as e:
        raise UnsupportedError(f"could not read PDF {source_name}: {e}") from e
    pages = drop_repeated_headers_footers(pages)
    return "\n\n".join(p.text for p in pages if p.text.strip())


class TextIngester:
    """Raw text passed inline with the request."""

    async def extract(self, source: str) -> str:
        if len(source.encode("utf-8")) > MAX_INPUT_BYTES:
            raise UnsupportedError(f"input exceeds {MAX_INPUT_BYTES // (1024 * 1024)} MB")
        return ensure_min_words(clean_text(source))


class TextFileIngester:
    """Plain text or markdown files on local disk."""

    async def extract(self, source: str) -> str:
        path = Path(source)
        if not path.is_file():
            raise UnreachableError(f"file not found: {source}")
        if path.stat().st_size > MAX_INPUT_BYTES:
            raise UnsupportedError(f"file exceeds {MAX_INPUT_BYTES // (1024 * 1024)} MB: {source}")
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except UnicodeDecodeError as e:
            raise UnsupportedError(f"not a UTF-8 text file: {source}") from e
        return ensure_min_words(clean_text(raw))


class PdfIngester:
    async def extract(self, source: str) -> str:
        path = Path(source)
        if not path.is_file():
            raise UnreachableError(f"file not found: {source}")
        if path.stat().st_size > MAX_INPUT_BYTES:
            raise UnsupportedError(f"file exceeds {MAX_INPUT_BYTES // (1024 * 1024)} MB: {source}")
        data = await asyncio.to_thread(path.read_bytes)
        text = await asyncio.to_thread(pdf_to_text, data, path.name)
        return ensure_min_words(text)


class UrlIngester:
    """Fetches a web page or remote PDF and returns its readable text."""

    def __init__(self, *, timeout_s: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": "duocast/0.1 (+https://github.com/duocast)"},
        )

    async def extract(self, source: str) -> str:
        try:
            r = await self._client.get(source)
        except httpx.HTTPError as e:
            raise UnreachableError(f"could not fetch {source}: {e}") from e
        if r.status_code >= 400:
            raise UnreachableError(f"could not fetch {source}: HTTP {r.status_code}")
        if len(r.content) > MAX_INPUT_BYTES:
            raise UnsupportedError(f"content exceeds {MAX_INPUT_BYTES // (1024 * 1024)} MB: {source}")

        ctype = r.headers.get("content-type", "").split(";")[0].strip().lower()
        log.info("ingest.url status=%s type=%s bytes=%s", r.status_code, ctype or "-", len(r.content))
        if ctype == "application/pdf" or source.lower().endswith(".pdf"):
            text = await asyncio.to_thread(pdf_to_text, r.content, source.rsplit("/", 1)[-1] or "document.pdf")
        elif ctype in ("text/html", "application/xhtml+xml", ""):
            text = await asyncio.to_thread(html_to_text, r.text)
        elif ctype.startswith("text/"):
            text = clean_text(r.text)
        else:
            raise UnsupportedError(f"unsupported content type {ctype!r} at {source}")
        return ensure_min_words(text)

    async def aclose(self) -> None:
        await self._client.aclose()


class SourceIngester:
    """Routes a locator to the URL, PDF, or text-file ingester."""

    def __init__(self, *, url: UrlIngester | None = None) -> None:
        self._url = url
        self._pdf = PdfIngester()
        self._text = TextFileIngester()

    async def extract(self, source: str) -> str:
        lowered = source.lower()
        if lowered.startswith(("http://", "https://")):
            if self._url is None:
                self._url = UrlIngester()
            return await self._url.extract(source)
        if lowered.endswith(".pdf"):
            return await self._pdf.extract(source)
        if lowered.endswith((".txt", ".md", ".markdown", ".text")):
            return await self._text.extract(source)
        raise UnsupportedError(f"unsupported source {source!r}; use an http(s) URL, .pdf, .txt or .md file")

    async def aclose(self) -> None:
        if self._url is not None:
            await self._url.aclose()
