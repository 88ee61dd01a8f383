"""Local destinations: keep in the store only, or write an HTML file."""

from __future__ import annotations

import asyncio
import html
import re
from pathlib import Path

from postbridge.content.models import ContentItem
from postbridge.destinations.models import Destination
from postbridge.logging import get_logger
from postbridge.publishers.base import Publisher, PublishResult, html_body

log = get_logger("postbridge.publishers.local")

_FILENAME_TITLE_LENGTH = 60
_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9_-]")


class LocalStorePublisher(Publisher):
    """Items already live in the content store; publishing is a no-op."""

    async def _publish(self, item: ContentItem) -> PublishResult:
        return PublishResult(success=True)

    async def _test_connection(self) -> bool:
        return True


def _document_title(item: ContentItem) -> str:
    first_line = item.body.text.split("\n")[0].strip()[:_FILENAME_TITLE_LENGTH]
    return first_line or f"{item.author.name or 'unknown'}-{item.platform}"


def export_filename(item: ContentItem) -> str:
    """File name derived from the first line of text, or author and platform."""
    title = _document_title(item)
    return f"{_UNSAFE_FILENAME_RE.sub('-', title)}-{item.id[:8]}.html"


def render_html_document(item: ContentItem) -> str:
    """Standalone HTML page for *item*; metadata is escaped, the body is not."""
    title = _document_title(item)
    byline = f"Platform: {html.escape(item.platform)}"
    if item.author.name:
        byline += f" | Author: {html.escape(item.author.name)}"
    parts = [
        "<!DOCTYPE html>",
        '<html><head><meta charset="utf-8">',
        f"<title>{html.escape(title)}</title>",
        "</head><body>",
        f"<h1>{html.escape(title)}</h1>",
    ]
    if item.url:
        url = html.escape(item.url)
        parts.append(f'<p>Source: <a href="{url}">{url}</a></p>')
    parts.extend([f"<p>{byline}</p>", "<hr>", html_body(item), "</body></html>"])
    return "\n".join(parts)


class LocalFilePublisher(Publisher):
    """Writes each item as a standalone HTML file.

    The export directory is ``config.endpoint`` when set, otherwise the
    directory supplied at construction.
    """

    def __init__(self, destination: Destination, export_directory: str | Path = "exports"):
        super().__init__(destination)
        self._directory = Path(destination.config.endpoint or export_directory)

    def _write(self, path: Path, document: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(document, encoding="utf-8")

    async def _publish(self, item: ContentItem) -> PublishResult:
        path = self._directory / export_filename(item)
        try:
            await asyncio.to_thread(self._write, path, render_html_document(item))
        except OSError as e:
            log.error("local_export_failed", path=str(path), error=str(e))
            return PublishResult(success=False, error=f"Could not write {path}: {e}")
        log.info("local_export_written", path=str(path), item_id=item.id)
        resolved = path.resolve()
        return PublishResult(
            success=True,
            remote_id=path.name,
            published_url=resolved.as_uri(),
            metadata={"path": str(resolved)},
        )

    async def _test_connection(self) -> bool:
        def _writable() -> bool:
            self._directory.mkdir(parents=True, exist_ok=True)
            marker = self._directory / ".postbridge-write-test"
            marker.write_text("ok", encoding="utf-8")
            marker.unlink()
            return True

        try:
            return await asyncio.to_thread(_writable)
        except OSError:
            return False
