"""Micropub publisher (form-encoded ``h=entry`` posts)."""

from __future__ import annotations

from typing import Any

from postbridge.content.models import ContentItem
from postbridge.publishers.base import Publisher, PublishResult, html_body

DEFAULT_ENDPOINT = "/micropub"


class MicropubPublisher(Publisher):
    """Creates entries on a Micropub endpoint.

    The created post's URL comes back in the ``Location`` header.
    """

    def _endpoint_url(self) -> str:
        return f"{self.base_url()}{self.config.endpoint or DEFAULT_ENDPOINT}"

    async def _publish(self, item: ContentItem) -> PublishResult:
        form: dict[str, Any] = {"h": "entry", "content[html]": html_body(item)}
        if item.url:
            form["url"] = item.url
        if item.metadata.hashtags:
            form["category[]"] = list(item.metadata.hashtags)

        client = await self._get_client()
        response = await client.post(self._endpoint_url(), data=form, headers=self.auth_headers())
        if response.is_error:
            return self._failure("Micropub", response)

        location = response.headers.get("Location")
        return PublishResult(
            success=True,
            published_url=location,
            remote_id=location,
            status_code=response.status_code,
        )

    async def _test_connection(self) -> bool:
        # A live endpoint answers GET with 200 or 401; only 5xx means unreachable.
        client = await self._get_client()
        response = await client.get(self._endpoint_url(), headers=self.auth_headers())
        return response.status_code < 500
