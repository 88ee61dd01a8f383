"""Generic webhook / custom REST publisher.

The request body is either a flat JSON object of well-known fields or,
when the destination defines ``payload_template``, that template with
``{{key}}`` placeholders filled in. Values are JSON-escaped before
substitution so the filled template stays valid JSON. A malformed
template falls back to the flat payload.
"""

from __future__ import annotations

import json
import re
from typing import Any

from postbridge.content.models import ContentItem
from postbridge.logging import get_logger
from postbridge.publishers.base import (
    Publisher,
    PublishResult,
    derive_title,
    html_body,
    resolve_path,
)

log = get_logger("postbridge.publishers.webhook")

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")
_FLAT_PAYLOAD_KEYS = ("title", "content", "url", "platform", "author", "source_url")


def template_values(item: ContentItem) -> dict[str, str]:
    """Values available to payload templates."""
    return {
        "title": derive_title(item),
        "content": html_body(item),
        "text": item.body.text,
        "markdown": item.body.markdown,
        "url": item.url,
        "platform": item.platform,
        "author": item.author.name,
        "author_url": item.author.profile_url,
        "source_url": item.url,
        "hashtags": ",".join(item.metadata.hashtags),
    }


def fill_template(template: str, values: dict[str, str]) -> Any:
    """Substitute ``{{key}}`` placeholders and parse the result as JSON.

    Unknown keys become empty strings.

    Raises:
        ValueError: If the filled template is not valid JSON.
    """

    def _escape(match: re.Match[str]) -> str:
        # json.dumps adds surrounding quotes; the template supplies its own.
        return json.dumps(values.get(match.group(1), ""))[1:-1]

    return json.loads(_PLACEHOLDER_RE.sub(_escape, template))


class WebhookPublisher(Publisher):
    """POSTs a JSON payload to ``site_url + endpoint``."""

    def _url(self) -> str:
        return f"{self.base_url()}{self.config.endpoint or ''}"

    def build_payload(self, item: ContentItem) -> Any:
        values = template_values(item)
        template = self.config.payload_template
        if template:
            try:
                return fill_template(template, values)
            except ValueError as e:
                log.warning(
                    "payload_template_invalid",
                    destination_id=self.destination.id,
                    error=str(e),
                )
        return {key: values[key] for key in _FLAT_PAYLOAD_KEYS}

    async def _publish(self, item: ContentItem) -> PublishResult:
        client = await self._get_client()
        response = await client.post(
            self._url(),
            json=self.build_payload(item),
            headers=self.auth_headers(),
        )
        if response.is_error:
            return self._failure("Webhook", response)

        remote_id: str | None = None
        published_url: str | None = None
        mapping = self.config.response_mapping
        if mapping:
            try:
                data = response.json()
            except ValueError:
                data = None
            if data is not None:
                if mapping.id_path:
                    remote_id = resolve_path(data, mapping.id_path)
                if mapping.url_path:
                    published_url = resolve_path(data, mapping.url_path)

        return PublishResult(
            success=True,
            remote_id=remote_id,
            published_url=published_url,
            status_code=response.status_code,
        )

    async def _test_connection(self) -> bool:
        client = await self._get_client()
        response = await client.get(self._url(), headers=self.auth_headers())
        return response.status_code < 500
