"""ActivityPub client-to-server publisher.

Posts a ``Create`` activity wrapping a ``Note`` to the actor's outbox at
``site_url + endpoint`` (default ``/outbox``). ``site_url`` doubles as the
actor id.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from postbridge.content.models import ContentItem
from postbridge.publishers.base import Publisher, PublishResult, html_body

ACTIVITY_CONTEXT = "https://www.w3.org/ns/activitystreams"
ACTIVITY_CONTENT_TYPE = "application/activity+json"
PUBLIC_AUDIENCE = "https://www.w3.org/ns/activitystreams#Public"
DEFAULT_OUTBOX = "/outbox"

_COLLECTION_TYPES = ("OrderedCollection", "OrderedCollectionPage", "Collection")


class ActivityPubPublisher(Publisher):
    """Publishes notes to an ActivityPub outbox."""

    def _outbox_url(self) -> str:
        return f"{self.base_url()}{self.config.endpoint or DEFAULT_OUTBOX}"

    def build_activity(self, item: ContentItem) -> dict[str, Any]:
        actor = self.config.site_url
        note: dict[str, Any] = {
            "type": "Note",
            "attributedTo": actor,
            "content": html_body(item),
            "to": [PUBLIC_AUDIENCE],
            "cc": [],
            "published": datetime.now(tz=UTC).isoformat(),
        }
        if item.url:
            note["url"] = item.url
        if item.metadata.hashtags:
            note["tag"] = [
                {"type": "Hashtag", "name": f"#{tag.lstrip('#')}"} for tag in item.metadata.hashtags
            ]
        return {
            "@context": ACTIVITY_CONTEXT,
            "type": "Create",
            "actor": actor,
            "to": [PUBLIC_AUDIENCE],
            "cc": [],
            "object": note,
        }

    async def _publish(self, item: ContentItem) -> PublishResult:
        client = await self._get_client()
        response = await client.post(
            self._outbox_url(),
            json=self.build_activity(item),
            headers={
                "Content-Type": ACTIVITY_CONTENT_TYPE,
                "Accept": ACTIVITY_CONTENT_TYPE,
                **self.auth_headers(),
            },
        )
        if response.is_error:
            return self._failure("ActivityPub", response)

        # Servers SHOULD answer 201 with a Location header; some echo the
        # activity in the body instead.
        location = response.headers.get("Location")
        remote_id: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            remote_id = body.get("id") or (body.get("object") or {}).get("id")

        return PublishResult(
            success=True,
            published_url=location,
            remote_id=remote_id or location,
            status_code=response.status_code,
        )

    async def _test_connection(self) -> bool:
        client = await self._get_client()
        response = await client.get(
            self._outbox_url(),
            headers={"Accept": ACTIVITY_CONTENT_TYPE, **self.auth_headers()},
        )
        if not response.is_success:
            return False
        data = response.json()
        return isinstance(data, dict) and data.get("type") in _COLLECTION_TYPES
