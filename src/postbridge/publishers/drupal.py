"""Drupal JSON:API publisher."""

from __future__ import annotations

from postbridge.content.models import ContentItem
from postbridge.publishers.base import Publisher, PublishResult, derive_title, html_body

JSONAPI_CONTENT_TYPE = "application/vnd.api+json"


class DrupalJsonApiPublisher(Publisher):
    """Creates nodes through ``/jsonapi/node/{post_type}``."""

    def _post_type(self) -> str:
        return self.config.post_type or "article"

    async def _publish(self, item: ContentItem) -> PublishResult:
        post_type = self._post_type()
        document = {
            "data": {
                "type": f"node--{post_type}",
                "attributes": {
                    "title": derive_title(item),
                    "body": {"value": html_body(item), "format": "full_html"},
                },
            }
        }
        client = await self._get_client()
        response = await client.post(
            f"{self.base_url()}/jsonapi/node/{post_type}",
            json=document,
            headers={"Content-Type": JSONAPI_CONTENT_TYPE, **self.auth_headers()},
        )
        if response.is_error:
            return self._failure("Drupal JSON:API", response)

        data = response.json().get("data") or {}
        return PublishResult(
            success=True,
            remote_id=data.get("id"),
            published_url=((data.get("links") or {}).get("self") or {}).get("href"),
            status_code=response.status_code,
        )

    async def _test_connection(self) -> bool:
        client = await self._get_client()
        response = await client.get(f"{self.base_url()}/jsonapi", headers=self.auth_headers())
        return response.is_success
