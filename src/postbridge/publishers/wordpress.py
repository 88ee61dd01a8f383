"""WordPress publishers: the REST API and the legacy XML-RPC endpoint."""

from __future__ import annotations

import xmlrpc.client
from typing import Any
from xml.parsers.expat import ExpatError

from postbridge.content.models import ContentItem
from postbridge.logging import get_logger
from postbridge.publishers.base import Publisher, PublishResult, derive_title, html_body

log = get_logger("postbridge.publishers.wordpress")


class WordPressRestPublisher(Publisher):
    """Creates posts through ``/wp-json/wp/v2/posts``."""

    async def _publish(self, item: ContentItem) -> PublishResult:
        body: dict[str, Any] = {
            "title": derive_title(item),
            "content": html_body(item),
            "status": "publish",
        }
        if self.config.category:
            body["categories"] = [self.config.category]
        if self.config.tags:
            body["tags"] = list(self.config.tags)

        client = await self._get_client()
        response = await client.post(
            f"{self.base_url()}/wp-json/wp/v2/posts",
            json=body,
            headers=self.auth_headers(),
        )
        if response.is_error:
            return self._failure("WordPress API", response)

        data = response.json()
        return PublishResult(
            success=True,
            remote_id=str(data["id"]) if data.get("id") is not None else None,
            published_url=data.get("link"),
            status_code=response.status_code,
        )

    async def _test_connection(self) -> bool:
        client = await self._get_client()
        response = await client.get(f"{self.base_url()}/wp-json/", headers=self.auth_headers())
        return response.is_success


class WordPressXmlRpcPublisher(Publisher):
    """Creates posts with ``wp.newPost`` on ``/xmlrpc.php``.

    Credentials travel inside the XML-RPC payload, so username and
    password are required regardless of the configured auth type.
    """

    def _endpoint(self) -> str:
        return f"{self.base_url()}/xmlrpc.php"

    async def _call(self, method: str, *params: Any) -> tuple[int, str]:
        client = await self._get_client()
        response = await client.post(
            self._endpoint(),
            content=xmlrpc.client.dumps(params, methodname=method),
            headers={"Content-Type": "text/xml"},
        )
        return response.status_code, response.text

    async def _publish(self, item: ContentItem) -> PublishResult:
        username, password = self.config.username, self.config.password
        if not username or not password:
            return PublishResult(
                success=False,
                error="WordPress XML-RPC requires username and password",
                status_code=401,
            )

        post = {
            "post_title": derive_title(item),
            "post_content": html_body(item),
            "post_status": "publish",
            "post_type": self.config.post_type or "post",
        }
        status_code, text = await self._call("wp.newPost", 0, username, password, post)
        if status_code >= 400:
            return PublishResult(
                success=False,
                error=f"XML-RPC HTTP {status_code}: {text[:500]}",
                status_code=status_code,
            )

        try:
            (post_id,), _ = xmlrpc.client.loads(text)
        except xmlrpc.client.Fault as fault:
            log.info("xmlrpc_fault", code=fault.faultCode, message=fault.faultString)
            # WordPress reports bad credentials as fault 403.
            code = fault.faultCode if fault.faultCode in (401, 403, 404) else None
            return PublishResult(success=False, error=fault.faultString, status_code=code)
        except (ExpatError, ValueError, xmlrpc.client.ResponseError) as e:
            return PublishResult(success=False, error=f"Malformed XML-RPC response: {e}")

        remote_id = str(post_id) if post_id else None
        return PublishResult(
            success=True,
            remote_id=remote_id,
            published_url=f"{self.base_url()}/?p={remote_id}" if remote_id else None,
            status_code=status_code,
        )

    async def _test_connection(self) -> bool:
        username, password = self.config.username, self.config.password
        if not username or not password:
            return False
        status_code, text = await self._call("wp.getProfile", 0, username, password)
        if status_code >= 400:
            return False
        try:
            xmlrpc.client.loads(text)
        except (ExpatError, xmlrpc.client.Fault, xmlrpc.client.ResponseError):
            return False
        return True
