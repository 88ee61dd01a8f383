"""Tests for destination publishers.

HTTP publishers run against ``httpx.MockTransport`` so request building and
response parsing are exercised end to end without a network.
"""

from __future__ import annotations

import base64
import json
import xmlrpc.client
from collections.abc import Callable
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from postbridge.content.models import AuthorInfo, ContentFormats, ContentItem
from postbridge.destinations.models import (
    AuthType,
    Destination,
    DestinationConfig,
    DestinationType,
    ResponseMapping,
)
from postbridge.errors import (
    AuthenticationError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from postbridge.publishers.activitypub import ActivityPubPublisher
from postbridge.publishers.base import (
    PublishResult,
    build_auth_headers,
    derive_title,
    resolve_path,
)
from postbridge.publishers.drupal import DrupalJsonApiPublisher
from postbridge.publishers.factory import PublisherFactory, create_publisher
from postbridge.publishers.local import (
    LocalFilePublisher,
    LocalStorePublisher,
    export_filename,
    render_html_document,
)
from postbridge.publishers.micropub import MicropubPublisher
from postbridge.publishers.webhook import WebhookPublisher, fill_template
from postbridge.publishers.wordpress import WordPressRestPublisher, WordPressXmlRpcPublisher

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, requests: list[httpx.Request] | None = None) -> httpx.AsyncClient:
    def _record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(_record))


def _destination(type_: DestinationType, **config) -> Destination:
    config.setdefault("site_url", "https://site.example.com/")
    return Destination(id="dest-1", name="Site", type=type_, config=DestinationConfig(**config))


# ===========================================================================
# Helpers
# ===========================================================================


class TestPublishResult:
    def test_to_error_maps_status(self) -> None:
        assert isinstance(
            PublishResult(success=False, status_code=401).to_error(), AuthenticationError
        )
        assert isinstance(PublishResult(success=False, status_code=404).to_error(), NotFoundError)
        assert isinstance(PublishResult(success=False, status_code=503).to_error(), TransientError)

    def test_to_error_without_status_is_transient(self) -> None:
        error = PublishResult(success=False, error="timed out").to_error()
        assert isinstance(error, TransientError)
        assert str(error) == "timed out"


class TestAuthHeaders:
    def test_bearer(self) -> None:
        config = DestinationConfig(auth_type=AuthType.BEARER, token="t0k")
        assert build_auth_headers(config) == {"Authorization": "Bearer t0k"}

    def test_basic(self) -> None:
        config = DestinationConfig(auth_type=AuthType.BASIC, username="u", password="p")
        expected = base64.b64encode(b"u:p").decode()
        assert build_auth_headers(config) == {"Authorization": f"Basic {expected}"}

    def test_api_key_default_header(self) -> None:
        config = DestinationConfig(auth_type=AuthType.API_KEY, api_key="k")
        assert build_auth_headers(config) == {"X-API-Key": "k"}

    def test_api_key_custom_header(self) -> None:
        config = DestinationConfig(auth_type="api-key", api_key="k", api_key_header="X-Token")
        assert build_auth_headers(config) == {"X-Token": "k"}

    def test_custom_headers_win(self) -> None:
        config = DestinationConfig(
            auth_type=AuthType.BEARER,
            token="t",
            custom_headers={"Authorization": "Custom x", "X-Extra": "1"},
        )
        assert build_auth_headers(config) == {"Authorization": "Custom x", "X-Extra": "1"}

    def test_none(self) -> None:
        assert build_auth_headers(DestinationConfig()) == {}


class TestDeriveTitle:
    def test_first_line(self, content_item: ContentItem) -> None:
        content_item.body.text = "Headline\nMore text"
        assert derive_title(content_item) == "Headline"

    def test_fallback_to_author(self) -> None:
        item = ContentItem(platform="reddit", author=AuthorInfo(name="Bob"))
        assert derive_title(item) == "Bob on reddit"

    def test_overlong_line_falls_back(self) -> None:
        item = ContentItem(platform="reddit", body=ContentFormats(text="x" * 300))
        assert derive_title(item) == "Unknown on reddit"


class TestResolvePath:
    def test_nested(self) -> None:
        assert resolve_path({"data": {"post": {"id": 7}}}, "data.post.id") == "7"

    def test_missing(self) -> None:
        assert resolve_path({"data": {}}, "data.post.id") is None
        assert resolve_path({"data": "x"}, "data.post") is None


# ===========================================================================
# WordPress
# ===========================================================================


class TestWordPressRest:
    @pytest.mark.asyncio
    async def test_publish(self, content_item, wordpress_destination) -> None:
        requests: list[httpx.Request] = []
        client = _client(
            lambda r: httpx.Response(
                201, json={"id": 42, "link": "https://blog.example.com/hello"}
            ),
            requests,
        )
        result = await WordPressRestPublisher(wordpress_destination, client=client).publish(
            content_item
        )

        assert result.success
        assert result.remote_id == "42"
        assert result.published_url == "https://blog.example.com/hello"
        request = requests[0]
        assert str(request.url) == "https://blog.example.com/wp-json/wp/v2/posts"
        assert request.headers["Authorization"].startswith("Basic ")
        body = json.loads(request.content)
        assert body["title"] == "Hello world from the fediverse"
        assert body["content"] == "<p>Hello world from the fediverse</p>"
        assert body["status"] == "publish"

    @pytest.mark.asyncio
    async def test_error_response(self, content_item, wordpress_destination) -> None:
        client = _client(lambda r: httpx.Response(401, text="rest_cannot_create"))
        result = await WordPressRestPublisher(wordpress_destination, client=client).publish(
            content_item
        )
        assert not result.success
        assert result.status_code == 401
        assert "rest_cannot_create" in result.error

    @pytest.mark.asyncio
    async def test_transport_error_becomes_result(
        self, content_item, wordpress_destination
    ) -> None:
        def _fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await WordPressRestPublisher(
            wordpress_destination, client=_client(_fail)
        ).publish(content_item)
        assert not result.success
        assert result.status_code is None
        assert isinstance(result.to_error(), TransientError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_result(self, content_item, wordpress_destination) -> None:
        def _timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = await WordPressRestPublisher(
            wordpress_destination, client=_client(_timeout)
        ).publish(content_item)
        assert not result.success
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_connection(self, wordpress_destination) -> None:
        ok = _client(lambda r: httpx.Response(200, json={"name": "Blog"}))
        down = _client(lambda r: httpx.Response(503))
        assert await WordPressRestPublisher(wordpress_destination, client=ok).test_connection()
        assert not await WordPressRestPublisher(
            wordpress_destination, client=down
        ).test_connection()


class TestWordPressXmlRpc:
    @pytest.mark.asyncio
    async def test_publish(self, content_item) -> None:
        destination = _destination(
            DestinationType.WORDPRESS_XMLRPC, username="admin", password="secret"
        )
        requests: list[httpx.Request] = []
        reply = xmlrpc.client.dumps(("123",), methodresponse=True)
        client = _client(lambda r: httpx.Response(200, text=reply), requests)

        result = await WordPressXmlRpcPublisher(destination, client=client).publish(content_item)

        assert result.success
        assert result.remote_id == "123"
        assert result.published_url == "https://site.example.com/?p=123"
        params, method = xmlrpc.client.loads(requests[0].content)
        assert method == "wp.newPost"
        assert params[1:3] == ("admin", "secret")
        assert params[3]["post_title"] == "Hello world from the fediverse"

    @pytest.mark.asyncio
    async def test_missing_credentials(self, content_item) -> None:
        destination = _destination(DestinationType.WORDPRESS_XMLRPC)
        result = await WordPressXmlRpcPublisher(
            destination, client=_client(lambda r: httpx.Response(200))
        ).publish(content_item)
        assert not result.success
        assert isinstance(result.to_error(), AuthenticationError)

    @pytest.mark.asyncio
    async def test_fault(self, content_item) -> None:
        destination = _destination(
            DestinationType.WORDPRESS_XMLRPC, username="admin", password="wrong"
        )
        fault = xmlrpc.client.dumps(xmlrpc.client.Fault(403, "Incorrect username or password."))
        result = await WordPressXmlRpcPublisher(
            destination, client=_client(lambda r: httpx.Response(200, text=fault))
        ).publish(content_item)
        assert not result.success
        assert result.status_code == 403
        assert result.error == "Incorrect username or password."

    @pytest.mark.asyncio
    async def test_malformed_reply(self, content_item) -> None:
        destination = _destination(
            DestinationType.WORDPRESS_XMLRPC, username="admin", password="secret"
        )
        result = await WordPressXmlRpcPublisher(
            destination, client=_client(lambda r: httpx.Response(200, text="<html>oops"))
        ).publish(content_item)
        assert not result.success
        assert result.status_code is None
        assert "Malformed" in result.error


# ===========================================================================
# Drupal, Micropub, ActivityPub
# ===========================================================================


class TestDrupal:
    @pytest.mark.asyncio
    async def test_publish(self, content_item) -> None:
        destination = _destination(
            DestinationType.DRUPAL_JSONAPI, auth_type=AuthType.BEARER, token="t"
        )
        requests: list[httpx.Request] = []
        reply = {
            "data": {
                "id": "uuid-1",
                "links": {"self": {"href": "https://site.example.com/node/1"}},
            }
        }
        client = _client(lambda r: httpx.Response(201, json=reply), requests)

        result = await DrupalJsonApiPublisher(destination, client=client).publish(content_item)

        assert result.success
        assert result.remote_id == "uuid-1"
        assert result.published_url == "https://site.example.com/node/1"
        request = requests[0]
        assert request.url.path == "/jsonapi/node/article"
        assert request.headers["Content-Type"] == "application/vnd.api+json"
        assert json.loads(request.content)["data"]["type"] == "node--article"

    @pytest.mark.asyncio
    async def test_custom_post_type(self, content_item) -> None:
        destination = _destination(DestinationType.DRUPAL_JSONAPI, post_type="blog")
        requests: list[httpx.Request] = []
        client = _client(lambda r: httpx.Response(201, json={"data": {"id": "x"}}), requests)
        await DrupalJsonApiPublisher(destination, client=client).publish(content_item)
        assert requests[0].url.path == "/jsonapi/node/blog"


class TestMicropub:
    @pytest.mark.asyncio
    async def test_publish_uses_location(self, content_item) -> None:
        destination = _destination(DestinationType.MICROPUB, auth_type="bearer", token="t")
        requests: list[httpx.Request] = []
        client = _client(
            lambda r: httpx.Response(201, headers={"Location": "https://site.example.com/p/1"}),
            requests,
        )
        result = await MicropubPublisher(destination, client=client).publish(content_item)

        assert result.success
        assert result.published_url == "https://site.example.com/p/1"
        assert result.remote_id == "https://site.example.com/p/1"
        form = parse_qs(requests[0].content.decode())
        assert form["h"] == ["entry"]
        assert form["category[]"] == ["python", "asyncio"]
        assert requests[0].url.path == "/micropub"

    @pytest.mark.asyncio
    async def test_connection_accepts_unauthorized(self) -> None:
        destination = _destination(DestinationType.MICROPUB)
        client = _client(lambda r: httpx.Response(401))
        assert await MicropubPublisher(destination, client=client).test_connection()


class TestActivityPub:
    def test_build_activity(self, content_item) -> None:
        publisher = ActivityPubPublisher(_destination(DestinationType.ACTIVITYPUB))
        activity = publisher.build_activity(content_item)
        assert activity["type"] == "Create"
        assert activity["object"]["type"] == "Note"
        assert activity["object"]["tag"] == [
            {"type": "Hashtag", "name": "#python"},
            {"type": "Hashtag", "name": "#asyncio"},
        ]

    @pytest.mark.asyncio
    async def test_publish(self, content_item) -> None:
        destination = _destination(DestinationType.ACTIVITYPUB)
        client = _client(
            lambda r: httpx.Response(
                201, headers={"Location": "https://site.example.com/activities/9"}
            )
        )
        result = await ActivityPubPublisher(destination, client=client).publish(content_item)
        assert result.success
        assert result.remote_id == "https://site.example.com/activities/9"

    @pytest.mark.asyncio
    async def test_remote_id_from_body(self, content_item) -> None:
        destination = _destination(DestinationType.ACTIVITYPUB)
        client = _client(
            lambda r: httpx.Response(200, json={"object": {"id": "https://site/notes/1"}})
        )
        result = await ActivityPubPublisher(destination, client=client).publish(content_item)
        assert result.remote_id == "https://site/notes/1"

    @pytest.mark.asyncio
    async def test_connection_requires_collection(self) -> None:
        destination = _destination(DestinationType.ACTIVITYPUB)
        good = _client(lambda r: httpx.Response(200, json={"type": "OrderedCollection"}))
        bad = _client(lambda r: httpx.Response(200, json={"type": "Person"}))
        assert await ActivityPubPublisher(destination, client=good).test_connection()
        assert not await ActivityPubPublisher(destination, client=bad).test_connection()


# ===========================================================================
# Webhook
# ===========================================================================


class TestWebhook:
    def test_fill_template_escapes_values(self) -> None:
        payload = fill_template('{"text": "{{title}}", "x": "{{missing}}"}', {"title": 'a "q"'})
        assert payload == {"text": 'a "q"', "x": ""}

    def test_fill_template_invalid_json(self) -> None:
        with pytest.raises(ValueError):
            fill_template("{not json", {})

    def test_flat_payload(self, content_item) -> None:
        publisher = WebhookPublisher(_destination(DestinationType.WEBHOOK))
        payload = publisher.build_payload(content_item)
        assert payload["platform"] == "twitter"
        assert payload["author"] == "Alice"
        assert payload["source_url"] == content_item.url

    def test_invalid_template_falls_back(self, content_item) -> None:
        destination = _destination(DestinationType.WEBHOOK, payload_template="{oops")
        payload = WebhookPublisher(destination).build_payload(content_item)
        assert payload["title"] == "Hello world from the fediverse"

    @pytest.mark.asyncio
    async def test_publish_with_response_mapping(self, content_item) -> None:
        destination = _destination(
            DestinationType.CUSTOM_REST,
            endpoint="/api/posts",
            payload_template='{"body": "{{text}}"}',
            response_mapping=ResponseMapping(id_path="data.id", url_path="data.url"),
        )
        requests: list[httpx.Request] = []
        client = _client(
            lambda r: httpx.Response(200, json={"data": {"id": 5, "url": "https://x/5"}}),
            requests,
        )
        result = await WebhookPublisher(destination, client=client).publish(content_item)

        assert result.success
        assert result.remote_id == "5"
        assert result.published_url == "https://x/5"
        assert requests[0].url.path == "/api/posts"
        assert json.loads(requests[0].content) == {"body": "Hello world from the fediverse"}

    @pytest.mark.asyncio
    async def test_non_json_reply_without_mapping(self, content_item) -> None:
        destination = _destination(DestinationType.WEBHOOK)
        client = _client(lambda r: httpx.Response(204))
        result = await WebhookPublisher(destination, client=client).publish(content_item)
        assert result.success
        assert result.remote_id is None


# ===========================================================================
# Local destinations
# ===========================================================================


class TestLocal:
    @pytest.mark.asyncio
    async def test_local_store_is_noop(self, content_item) -> None:
        result = await LocalStorePublisher(Destination()).publish(content_item)
        assert result.success
        assert result.remote_id is None

    def test_export_filename(self, content_item) -> None:
        assert export_filename(content_item) == "Hello-world-from-the-fediverse-item-1.html"

    def test_render_escapes_metadata(self) -> None:
        item = ContentItem(
            platform="<script>",
            author=AuthorInfo(name="A&B"),
            body=ContentFormats(text="t", html="<b>bold</b>"),
        )
        document = render_html_document(item)
        assert "&lt;script&gt;" in document
        assert "A&amp;B" in document
        assert "<b>bold</b>" in document

    @pytest.mark.asyncio
    async def test_local_file_writes_document(self, content_item, tmp_path: Path) -> None:
        destination = _destination(DestinationType.LOCAL_FILE, endpoint=str(tmp_path / "out"))
        result = await LocalFilePublisher(destination).publish(content_item)

        assert result.success
        path = Path(result.metadata["path"])
        assert path.exists()
        assert path.name == result.remote_id
        assert result.published_url.startswith("file://")
        assert "<p>Hello world from the fediverse</p>" in path.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_local_file_connection(self, tmp_path: Path) -> None:
        destination = _destination(DestinationType.LOCAL_FILE)
        publisher = LocalFilePublisher(destination, export_directory=tmp_path / "exports")
        assert await publisher.test_connection()
        assert list((tmp_path / "exports").iterdir()) == []


# ===========================================================================
# Factory
# ===========================================================================


class TestFactory:
    @pytest.mark.parametrize(
        ("type_", "cls"),
        [
            (DestinationType.WORDPRESS_REST, WordPressRestPublisher),
            (DestinationType.WORDPRESS_XMLRPC, WordPressXmlRpcPublisher),
            (DestinationType.DRUPAL_JSONAPI, DrupalJsonApiPublisher),
            (DestinationType.MICROPUB, MicropubPublisher),
            (DestinationType.ACTIVITYPUB, ActivityPubPublisher),
            (DestinationType.WEBHOOK, WebhookPublisher),
            (DestinationType.CUSTOM_REST, WebhookPublisher),
            (DestinationType.LOCAL_STORE, LocalStorePublisher),
            (DestinationType.LOCAL_FILE, LocalFilePublisher),
        ],
    )
    def test_create_publisher(self, type_, cls) -> None:
        assert isinstance(create_publisher(_destination(type_)), cls)

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError):
            create_publisher(Destination(type="gopher"))

    def test_misconfigured_destination(self) -> None:
        with pytest.raises(ValidationError, match="site URL"):
            create_publisher(_destination(DestinationType.WORDPRESS_REST, site_url=""))

    def test_missing_credentials(self) -> None:
        with pytest.raises(ValidationError, match="Token is required"):
            create_publisher(_destination(DestinationType.MICROPUB, auth_type="bearer"))

    @pytest.mark.asyncio
    async def test_factory_shares_client(self) -> None:
        factory = PublisherFactory(timeout=5.0)
        try:
            a = await factory.create(_destination(DestinationType.WEBHOOK))
            b = await factory.create(_destination(DestinationType.MICROPUB))
            assert await a._get_client() is await b._get_client()
        finally:
            await factory.close()

    @pytest.mark.asyncio
    async def test_test_destination_unknown_type(self) -> None:
        factory = PublisherFactory()
        try:
            ok, message = await factory.test_destination(Destination(type="gopher"))
        finally:
            await factory.close()
        assert ok is False
        assert "gopher" in message

    @pytest.mark.asyncio
    async def test_test_destination_local(self) -> None:
        factory = PublisherFactory()
        try:
            ok, message = await factory.test_destination(
                Destination(name="Library", type=DestinationType.LOCAL_STORE)
            )
        finally:
            await factory.close()
        assert ok is True
        assert message == "Connected to Library"

    @pytest.mark.asyncio
    async def test_test_destination_misconfigured(self) -> None:
        factory = PublisherFactory()
        try:
            ok, message = await factory.test_destination(
                _destination(DestinationType.WEBHOOK, site_url="http://hooks.example.com")
            )
        finally:
            await factory.close()
        assert ok is False
        assert "HTTPS is required" in message
