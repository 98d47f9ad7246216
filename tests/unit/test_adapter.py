"""Unit tests for request/response variants and the channel adapter.

Covers:
- Capability-set equivalence between HTTP and channel requests
- Channel responses keeping the connection open across sends
- HTTP responses finishing on the first send
- Status tagging of channel payloads
"""

from __future__ import annotations

import json

import pytest
from starlette.authentication import SimpleUser, UnauthenticatedUser

from entity_web.adapter import (
    CHANNEL_METHOD,
    ChannelRequest,
    ChannelResponse,
    HttpRequest,
    HttpResponse,
    RequestAdapter,
    user_is_authenticated,
)
from entity_web.errors import ResponseAlreadySentError
from entity_web.pipeline import Pipeline
from entity_web.transport.channel import ChannelConnection


def sent_frames(websocket) -> list:
    return [json.loads(call.args[0]) for call in websocket.send_text.call_args_list]


async def connected(websocket) -> ChannelConnection:
    connection = ChannelConnection(websocket)
    await connection.accept()
    return connection


# =============================================================================
# Requests
# =============================================================================


class TestUserIsAuthenticated:
    """Tests for session user checks."""

    def test_no_user(self):
        assert user_is_authenticated(None) is False

    def test_mapping_user(self):
        assert user_is_authenticated({"name": "ada"}) is True
        assert user_is_authenticated({"name": "ada", "logged_in": True}) is True
        assert user_is_authenticated({"name": "ada", "logged_in": False}) is False

    def test_starlette_users(self):
        assert user_is_authenticated(SimpleUser("ada")) is True
        assert user_is_authenticated(UnauthenticatedUser()) is False


class TestRequestShape:
    """Channel and HTTP requests expose the same capability set."""

    @pytest.mark.asyncio
    async def test_connect_and_http_get_share_capabilities(self, websocket):
        pipeline = Pipeline()
        connection = await connected(websocket)
        channel_request, _ = RequestAdapter(pipeline).build(connection, "connect")
        http_request = HttpRequest("GET", "/", app=pipeline)

        for request in (channel_request, http_request):
            assert isinstance(request.method, str)
            assert isinstance(request.url, str)
            assert hasattr(request, "body")
            assert request.app is pipeline
            assert request.is_authenticated() is False
            assert request.params == {}
            assert request.state == {}

    @pytest.mark.asyncio
    async def test_channel_request_fields(self, websocket):
        connection = await connected(websocket)
        request, _ = RequestAdapter(Pipeline()).build(connection, "chat.message", {"text": "hi"})

        assert request.method == CHANNEL_METHOD
        assert request.url == "chat.message"
        assert request.path == "chat.message"
        assert request.body == {"text": "hi"}

    @pytest.mark.asyncio
    async def test_channel_user_lives_on_connection(self, websocket):
        connection = await connected(websocket)
        adapter = RequestAdapter(Pipeline())

        first, _ = adapter.build(connection, "login")
        first.user = {"name": "ada"}
        second, _ = adapter.build(connection, "whoami")

        assert connection.user == {"name": "ada"}
        assert second.is_authenticated() is True

    @pytest.mark.asyncio
    async def test_channel_user_from_scope(self, websocket):
        websocket.scope = {"user": {"name": "ada", "logged_in": False}, "session": {"sid": "1"}}
        connection = await connected(websocket)
        request, _ = RequestAdapter(Pipeline()).build(connection, "whoami")

        assert request.is_authenticated() is False
        assert request.session == {"sid": "1"}

    @pytest.mark.asyncio
    async def test_channel_logout_clears_connection_user(self, websocket):
        connection = await connected(websocket)
        adapter = RequestAdapter(Pipeline())

        login, _ = adapter.build(connection, "login")
        login.user = {"name": "ada"}
        logout, _ = adapter.build(connection, "logout")
        logout.user = None
        after, _ = adapter.build(connection, "whoami")

        assert connection.user is None
        assert after.is_authenticated() is False

    @pytest.mark.asyncio
    async def test_fresh_pair_per_event(self, websocket):
        connection = await connected(websocket)
        adapter = RequestAdapter(Pipeline())

        first = adapter.build(connection, "a")
        second = adapter.build(connection, "a")

        assert first[0] is not second[0]
        assert first[1] is not second[1]

    def test_http_content_type(self):
        request = HttpRequest(
            "POST", "/", b"{}", headers={"content-type": "Application/JSON; charset=utf-8"}
        )

        assert request.content_type == "application/json"


# =============================================================================
# Responses
# =============================================================================


class TestChannelResponse:
    """Channel responses emit frames and keep the channel open."""

    @pytest.mark.asyncio
    async def test_send_twice_emits_two_frames(self, websocket):
        connection = await connected(websocket)
        response = ChannelResponse(connection)

        await response.send({})
        await response.send({})

        assert sent_frames(websocket) == [["data", {}], ["data", {}]]
        assert connection.connected is True
        assert response.finished is False
        websocket.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_tags_payload(self, websocket):
        connection = await connected(websocket)
        response = ChannelResponse(connection)

        result = await response.status(404).send({"foo": 1})

        assert result is response
        assert sent_frames(websocket) == [["data", {"foo": 1, "status": 404}]]

    @pytest.mark.asyncio
    async def test_existing_status_not_overwritten(self, websocket):
        connection = await connected(websocket)
        response = ChannelResponse(connection)

        await response.status(404).send({"foo": 1, "status": 200})

        assert sent_frames(websocket) == [["data", {"foo": 1, "status": 200}]]

    @pytest.mark.asyncio
    async def test_status_persists_across_sends(self, websocket):
        connection = await connected(websocket)
        response = ChannelResponse(connection)
        response.status(201)

        await response.send({"a": 1})
        await response.json({"b": 2})

        assert sent_frames(websocket) == [
            ["data", {"a": 1, "status": 201}],
            ["data", {"b": 2, "status": 201}],
        ]

    @pytest.mark.asyncio
    async def test_payload_not_mutated(self, websocket):
        connection = await connected(websocket)
        payload = {"foo": 1}

        await ChannelResponse(connection).status(404).send(payload)

        assert payload == {"foo": 1}

    @pytest.mark.asyncio
    async def test_unset_status_leaves_payload_untagged(self, websocket):
        connection = await connected(websocket)

        await ChannelResponse(connection).send({"foo": 1})

        assert sent_frames(websocket) == [["data", {"foo": 1}]]

    @pytest.mark.asyncio
    async def test_non_mapping_payload_untagged(self, websocket):
        connection = await connected(websocket)

        await ChannelResponse(connection).status(500).send("plain")

        assert sent_frames(websocket) == [["data", "plain"]]

    @pytest.mark.asyncio
    async def test_send_after_close_is_dropped(self, websocket):
        connection = await connected(websocket)
        connection.mark_closed()
        response = ChannelResponse(connection)

        await response.send({"late": True})

        websocket.send_text.assert_not_called()
        assert response.finished is True


class TestHttpResponse:
    """HTTP responses finish on the first send."""

    @pytest.mark.asyncio
    async def test_second_send_fails(self):
        response = HttpResponse()

        await response.send({})

        assert response.finished is True
        with pytest.raises(ResponseAlreadySentError):
            await response.send({})

    def test_status_is_mutating_and_chainable(self):
        response = HttpResponse()

        assert response.status(404) is response
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_http_does_not_tag_status(self):
        response = HttpResponse()

        await response.status(404).send({"foo": 1})

        assert response.body == {"foo": 1}

    @pytest.mark.asyncio
    async def test_render_json(self):
        response = HttpResponse()
        await response.status(201).send({"a": 1})

        rendered = response.to_starlette()

        assert rendered.status_code == 201
        assert json.loads(rendered.body) == {"a": 1}
        assert rendered.media_type == "application/json"

    @pytest.mark.asyncio
    async def test_render_text_defaults_to_200(self):
        response = HttpResponse()
        await response.send("hello")

        rendered = response.to_starlette()

        assert rendered.status_code == 200
        assert rendered.body == b"hello"
        assert rendered.media_type == "text/plain"

    @pytest.mark.asyncio
    async def test_render_json_forces_json_for_strings(self):
        response = HttpResponse()
        await response.json("hello")

        rendered = response.to_starlette()

        assert json.loads(rendered.body) == "hello"

    @pytest.mark.asyncio
    async def test_render_bytes_and_empty(self):
        raw = HttpResponse()
        await raw.send(b"\x00\x01")
        empty = HttpResponse()
        await empty.status(204).send()

        assert raw.to_starlette().body == b"\x00\x01"
        assert empty.to_starlette().status_code == 204
        assert empty.to_starlette().body == b""

    @pytest.mark.asyncio
    async def test_headers_rendered(self):
        response = HttpResponse()
        response.headers["x-trace"] = "abc"
        await response.send("ok")

        assert response.to_starlette().headers["x-trace"] == "abc"


class TestChannelRequestType:
    def test_adapter_returns_channel_types(self, websocket):
        connection = ChannelConnection(websocket)
        request, response = RequestAdapter(Pipeline()).build(connection, "x")

        assert isinstance(request, ChannelRequest)
        assert isinstance(response, ChannelResponse)
