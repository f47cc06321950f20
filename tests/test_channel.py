"""Tests for RemoteChannel using httpx.MockTransport."""

import json

import httpx
import pytest

from notesync.errors import OperationRejectedError, ProtocolError, TransportError
from notesync.remote.channel import RemoteChannel
from notesync.session import Session

URL = "https://notes.example.com/graphql"


def make_channel(handler, token="tok"):
    session = Session(owner_id="owner-1", token=token, backend_url=URL)
    return RemoteChannel(session, transport=httpx.MockTransport(handler))


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_returns_data(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"data": {"user": {"folders": []}}})

        async with make_channel(handler) as channel:
            data = await channel.execute("sync", {"userId": "owner-1"})

        assert data == {"user": {"folders": []}}
        assert seen["auth"] == "Bearer tok"
        assert seen["url"] == URL
        assert seen["body"]["operationName"] == "Sync"
        assert seen["body"]["variables"] == {"userId": "owner-1"}
        assert seen["body"]["query"].startswith("query Sync")

    @pytest.mark.asyncio
    async def test_graphql_errors_are_rejections(self):
        def handler(request):
            return httpx.Response(200, json={"data": None, "errors": [{"message": "bad folder"}]})

        async with make_channel(handler) as channel:
            with pytest.raises(OperationRejectedError, match="bad folder") as exc_info:
                await channel.execute("folder", {"id": "f1"})

        assert exc_info.value.errors == [{"message": "bad folder"}]
        assert exc_info.value.operation == "folder"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403, 429, 500, 503])
    async def test_transport_statuses(self, status):
        def handler(request):
            return httpx.Response(status, text="nope")

        async with make_channel(handler) as channel:
            with pytest.raises(TransportError) as exc_info:
                await channel.execute("note", {"id": "n1"})

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_client_error_is_rejection(self):
        def handler(request):
            return httpx.Response(400, json={"message": "bad request"})

        async with make_channel(handler) as channel:
            with pytest.raises(OperationRejectedError):
                await channel.execute("note", {"id": "n1"})

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_channel(handler) as channel:
            with pytest.raises(TransportError, match="request failed"):
                await channel.execute("sync", {"userId": None})

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_channel(handler) as channel:
            with pytest.raises(TransportError, match="timed out"):
                await channel.execute("sync", {"userId": None})

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        async with make_channel(handler) as channel:
            with pytest.raises(OperationRejectedError, match="non-JSON"):
                await channel.execute("sync", {"userId": None})

    @pytest.mark.asyncio
    async def test_missing_data(self):
        def handler(request):
            return httpx.Response(200, json={"data": None})

        async with make_channel(handler) as channel:
            with pytest.raises(OperationRejectedError, match="no data"):
                await channel.execute("sync", {"userId": None})

    @pytest.mark.asyncio
    async def test_unknown_operation_does_no_io(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"data": {}})

        async with make_channel(handler) as channel:
            with pytest.raises(ProtocolError):
                await channel.execute("dropTables", {})

        assert calls == []


class TestConstruction:
    def test_requires_backend_url(self):
        with pytest.raises(ValueError, match="backend URL"):
            RemoteChannel(Session(owner_id="o", token="t", backend_url=None))

    def test_requires_token(self):
        with pytest.raises(ValueError, match="auth token"):
            RemoteChannel(Session(owner_id="o", token=None, backend_url=URL))
