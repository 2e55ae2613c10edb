import asyncio
import json

import httpx
import pytest

from app.client.transport import BuilderApiClient
from app.core.errors import (
    ConcurrencyConflict, NotFound, OrderMismatch, PublishConflict, TransportFailure, ValidationError,
)


def _client(handler) -> BuilderApiClient:
    return BuilderApiClient("http://builder.local", actor="u-7", transport=httpx.MockTransport(handler))


def _run(coro_factory, handler):
    async def scenario():
        async with _client(handler) as api:
            return await coro_factory(api)
    return asyncio.run(scenario())


def test_success_sends_actor_and_body():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"settings": {"heading": "Hi"}, "errors": {}})

    out = _run(lambda api: api.save_section_settings(1, "hero", {"heading": "Hi"}), handler)
    assert out["errors"] == {}
    req = seen[0]
    assert req.method == "PUT"
    assert req.url.path == "/api/v1/builder/templates/1/sections/hero/settings"
    assert req.headers["X-User-Id"] == "u-7"
    assert json.loads(req.content) == {"settings": {"heading": "Hi"}}


def test_idempotency_key_header():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Idempotency-Key"))
        return httpx.Response(200, json={"op": "add_section"})

    _run(lambda api: api.mutate(1, {"op": "add_section", "type": "hero"}, idempotency_key="k1"), handler)
    assert seen == ["k1"]


@pytest.mark.parametrize(
    "status,body,headers,expected",
    [
        (422, {"error": "ValidationError", "message": "bad", "detail": {"fields": {"heading": ["x"]}}}, {}, ValidationError),
        (409, {"error": "OrderMismatch", "message": "m", "detail": {"scope": "s", "missing": ["a"], "unknown": []}}, {}, OrderMismatch),
        (404, {"error": "NotFound", "message": "nope", "detail": {}}, {}, NotFound),
        (409, {"error": "PublishConflict", "message": "no", "detail": {"errors": [{"section": None}]}}, {}, PublishConflict),
        (409, {"error": "ConcurrencyConflict", "message": "busy", "detail": {}}, {"Retry-After": "3"}, ConcurrencyConflict),
        (503, {"error": "TransportFailure", "message": "down"}, {}, TransportFailure),
    ],
)
def test_errors_are_rebuilt(status, body, headers, expected):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body, headers=headers)

    with pytest.raises(expected) as exc:
        _run(lambda api: api.publish(1), handler)
    if expected is ValidationError:
        assert exc.value.field_errors == {"heading": ["x"]}
    if expected is OrderMismatch:
        assert exc.value.missing == ["a"]
    if expected is ConcurrencyConflict:
        assert exc.value.retry_after == 3.0


def test_network_error_is_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportFailure):
        _run(lambda api: api.reorder_sections(1, ["a", "b"]), handler)


def test_undecodable_success_body_is_a_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy</html>")

    with pytest.raises(TransportFailure):
        _run(lambda api: api.save_section_settings(1, "hero", {"heading": "x"}), handler)


def test_non_object_success_body_is_a_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["unexpected"])

    with pytest.raises(TransportFailure):
        _run(lambda api: api.publish(1), handler)
