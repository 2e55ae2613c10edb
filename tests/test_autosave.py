import asyncio
from typing import Any, Dict, List

import httpx

from app.client.autosave import AutosaveOrchestrator, EntityKey, SaveStatus
from app.client.transport import BuilderApiClient
from app.core.errors import ConcurrencyConflict, TransportFailure, ValidationError


class FakeClient:
    """Graba las llamadas; `failures` se consume en orden antes de responder OK."""

    def __init__(self, failures: List[Exception] | None = None, delay: float = 0.0) -> None:
        self.failures = list(failures or [])
        self.delay = delay
        self.calls: List[Any] = []
        self.saved: Dict[str, Any] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def _call(self, name: str, values: Any, response: Dict[str, Any] | None = None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.calls.append((name, values))
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures:
                raise self.failures.pop(0)
            self.saved[name] = values
            return response or {"errors": {}}
        finally:
            self.in_flight -= 1

    async def save_section_settings(self, template_id, section_uid, values):
        return await self._call(f"section:{section_uid}", values)

    async def save_block_settings(self, template_id, section_uid, block_uid, values):
        return await self._call(f"block:{block_uid}", values)

    async def save_theme_settings(self, theme_id, values):
        return await self._call("theme", values)

    async def reorder_sections(self, template_id, order):
        return await self._call("order", order, {"order": order})

    async def reorder_blocks(self, template_id, section_uid, order):
        return await self._call(f"order:{section_uid}", order, {"order": order})


KEY = EntityKey.section(1, "post_list")


def _orchestrator(client, **kw) -> AutosaveOrchestrator:
    opts = {"debounce": 0.02, "max_interval": 5.0, "max_retries": 3, "retry_backoff": 0.01}
    opts.update(kw)
    return AutosaveOrchestrator(client, **opts)


def test_debounce_coalesces_edits():
    async def scenario():
        client = FakeClient()
        auto = _orchestrator(client, debounce=0.5)
        for n in range(1, 4):
            auto.edit(KEY, {"items_per_page": n})
            await asyncio.sleep(0.005)
        assert auto.status(KEY) == SaveStatus.DIRTY
        await auto.flush()
        return client, auto

    client, auto = asyncio.run(scenario())
    assert client.calls == [("section:post_list", {"items_per_page": 3})]
    assert auto.status(KEY) == SaveStatus.CLEAN


def test_edit_values_are_copied():
    async def scenario():
        client = FakeClient()
        auto = _orchestrator(client)
        values = {"heading": "A"}
        auto.edit(KEY, values)
        values["heading"] = "mutated"
        await auto.flush()
        return client

    client = asyncio.run(scenario())
    assert client.saved["section:post_list"] == {"heading": "A"}


def test_transport_failure_keeps_values_until_saved():
    seen: List[SaveStatus] = []

    async def scenario():
        client = FakeClient(failures=[TransportFailure("offline"), TransportFailure("offline")])
        auto = _orchestrator(client)
        auto.add_listener(lambda key, status: seen.append(status))
        auto.edit(KEY, {"items_per_page": 5})
        await auto.flush(KEY)
        return client, auto

    client, auto = asyncio.run(scenario())
    assert len(client.calls) == 3
    assert client.saved["section:post_list"] == {"items_per_page": 5}
    assert auto.status(KEY) == SaveStatus.CLEAN
    assert seen[:4] == [SaveStatus.DIRTY, SaveStatus.SAVING, SaveStatus.ERROR, SaveStatus.DIRTY]
    assert seen[-1] == SaveStatus.CLEAN


def test_gives_up_after_max_retries_and_stays_dirty():
    async def scenario():
        client = FakeClient(failures=[TransportFailure("offline")] * 3)
        auto = _orchestrator(client, max_retries=1)
        auto.edit(KEY, {"heading": "Kept"})
        await auto.flush(KEY)
        status_after_give_up = auto.status(KEY)
        pending = auto.pending_values(KEY)
        calls_after_give_up = len(client.calls)
        # la siguiente llamada explícita vuelve a intentar con los mismos valores
        await auto.flush(KEY)
        await auto.flush(KEY)
        return client, auto, status_after_give_up, pending, calls_after_give_up

    client, auto, status, pending, calls = asyncio.run(scenario())
    assert status == SaveStatus.DIRTY
    assert pending == {"heading": "Kept"}
    assert calls == 2
    assert client.saved["section:post_list"] == {"heading": "Kept"}
    assert auto.status(KEY) == SaveStatus.CLEAN


def test_concurrency_conflict_waits_retry_after():
    async def scenario():
        client = FakeClient(failures=[ConcurrencyConflict("busy", retry_after=0.05)])
        auto = _orchestrator(client)
        auto.edit(KEY, {"heading": "X"})
        await auto.flush(KEY)
        return client, auto

    client, auto = asyncio.run(scenario())
    assert len(client.calls) == 2
    assert auto.status(KEY) == SaveStatus.CLEAN


def test_rejected_fields_are_not_retried():
    async def scenario():
        client = FakeClient(failures=[ValidationError({"heading": ["Field is required"]})])
        auto = _orchestrator(client)
        auto.edit(KEY, {"heading": ""})
        await asyncio.sleep(0.1)
        return client, auto

    client, auto = asyncio.run(scenario())
    assert len(client.calls) == 1
    assert auto.status(KEY) == SaveStatus.DIRTY
    assert auto.field_errors(KEY) == {"heading": ["Field is required"]}


def test_partial_rejection_in_response_keeps_entity_dirty():
    class PartialClient(FakeClient):
        async def save_section_settings(self, template_id, section_uid, values):
            return await self._call("section", values, {"errors": {"items_per_page": ["bad"]}})

    async def scenario():
        client = PartialClient()
        auto = _orchestrator(client)
        auto.edit(KEY, {"heading": "Blog", "items_per_page": -5})
        await asyncio.sleep(0.1)
        return client, auto

    client, auto = asyncio.run(scenario())
    assert len(client.calls) == 1
    assert auto.status(KEY) == SaveStatus.DIRTY
    assert auto.field_errors(KEY) == {"items_per_page": ["bad"]}


def test_single_save_in_flight_per_entity():
    async def scenario():
        client = FakeClient(delay=0.05)
        auto = _orchestrator(client, debounce=0.0)
        auto.edit(KEY, {"heading": "one"})
        await asyncio.sleep(0.01)
        assert auto.status(KEY) == SaveStatus.SAVING
        auto.edit(KEY, {"heading": "two"})
        auto.edit(KEY, {"heading": "three"})
        await auto.flush()
        return client, auto

    client, auto = asyncio.run(scenario())
    assert client.max_in_flight == 1
    assert [c[1]["heading"] for c in client.calls] == ["one", "three"]
    assert auto.status(KEY) == SaveStatus.CLEAN


def test_ceiling_forces_save_during_continuous_edits():
    async def scenario():
        client = FakeClient()
        auto = _orchestrator(client, debounce=0.05, max_interval=0.1)
        for n in range(20):
            auto.edit(KEY, {"items_per_page": n + 1})
            await asyncio.sleep(0.02)
        saved_while_typing = len(client.calls)
        await auto.close()
        return saved_while_typing

    assert asyncio.run(scenario()) >= 1


def test_order_entities_are_deduplicated():
    async def scenario():
        client = FakeClient()
        auto = _orchestrator(client)
        key = EntityKey.section_order(1)
        auto.edit(key, ["footer", "hero", "footer", "header"])
        await auto.flush()
        return client

    client = asyncio.run(scenario())
    assert client.saved["order"] == ["footer", "hero", "header"]


def test_entities_save_independently():
    async def scenario():
        client = FakeClient()
        auto = _orchestrator(client)
        auto.edit(EntityKey.block(1, "hero", "cta"), {"label": "Go"})
        auto.edit(EntityKey.theme(1), {"primary_color": "#000000"})
        await auto.flush()
        return client

    client = asyncio.run(scenario())
    assert client.saved == {"block:cta": {"label": "Go"}, "theme": {"primary_color": "#000000"}}


def test_html_from_a_proxy_is_retried_and_saved():
    seen: List[SaveStatus] = []
    bodies: List[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        if len(bodies) <= 2:
            return httpx.Response(200, text="<html>proxy</html>", headers={"content-type": "text/html"})
        return httpx.Response(200, json={"settings": {"heading": "x"}, "errors": {}})

    async def scenario():
        async with BuilderApiClient("http://builder.local", transport=httpx.MockTransport(handler)) as api:
            auto = _orchestrator(api, debounce=0.01)
            auto.add_listener(lambda key, status: seen.append(status))
            auto.edit(EntityKey.section(1, "hero"), {"heading": "x"})
            await asyncio.sleep(0.3)
            return auto.status(EntityKey.section(1, "hero"))

    status = asyncio.run(scenario())
    assert len(bodies) == 3
    assert status == SaveStatus.CLEAN
    assert seen[:4] == [SaveStatus.DIRTY, SaveStatus.SAVING, SaveStatus.ERROR, SaveStatus.DIRTY]


def test_unexpected_error_returns_to_dirty_with_values():
    class Exploding(FakeClient):
        async def save_section_settings(self, template_id, section_uid, values):
            self.calls.append(values)
            raise RuntimeError("boom")

    async def scenario():
        client = Exploding()
        auto = _orchestrator(client, max_retries=2)
        auto.edit(KEY, {"heading": "Kept"})
        # el worker termina sin propagar la excepción
        await auto.flush(KEY)
        return client, auto

    client, auto = asyncio.run(scenario())
    assert len(client.calls) == 3
    assert auto.status(KEY) == SaveStatus.DIRTY
    assert auto.pending_values(KEY) == {"heading": "Kept"}
