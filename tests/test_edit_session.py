import asyncio

import pytest

from app.client.session import DragState, EditSession, InvalidTransition
from app.core.errors import OrderMismatch


class Recorder:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = []

    async def __call__(self, order):
        self.calls.append(list(order))
        if self.error:
            raise self.error
        return {"order": list(order), "draft_revision": 2}


def test_clicks_are_ignored_while_dragging():
    s = EditSession(["header", "hero", "footer"], Recorder())
    assert s.click("hero") is True
    s.start_drag("footer")
    assert s.state == DragState.DRAGGING
    assert s.click("header") is False
    assert s.selected == "hero"


def test_drag_and_commit():
    reorder = Recorder()
    s = EditSession(["header", "hero", "footer"], reorder)
    s.start_drag("footer")
    assert s.move(0) == ["footer", "header", "hero"]
    assert s.order == ["header", "hero", "footer"]

    order = asyncio.run(s.commit_drag())
    assert order == ["footer", "header", "hero"]
    assert reorder.calls == [["footer", "header", "hero"]]
    assert s.state == DragState.IDLE
    assert s.can_click()


def test_cancel_restores_order():
    reorder = Recorder()
    s = EditSession(["a", "b"], reorder)
    s.start_drag("a")
    s.move(5)
    s.cancel()
    assert s.working_order == ["a", "b"]
    assert reorder.calls == []


def test_failed_commit_returns_to_idle_and_keeps_order():
    s = EditSession(["a", "b"], Recorder(OrderMismatch(scope="sections", missing=["c"], unknown=[])))
    s.start_drag("b")
    s.move(0)
    with pytest.raises(OrderMismatch):
        asyncio.run(s.commit_drag())
    assert s.state == DragState.IDLE
    assert s.order == ["a", "b"]


def test_invalid_transitions():
    s = EditSession(["a", "a", "b"], Recorder())
    assert s.order == ["a", "b"]
    with pytest.raises(InvalidTransition):
        s.move(1)
    with pytest.raises(InvalidTransition):
        s.cancel()
    with pytest.raises(KeyError):
        s.start_drag("zzz")
    s.start_drag("a")
    with pytest.raises(InvalidTransition):
        s.start_drag("b")
