import pytest
from sqlalchemy.orm import Session

from app.core.errors import NotFound, PublishConflict, ValidationError
from app.services import snapshot_service
from app.services.draft_service import mutate_draft
from app.services.graph_service import can_transition, current_state, serialize_graph
from app.services.ordering_service import get_section
from app.services.publish_service import publish, validate_draft


def test_lifecycle_transitions():
    assert can_transition("draft_only", "publish")
    assert not can_transition("draft_only", "rollback_live")
    assert can_transition("draft_and_live", "rollback_live")


def test_live_is_not_found_before_first_publish(db_session: Session, index_template):
    with pytest.raises(NotFound):
        current_state(db_session, template_id=index_template.id, state="live")


def test_publish_copies_draft_to_live(db_session: Session, index_template):
    tid = index_template.id
    res = publish(db_session, template_id=tid, actor="editor")
    assert res["live_version"] == 1
    assert index_template.lifecycle == "draft_and_live"
    assert index_template.published_by == "editor"

    draft = serialize_graph(db_session, template_id=tid, state="draft")
    assert serialize_graph(db_session, template_id=tid, state="live") == draft

    before = snapshot_service.get_snapshot(db_session, snapshot_id=res["snapshot_id"])
    assert before.reason == "publish"
    assert before.source_state == "live"
    assert before.graph == {"sections": []}

    live = current_state(db_session, template_id=tid, state="live")
    assert [s["id"] for s in live["sections"]] == ["header", "hero", "post_list", "footer"]
    assert live["sections"][1]["settings"]["heading"] == "Hello from RailsPress"
    assert live["sections"][2]["settings"]["items_per_page"] == 10


def test_draft_edits_do_not_leak_into_live(db_session: Session, index_template):
    tid = index_template.id
    publish(db_session, template_id=tid)
    mutate_draft(db_session, template_id=tid, patch={"op": "remove_section", "section_id": "hero"})
    live_ids = [s["id"] for s in serialize_graph(db_session, template_id=tid, state="live")["sections"]]
    assert "hero" in live_ids


def test_invalid_draft_does_not_publish(db_session: Session, index_template):
    tid = index_template.id
    publish(db_session, template_id=tid)
    live_before = serialize_graph(db_session, template_id=tid, state="live")
    snapshots_before = len(snapshot_service.list_snapshots(db_session, template_id=tid))

    section = get_section(db_session, tid, "post_list")
    section.settings = {"items_per_page": -5}
    db_session.commit()

    problems = validate_draft(db_session, index_template)
    assert problems[0]["section"] == "post_list"

    with pytest.raises(PublishConflict) as exc:
        publish(db_session, template_id=tid)
    assert exc.value.errors == problems
    assert index_template.live_version == 1
    assert serialize_graph(db_session, template_id=tid, state="live") == live_before
    assert len(snapshot_service.list_snapshots(db_session, template_id=tid)) == snapshots_before


def test_empty_draft_cannot_publish(db_session: Session, index_template):
    tid = index_template.id
    for uid in ("header", "hero", "post_list", "footer"):
        mutate_draft(db_session, template_id=tid, patch={"op": "remove_section", "section_id": uid})
    with pytest.raises(PublishConflict):
        publish(db_session, template_id=tid)
    assert index_template.live_version is None


def test_rollback_live_to_before_first_publish(db_session: Session, index_template):
    tid = index_template.id
    res = publish(db_session, template_id=tid)

    rb = snapshot_service.rollback(
        db_session, template_id=tid, snapshot_id=res["snapshot_id"], target="live", actor="editor"
    )
    assert rb["live_version"] == 2
    assert current_state(db_session, template_id=tid, state="live")["sections"] == []

    # el rollback se puede deshacer con su snapshot implícito
    undo = snapshot_service.get_snapshot(db_session, snapshot_id=rb["snapshot_id"])
    assert undo.reason == "rollback"
    assert [s["id"] for s in undo.graph["sections"]] == ["header", "hero", "post_list", "footer"]
    snapshot_service.rollback(db_session, template_id=tid, snapshot_id=undo.id, target="live")
    assert len(current_state(db_session, template_id=tid, state="live")["sections"]) == 4


def test_draft_rollback_round_trip(db_session: Session, index_template):
    tid = index_template.id
    original = serialize_graph(db_session, template_id=tid, state="draft")
    snap_id = snapshot_service.snapshot(db_session, template_id=tid, label="baseline")
    checksum = snapshot_service.get_snapshot(db_session, snapshot_id=snap_id).checksum

    mutate_draft(db_session, template_id=tid, patch={"op": "remove_section", "section_id": "hero"})
    mutate_draft(db_session, template_id=tid, patch={"op": "add_section", "type": "rich-text"})
    revision = index_template.draft_revision

    rb = snapshot_service.rollback(db_session, template_id=tid, snapshot_id=snap_id, target="draft")
    assert rb["draft_revision"] == revision + 1
    assert serialize_graph(db_session, template_id=tid, state="draft") == original
    # el snapshot de origen no cambia
    assert snapshot_service.get_snapshot(db_session, snapshot_id=snap_id).checksum == checksum


def test_live_rollback_requires_a_published_template(db_session: Session, index_template):
    tid = index_template.id
    snap_id = snapshot_service.snapshot(db_session, template_id=tid)
    with pytest.raises(PublishConflict):
        snapshot_service.rollback(db_session, template_id=tid, snapshot_id=snap_id, target="live")
    assert index_template.live_version is None


def test_rollback_rejects_unknown_target_and_foreign_snapshot(db_session: Session, index_template, post_template):
    snap_id = snapshot_service.snapshot(db_session, template_id=post_template.id)
    with pytest.raises(ValidationError):
        snapshot_service.rollback(db_session, template_id=index_template.id, snapshot_id=snap_id, target="staging")
    with pytest.raises(NotFound):
        snapshot_service.rollback(db_session, template_id=index_template.id, snapshot_id=snap_id, target="draft")


def test_live_snapshot_publish_rollback_round_trip(db_session: Session, index_template):
    tid = index_template.id
    publish(db_session, template_id=tid)
    snap_id = snapshot_service.snapshot(db_session, template_id=tid, state="live", label="live v1")
    snap = snapshot_service.get_snapshot(db_session, snapshot_id=snap_id)
    assert snap.graph["sections"]

    mutate_draft(db_session, template_id=tid, patch={
        "op": "update_section", "section_id": "hero", "settings": {"heading": "Changed"},
    })
    mutate_draft(db_session, template_id=tid, patch={"op": "remove_section", "section_id": "footer"})
    publish(db_session, template_id=tid)
    assert serialize_graph(db_session, template_id=tid, state="live") != snap.graph

    snapshot_service.rollback(db_session, template_id=tid, snapshot_id=snap_id, target="live")
    assert serialize_graph(db_session, template_id=tid, state="live") == snap.graph
