import pytest
from sqlalchemy.orm import Session

from app.core.errors import NotFound, ValidationError
from app.services import snapshot_service
from app.services.draft_service import mutate_draft
from app.services.graph_service import graph_checksum
from app.services.settings_service import apply_section_settings


def test_snapshots_are_listed_newest_first(db_session: Session, index_template):
    tid = index_template.id
    first = snapshot_service.snapshot(db_session, template_id=tid, label="one", actor="u1")
    second = snapshot_service.snapshot(db_session, template_id=tid, label="two")
    rows = snapshot_service.list_snapshots(db_session, template_id=tid)
    assert [r.id for r in rows] == [second, first]
    assert snapshot_service.list_snapshots(db_session, template_id=tid, limit=1)[0].id == second

    data = snapshot_service.snapshot_to_dict(rows[1])
    assert data["label"] == "one"
    assert data["created_by"] == "u1"
    assert data["sections"] == 4
    assert "graph" not in data


def test_snapshot_checksum_matches_graph(db_session: Session, index_template):
    snap_id = snapshot_service.snapshot(db_session, template_id=index_template.id)
    snap = snapshot_service.get_snapshot(db_session, snapshot_id=snap_id)
    assert snap.checksum == graph_checksum(snap.graph)
    assert snap.reason == "manual"
    assert snap.label.startswith("Draft snapshot")


def test_snapshot_of_unpublished_live_is_empty(db_session: Session, index_template):
    snap_id = snapshot_service.snapshot(db_session, template_id=index_template.id, state="live")
    assert snapshot_service.get_snapshot(db_session, snapshot_id=snap_id).graph == {"sections": []}


def test_snapshot_rejects_unknown_state(db_session: Session, index_template):
    with pytest.raises(ValidationError):
        snapshot_service.snapshot(db_session, template_id=index_template.id, state="staging")


def test_missing_snapshot(db_session: Session, index_template):
    with pytest.raises(NotFound):
        snapshot_service.get_snapshot(db_session, snapshot_id=999)
    with pytest.raises(NotFound):
        snapshot_service.list_snapshots(db_session, template_id=999)


def test_diff_against_current_draft(db_session: Session, index_template):
    tid = index_template.id
    snap_id = snapshot_service.snapshot(db_session, template_id=tid)

    mutate_draft(db_session, template_id=tid, patch={"op": "remove_section", "section_id": "footer"})
    added = mutate_draft(db_session, template_id=tid, patch={"op": "add_section", "type": "rich-text"})
    apply_section_settings(db_session, template_id=tid, section_uid="hero", raw_values={"heading": "Changed"})
    mutate_draft(
        db_session, template_id=tid,
        patch={"op": "reorder_sections", "order": ["hero", "header", "post_list", added["section_id"]]},
    )

    d = snapshot_service.diff(db_session, snapshot_id=snap_id)
    assert d["from"] == f"snapshot:{snap_id}"
    assert d["to"] == "current:draft"
    assert d["added"] == [added["section_id"]]
    assert d["removed"] == ["footer"]
    assert d["changed"] == [{"id": "hero", "settings": ["heading"]}]
    assert d["order_changed"] is True


def test_diff_between_snapshots(db_session: Session, post_template):
    tid = post_template.id
    a = snapshot_service.snapshot(db_session, template_id=tid)
    mutate_draft(db_session, template_id=tid, patch={"op": "remove_block", "section_id": "faq", "block_id": "q2"})
    b = snapshot_service.snapshot(db_session, template_id=tid)

    d = snapshot_service.diff(db_session, snapshot_id=a, other_snapshot_id=b)
    assert d["to"] == f"snapshot:{b}"
    assert d["changed"] == [{"id": "faq", "blocks": True}]
    assert d["order_changed"] is False
    assert snapshot_service.diff(db_session, snapshot_id=b, other_snapshot_id=b)["changed"] == []
