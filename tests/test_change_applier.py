"""Tests for the change applier.

Tests:
- Mutation validation (missing/unknown fields, bad timestamps)
- Inserts: defaults, duplicates, parent resolution, root order
- Updates: last-write-wins with ties accepted, partial payloads, reparenting
- Deletes: tombstones, staleness, idempotence
- Update-after-delete boundary
"""

import json

import pytest

from taakl.storage import ChangeApplier
from taakl.storage.user_meta import UserMetaStore
from taakl.types import Mutation

# Client-asserted timestamps relative to the fake server clock (2024-01-01 10:00:00)
BEFORE = "2024-01-01 09:00:00"
SAME = "2024-01-01 10:00:00"
LATER = "2024-01-02 00:00:00"
LATEST = "2024-01-03 00:00:00"


@pytest.fixture
def apply(storage, account, make_change):
    """Apply one change in its own transaction; returns acceptance."""

    def _apply(*args, **kwargs) -> bool:
        mutation = Mutation.from_wire(make_change(*args, **kwargs))
        with storage.transaction() as conn:
            return ChangeApplier(conn, account["id"], storage.now).apply(mutation)

    return _apply


@pytest.fixture
def legacy_tree(apply):
    """c1 -> p1 -> t1 -> s1, all inserted at server start."""
    assert apply("insert", "client", "c1", {"name": "Acme"})
    assert apply("insert", "project", "p1", {"name": "Website"}, parent="c1")
    assert apply("insert", "task", "t1", {"name": "Design"}, parent="p1")
    assert apply("insert", "session", "s1", {"start_time": "2024-01-01 08:00:00"}, parent="t1")


def root_order(storage, account):
    with storage.connect() as conn:
        return UserMetaStore(conn, account["id"]).get().root_order


class TestValidation:
    """Malformed mutations are rejected without touching the store."""

    @pytest.mark.parametrize(
        "action,type_,uuid",
        [("", "client", "c1"), ("insert", "", "c1"), ("insert", "client", "")],
    )
    def test_missing_required_fields(self, apply, fetch_row, action, type_, uuid):
        assert apply(action, type_, uuid, {"name": "Acme"}) is False
        assert fetch_row("clients", "c1") is None

    def test_unknown_action(self, apply, fetch_row):
        assert apply("upsert", "client", "c1", {"name": "Acme"}) is False
        assert fetch_row("clients", "c1") is None

    def test_unknown_type(self, apply):
        assert apply("insert", "invoice", "i1", {"name": "Bill"}) is False

    def test_unparseable_timestamp_rejects_update(self, apply, fetch_row, legacy_tree):
        assert apply("update", "client", "c1", {"name": "Other"}, timestamp="yesterday") is False
        assert fetch_row("clients", "c1")["name"] == "Acme"

    def test_iso_timestamp_is_normalized(self, apply, fetch_row, legacy_tree):
        assert apply("update", "client", "c1", {"name": "Iso"}, timestamp="2024-01-02T00:00:00.000Z")
        assert fetch_row("clients", "c1")["name"] == "Iso"

    def test_offset_timestamp_compared_in_utc(self, apply, fetch_row, legacy_tree):
        # 11:30+02:00 is 09:30 UTC, older than the stored 10:00
        assert apply("update", "client", "c1", {"name": "Late"}, timestamp="2024-01-01T11:30:00+02:00") is False
        assert fetch_row("clients", "c1")["name"] == "Acme"

    @pytest.mark.parametrize(
        "type_,data",
        [
            ("client", {"name": {"first": "x"}}),
            ("client", {"name": ["a"]}),
            ("node", {"priority": {"level": 1}}),
            ("node", {"parentId": ["n1"]}),
        ],
    )
    def test_structured_value_in_scalar_field_rejected(self, apply, fetch_row, type_, data):
        assert apply("insert", type_, "x1", data) is False
        assert fetch_row(f"{type_}s", "x1") is None

    def test_structured_value_in_update_rejected(self, apply, fetch_row, legacy_tree):
        assert apply("update", "task", "t1", {"notes": ["a"], "status": "done"}, timestamp=LATER) is False
        assert fetch_row("tasks", "t1")["status"] == "new"

    def test_structured_meta_and_child_order_accepted(self, apply, fetch_row):
        assert apply("insert", "node", "n1", {"meta": {"tags": ["x"]}, "childOrder": ["n2"]})
        assert json.loads(fetch_row("nodes", "n1")["child_order"]) == ["n2"]

    def test_bad_mutation_does_not_abort_batch(self, engine, make_change, fetch_row):
        result = engine.process_incremental_sync(
            [
                make_change("insert", "client", "c1", {"name": "Acme"}),
                make_change("insert", "client", "c2", {"name": {"first": "x"}}),
                make_change("insert", "client", "c3", {"name": "Beta"}),
            ]
        )

        assert result.stats.accepted == 2
        assert result.stats.conflicts == 1
        assert fetch_row("clients", "c1")["name"] == "Acme"
        assert fetch_row("clients", "c2") is None
        assert fetch_row("clients", "c3")["name"] == "Beta"


class TestInsert:
    def test_insert_client(self, apply, fetch_row, account):
        assert apply("insert", "client", "c1", {"name": "Acme"})

        row = fetch_row("clients", "c1")
        assert row["name"] == "Acme"
        assert row["user_id"] == account["id"]
        assert row["updated_at"] == "2024-01-01 10:00:00"
        assert row["deleted_at"] is None

    def test_duplicate_insert_rejected_and_store_unchanged(self, apply, fetch_row):
        assert apply("insert", "client", "c1", {"name": "Acme"})
        assert apply("insert", "client", "c1", {"name": "Impostor"}) is False
        assert fetch_row("clients", "c1")["name"] == "Acme"

    def test_duplicate_of_deleted_row_rejected(self, apply, fetch_row):
        assert apply("insert", "client", "c1", {"name": "Acme"})
        assert apply("delete", "client", "c1", timestamp=LATER)
        assert apply("insert", "client", "c1", {"name": "Again"}) is False
        assert fetch_row("clients", "c1")["deleted_at"] == LATER

    def test_defaults_for_task(self, apply, fetch_row, legacy_tree):
        assert apply("insert", "task", "t2", {}, parent="p1")

        row = fetch_row("tasks", "t2")
        assert row["name"] == "Unnamed Task"
        assert row["status"] == "new"
        assert row["priority"] == 1
        assert row["billable"] == 1
        assert row["starred"] == 0
        assert row["due"] is None

    def test_string_flags_stored_as_integers(self, apply, fetch_row, legacy_tree):
        assert apply("insert", "task", "t2", {"priority": "2", "billable": "0", "starred": True}, parent="p1")

        row = fetch_row("tasks", "t2")
        assert (row["priority"], row["billable"], row["starred"]) == (2, 0, 1)

    def test_session_start_defaults_to_server_time(self, apply, fetch_row, legacy_tree, clock):
        clock.set("2024-01-01 12:30:00")
        assert apply("insert", "session", "s2", {}, parent="t1")
        assert fetch_row("sessions", "s2")["start_time"] == "2024-01-01 12:30:00"

    @pytest.mark.parametrize(
        "type_,parent",
        [("project", "nope"), ("task", "nope"), ("session", "nope"), ("node_session", "nope")],
    )
    def test_unknown_parent_rejected(self, apply, legacy_tree, type_, parent):
        assert apply("insert", type_, "x1", {}, parent=parent) is False

    def test_missing_parent_rejected(self, apply, legacy_tree):
        assert apply("insert", "project", "p2", {"name": "Orphan"}) is False

    def test_parent_of_wrong_kind_rejected(self, apply, legacy_tree):
        # p1 is a project, not a client
        assert apply("insert", "project", "p2", {"name": "Nested"}, parent="p1") is False

    def test_deleted_parent_rejected(self, apply, legacy_tree):
        assert apply("delete", "client", "c1", timestamp=LATER)
        assert apply("insert", "project", "p2", {"name": "Late"}, parent="c1") is False

    def test_other_accounts_parent_not_resolvable(self, storage, other_account, make_change, apply):
        mutation = Mutation.from_wire(make_change("insert", "client", "theirs", {"name": "Bob Co"}))
        with storage.transaction() as conn:
            assert ChangeApplier(conn, other_account["id"], storage.now).apply(mutation)

        assert apply("insert", "project", "p9", {"name": "Sneaky"}, parent="theirs") is False

    def test_same_identifier_under_different_parents(self, apply, legacy_tree):
        assert apply("insert", "client", "c2", {"name": "Globex"})
        assert apply("insert", "project", "shared", {"name": "A"}, parent="c1")
        assert apply("insert", "project", "shared", {"name": "B"}, parent="c2")


class TestNodeInsert:
    def test_root_node_defaults_and_root_order(self, apply, fetch_row, storage, account):
        assert apply("insert", "node", "n1", {})

        row = fetch_row("nodes", "n1")
        assert row["name"] == "Unnamed"
        assert row["node_type"] == "task"
        assert row["parent_uuid"] is None
        assert json.loads(row["child_order"]) == []
        assert row["collapsed"] == 0
        assert row["priority"] == 3
        assert root_order(storage, account) == ["n1"]

    def test_child_node_not_added_to_root_order(self, apply, fetch_row, storage, account):
        assert apply("insert", "node", "n1", {"name": "Folder", "type": "folder"})
        assert apply("insert", "node", "n2", {"name": "Child"}, parent="n1")

        assert fetch_row("nodes", "n2")["parent_uuid"] == "n1"
        assert root_order(storage, account) == ["n1"]

    def test_parent_from_payload(self, apply, fetch_row):
        assert apply("insert", "node", "n1", {"type": "folder"})
        assert apply("insert", "node", "n2", {"parentId": "n1"})
        assert fetch_row("nodes", "n2")["parent_uuid"] == "n1"

    def test_unknown_parent_node_rejected(self, apply, fetch_row):
        assert apply("insert", "node", "n2", {"name": "Lost"}, parent="missing") is False
        assert fetch_row("nodes", "n2") is None

    def test_empty_due_stored_as_null(self, apply, fetch_row):
        assert apply("insert", "node", "n1", {"due": ""})
        assert fetch_row("nodes", "n1")["due"] is None

    def test_child_order_and_meta_stored_as_json(self, apply, fetch_row):
        assert apply("insert", "node", "n1", {"childOrder": ["a", "b"], "meta": {"color": "red"}})

        row = fetch_row("nodes", "n1")
        assert json.loads(row["child_order"]) == ["a", "b"]
        assert json.loads(row["meta"]) == {"color": "red"}

    def test_root_order_not_duplicated(self, apply, storage, account):
        with storage.transaction() as conn:
            UserMetaStore(conn, account["id"]).add_to_root_order("n1", storage.now())

        assert apply("insert", "node", "n1", {})
        assert root_order(storage, account) == ["n1"]


class TestUpdate:
    def test_newer_update_accepted(self, apply, fetch_row, legacy_tree):
        assert apply("update", "task", "t1", {"status": "done"}, timestamp=LATER)
        assert fetch_row("tasks", "t1")["status"] == "done"

    def test_stale_update_rejected_and_record_unchanged(self, apply, fetch_row, legacy_tree):
        before = fetch_row("tasks", "t1")
        assert apply("update", "task", "t1", {"status": "done"}, timestamp=BEFORE) is False
        assert fetch_row("tasks", "t1") == before

    def test_equal_timestamp_goes_to_incoming_update(self, apply, fetch_row, legacy_tree):
        assert apply("update", "task", "t1", {"status": "done"}, timestamp=SAME)
        assert fetch_row("tasks", "t1")["status"] == "done"

    def test_missing_timestamp_defaults_to_now(self, apply, fetch_row, legacy_tree):
        assert apply("update", "task", "t1", {"status": "done"})
        assert fetch_row("tasks", "t1")["status"] == "done"

    def test_unknown_entity_rejected(self, apply):
        assert apply("update", "task", "ghost", {"status": "done"}, timestamp=LATER) is False

    def test_only_present_fields_change(self, apply, fetch_row, legacy_tree):
        assert apply("update", "task", "t1", {"notes": "call back", "status": None}, timestamp=LATER)

        row = fetch_row("tasks", "t1")
        assert row["notes"] == "call back"
        assert row["status"] == "new"
        assert row["name"] == "Design"

    def test_accepted_update_stamps_server_time(self, apply, fetch_row, legacy_tree, clock):
        clock.set("2024-01-01 11:00:00")
        assert apply("update", "task", "t1", {"status": "done"}, timestamp=LATEST)
        assert fetch_row("tasks", "t1")["updated_at"] == "2024-01-01 11:00:00"

    def test_meta_replaced_when_sent(self, apply, fetch_row, legacy_tree):
        assert apply("update", "client", "c1", {"meta": {"vat": "NL1"}}, timestamp=LATER)
        assert json.loads(fetch_row("clients", "c1")["meta"]) == {"vat": "NL1"}

    def test_deleted_flag_sets_tombstone(self, apply, fetch_row, legacy_tree):
        assert apply("update", "client", "c1", {"deleted": True}, timestamp=LATER)
        assert fetch_row("clients", "c1")["deleted_at"] == LATER

    def test_node_reparent(self, apply, fetch_row):
        assert apply("insert", "node", "n1", {"type": "folder"})
        assert apply("insert", "node", "n2", {"type": "folder"})
        assert apply("insert", "node", "n3", {}, parent="n1")

        assert apply("update", "node", "n3", {"parentId": "n2"}, timestamp=LATER)
        assert fetch_row("nodes", "n3")["parent_uuid"] == "n2"

    @pytest.mark.parametrize("new_parent", ["missing", "n3"])
    def test_node_reparent_to_unknown_or_self_rejected(self, apply, fetch_row, new_parent):
        assert apply("insert", "node", "n1", {"type": "folder"})
        assert apply("insert", "node", "n3", {}, parent="n1")

        assert apply("update", "node", "n3", {"parentId": new_parent}, timestamp=LATER) is False
        assert fetch_row("nodes", "n3")["parent_uuid"] == "n1"

    def test_node_reparent_under_own_descendant_rejected(self, apply, fetch_row):
        assert apply("insert", "node", "a", {"type": "folder"})
        assert apply("insert", "node", "b", {"type": "folder"}, parent="a")
        assert apply("insert", "node", "c", {"type": "folder"}, parent="b")

        assert apply("update", "node", "a", {"parentId": "b"}, timestamp=LATER) is False
        assert apply("update", "node", "a", {"parentId": "c"}, timestamp=LATER) is False
        assert fetch_row("nodes", "a")["parent_uuid"] is None

    def test_node_swap_parents_rejected(self, apply, fetch_row):
        assert apply("insert", "node", "a", {"type": "folder"})
        assert apply("insert", "node", "b", {"type": "folder"})

        assert apply("update", "node", "a", {"parentId": "b"}, timestamp=LATER)
        assert apply("update", "node", "b", {"parentId": "a"}, timestamp=LATER) is False
        assert fetch_row("nodes", "b")["parent_uuid"] is None


class TestDelete:
    def test_delete_sets_tombstone_to_asserted_time(self, apply, fetch_row, legacy_tree, clock):
        clock.set("2024-01-01 12:00:00")
        assert apply("delete", "project", "p1", timestamp=LATER)

        row = fetch_row("projects", "p1")
        assert row["deleted_at"] == LATER
        assert row["updated_at"] == "2024-01-01 12:00:00"

    def test_delete_unknown_rejected(self, apply):
        assert apply("delete", "client", "ghost", timestamp=LATER) is False

    def test_stale_delete_rejected(self, apply, fetch_row, legacy_tree):
        assert apply("delete", "task", "t1", timestamp=BEFORE) is False
        assert fetch_row("tasks", "t1")["deleted_at"] is None

    def test_delete_is_idempotent(self, apply, fetch_row, legacy_tree):
        assert apply("delete", "session", "s1", timestamp=LATER)
        assert apply("delete", "session", "s1", timestamp=LATER)
        assert fetch_row("sessions", "s1")["deleted_at"] == LATER

    def test_redelete_with_older_timestamp_rejected(self, apply, fetch_row, legacy_tree):
        assert apply("delete", "session", "s1", timestamp=LATEST)
        assert apply("delete", "session", "s1", timestamp=LATER) is False
        assert fetch_row("sessions", "s1")["deleted_at"] == LATEST

    def test_delete_without_timestamp_uses_server_time(self, apply, fetch_row, legacy_tree, clock):
        clock.set("2024-01-01 10:30:00")
        assert apply("delete", "client", "c1")
        assert fetch_row("clients", "c1")["deleted_at"] == "2024-01-01 10:30:00"


class TestUpdateAfterDelete:
    """A tombstone is compared by its own time, not the row's updated_at."""

    def test_update_older_than_delete_rejected(self, apply, fetch_row):
        assert apply("insert", "node", "n1", {"name": "Plan"})
        assert apply("delete", "node", "n1", timestamp=LATEST)

        assert apply("update", "node", "n1", {"name": "Revived"}, timestamp=LATER) is False

        row = fetch_row("nodes", "n1")
        assert row["deleted_at"] == LATEST
        assert row["name"] == "Plan"

    def test_update_at_or_after_delete_resurrects(self, apply, fetch_row):
        assert apply("insert", "node", "n1", {"name": "Plan"})
        assert apply("delete", "node", "n1", timestamp=LATER)

        assert apply("update", "node", "n1", {"name": "Revived"}, timestamp=LATER)

        row = fetch_row("nodes", "n1")
        assert row["deleted_at"] is None
        assert row["name"] == "Revived"

    def test_update_with_deleted_flag_keeps_tombstone(self, apply, fetch_row):
        assert apply("insert", "client", "c1", {"name": "Acme"})
        assert apply("delete", "client", "c1", timestamp=LATER)

        assert apply("update", "client", "c1", {"name": "Gone", "deleted": 1}, timestamp=LATEST)

        row = fetch_row("clients", "c1")
        assert row["deleted_at"] == LATER
        assert row["name"] == "Gone"
