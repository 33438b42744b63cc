import logging
import unittest
from datetime import datetime, timezone

from tracker.models import TrackedItem
from tracker.models.base import init_db, make_engine, make_session_factory
from tracker.services.item_merge import ExternalRecord, upsert_external
from tracker.services.overlay import (
    REASON_TAG,
    ItemNotFoundError,
    OverlayPatch,
    OverlayValidationError,
    apply_patch,
)

logging.disable(logging.CRITICAL)

REPO = "openeuler/yuanrong"
OVERLAY = ("assignee", "assignee_group", "note", "estimated_resolve_at", "sync_internal", "priority", "due_at")


def _overlay(row):
    return {name: getattr(row, name) for name in OVERLAY}


class OverlayPatchTests(unittest.TestCase):
    def test_none_values_are_absent(self):
        patch = OverlayPatch(assignee=None, priority=1)
        self.assertNotIn("assignee", patch)
        self.assertIn("priority", patch)
        self.assertEqual(len(patch), 1)

    def test_empty_string_is_present(self):
        self.assertIn("note", OverlayPatch(note=""))

    def test_from_mapping_ignores_unknown_fields(self):
        patch = OverlayPatch.from_mapping({"priority": 2, "title": "hijack", "kind": "pr"})
        self.assertEqual(list(patch), ["priority"])

    def test_constructor_rejects_unknown_fields(self):
        with self.assertRaises(TypeError):
            OverlayPatch(title="x")


class ApplyPatchTests(unittest.TestCase):
    def setUp(self):
        engine = make_engine("sqlite://")
        init_db(engine)
        self.db = make_session_factory(engine)()
        upsert_external(
            self.db,
            [
                ExternalRecord(
                    kind="issue",
                    repo_full_name=REPO,
                    external_key="7",
                    title="Crash",
                    state="open",
                    created_at="2024-01-01T00:00:00Z",
                    updated_at="2024-01-02T00:00:00Z",
                )
            ],
        )

    def tearDown(self):
        self.db.close()

    def _row(self):
        self.db.expire_all()
        return self.db.query(TrackedItem).one()

    def _patch(self, **fields):
        return apply_patch(self.db, "issue", REPO, "7", OverlayPatch(**fields))

    def test_priority_only_leaves_other_fields_untouched(self):
        self._patch(
            assignee="dave",
            assignee_group="runtime",
            note="first note",
            sync_internal=True,
            due_at="2024-02-01",
            estimated_resolve_at="2024-01-25",
        )
        before = _overlay(self._row())

        self._patch(priority=1)

        after = _overlay(self._row())
        self.assertEqual(after["priority"], 1)
        del before["priority"], after["priority"]
        self.assertEqual(after, before)

    def test_priority_only_on_unsynced_row_needs_no_reason(self):
        item = self._patch(priority=2)
        self.assertEqual(item.priority, 2)
        self.assertFalse(item.sync_internal)
        self.assertEqual(item.note, "")

    def test_returns_merged_item_with_fresh_overdue_days(self):
        item = apply_patch(
            self.db,
            "issue",
            REPO,
            "7",
            OverlayPatch(due_at="2024-01-10", sync_internal=True),
            now=datetime(2024, 1, 13, tzinfo=timezone.utc),
        )
        self.assertEqual(item.title, "Crash")
        self.assertEqual(item.due_at, "2024-01-10")
        self.assertEqual(item.overdue_days, 3)

    def test_unknown_identity_is_not_found_and_writes_nothing(self):
        before = _overlay(self._row())

        for kind, repo, key in (("issue", REPO, "999"), ("pr", REPO, "7"), ("issue", "x/y", "7")):
            with self.subTest(kind=kind, repo=repo, key=key):
                with self.assertRaises(ItemNotFoundError):
                    apply_patch(self.db, kind, repo, key, OverlayPatch(priority=0))

        self.assertEqual(self.db.query(TrackedItem).count(), 1)
        self.assertEqual(_overlay(self._row()), before)

    def test_out_of_range_priority_becomes_low(self):
        self.assertEqual(self._patch(priority=0).priority, 0)
        self.assertEqual(self._patch(priority=9).priority, 3)
        self.assertEqual(self._patch(priority=-1).priority, 3)

    def test_empty_string_clears_field(self):
        self._patch(assignee="dave")
        self.assertEqual(self._patch(assignee="").assignee, "")

    def test_disabling_sync_requires_reason(self):
        self._patch(sync_internal=True, note="keep")

        with self.assertRaises(OverlayValidationError):
            self._patch(sync_internal=False)
        with self.assertRaises(OverlayValidationError):
            self._patch(sync_internal=False, reason="   ")

        row = self._row()
        self.assertTrue(row.sync_internal)
        self.assertEqual(row.note, "keep")

    def test_reason_is_appended_to_note(self):
        item = self._patch(sync_internal=False, note="upstream only", reason="not our component")

        self.assertFalse(item.sync_internal)
        self.assertEqual(item.note, f"upstream only\n{REASON_TAG} not our component")

    def test_reason_without_note_becomes_note(self):
        item = self._patch(sync_internal=False, reason="duplicate")
        self.assertEqual(item.note, f"{REASON_TAG} duplicate")

    def test_already_tagged_note_satisfies_reason_rule(self):
        self._patch(sync_internal=False, reason="duplicate")
        item = self._patch(sync_internal=False, priority=1)
        self.assertEqual(item.note, f"{REASON_TAG} duplicate")
        self.assertEqual(item.priority, 1)

    def test_reason_ignored_when_syncing(self):
        item = self._patch(sync_internal=True, reason="irrelevant")
        self.assertEqual(item.note, "")

    def test_invalid_due_date_is_rejected(self):
        with self.assertRaises(OverlayValidationError):
            self._patch(due_at="next tuesday")
        self.assertEqual(self._row().due_at, "")

    def test_due_date_outside_utc_range_is_rejected(self):
        with self.assertRaises(OverlayValidationError):
            self._patch(due_at="9999-12-31T23:00:00-05:00")
        self.assertEqual(self._row().due_at, "")

    def test_empty_due_date_clears_it(self):
        self._patch(due_at="2024-02-01")
        self.assertEqual(self._patch(due_at="").due_at, "")


if __name__ == "__main__":
    unittest.main()
