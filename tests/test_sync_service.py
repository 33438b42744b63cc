import logging
import unittest
from unittest.mock import patch

import httpx
from sqlalchemy.exc import OperationalError

from tracker.config import Settings
from tracker.models import SyncLog, TrackedItem
from tracker.models.base import init_db, make_engine, make_session_factory
from tracker.models.sync_log import SyncStage, SyncStatus
from tracker.services.gitcode_client import GitCodeClient, RemoteItem, RemoteSourceError
from tracker.services.overlay import OverlayPatch, apply_patch
from tracker.services.sync_service import MissingCredentialError, SyncService

logging.disable(logging.CRITICAL)


class _FakeClient:
    """Stands in for GitCodeClient; ``failures`` maps repo name -> list of errors to raise."""

    def __init__(self, issues=None, pulls=None, failures=None):
        self.issues = issues or {}
        self.pulls = pulls or {}
        self.failures = failures or {}
        self.calls = []
        self.closed = False

    def _maybe_fail(self, repo):
        pending = self.failures.get(repo)
        if pending:
            raise pending.pop(0)

    def list_issues(self, owner, repo):
        self.calls.append(("issues", owner, repo))
        self._maybe_fail(repo)
        return list(self.issues.get(repo, []))

    def list_pulls(self, owner, repo):
        self.calls.append(("pulls", owner, repo))
        return list(self.pulls.get(repo, []))

    def close(self):
        self.closed = True


def _items(*keys, title="T"):
    return [RemoteItem(key=str(k), title=f"{title} {k}", state="open") for k in keys]


class SyncServiceTests(unittest.TestCase):
    def setUp(self):
        engine = make_engine("sqlite://")
        init_db(engine)
        self.db = make_session_factory(engine)()

    def tearDown(self):
        self.db.close()

    def _settings(self, **overrides):
        values = dict(_env_file=None, gitcode_token="tok", gitcode_owner="openeuler", gitcode_repos="a,b")
        values.update(overrides)
        return Settings(**values)

    def _service(self, client, **overrides):
        return SyncService(self.db, self._settings(**overrides), lambda settings: client, retry_base_delay_s=0)

    def test_syncs_issues_and_pulls_of_every_repository(self):
        client = _FakeClient(
            issues={"a": _items(1, 2), "b": _items(1)},
            pulls={"a": _items(3)},
        )

        result = self._service(client).run()

        self.assertEqual(result.status, "success")
        self.assertEqual(result.fetched, 4)
        self.assertEqual(result.upserted, 4)
        self.assertTrue(client.closed)
        self.assertIn(("issues", "openeuler", "a"), client.calls)
        kinds = sorted(
            (r.kind, r.repo_full_name, r.external_key) for r in self.db.query(TrackedItem).all()
        )
        self.assertEqual(
            kinds,
            [
                ("issue", "openeuler/a", "1"),
                ("issue", "openeuler/a", "2"),
                ("issue", "openeuler/b", "1"),
                ("pr", "openeuler/a", "3"),
            ],
        )
        logs = self.db.query(SyncLog).all()
        self.assertEqual(len(logs), 2)
        self.assertTrue(all(log.status == SyncStatus.SUCCESS for log in logs))

    def test_missing_token_is_rejected_before_any_fetch(self):
        client = _FakeClient()
        service = self._service(client, gitcode_token=None)

        with self.assertRaises(MissingCredentialError):
            service.run()
        self.assertEqual(client.calls, [])

    def test_fetch_failure_only_drops_that_repository(self):
        client = _FakeClient(
            issues={"a": _items(1), "b": _items(1, 2)},
            failures={"a": [RemoteSourceError("status=404", status_code=404)]},
        )

        result = self._service(client).run()

        self.assertEqual(result.status, "partial")
        failed = result.failures[0]
        self.assertEqual(failed.repo_full_name, "openeuler/a")
        self.assertEqual(failed.stage, SyncStage.FETCH)
        self.assertEqual(result.upserted, 2)
        self.assertEqual(
            {r.repo_full_name for r in self.db.query(TrackedItem).all()}, {"openeuler/b"}
        )
        log = self.db.query(SyncLog).filter(SyncLog.repo_full_name == "openeuler/a").one()
        self.assertEqual(log.status, SyncStatus.FAILED)
        self.assertEqual(log.stage, SyncStage.FETCH)
        self.assertIn("404", log.message)

    def test_all_repositories_failing_is_failed(self):
        client = _FakeClient(
            failures={
                "a": [RemoteSourceError("down")],
                "b": [RemoteSourceError("down")],
            }
        )
        result = self._service(client).run()
        self.assertEqual(result.status, "failed")
        self.assertEqual(result.to_dict()["repositories"][0]["stage"], "fetch")

    def test_write_failure_is_reported_with_stage(self):
        client = _FakeClient(issues={"a": _items(1), "b": _items(2)})
        error = OperationalError("INSERT", {}, Exception("database is locked"))

        with patch("tracker.services.sync_service.upsert_external", side_effect=error):
            result = self._service(client, gitcode_repos="a").run()

        self.assertEqual(result.status, "failed")
        self.assertEqual(result.failures[0].stage, SyncStage.WRITE)
        self.assertEqual(result.failures[0].fetched, 1)
        self.assertEqual(result.upserted, 0)

    def test_unsupported_upsert_dialect_fails_each_repository_at_write_stage(self):
        client = _FakeClient(issues={"a": _items(1), "b": _items(2)})

        with patch.dict("tracker.services.item_merge._UPSERT_DIALECTS", {}, clear=True):
            result = self._service(client).run()

        self.assertEqual(result.status, "failed")
        self.assertEqual([f.repo_full_name for f in result.failures], ["openeuler/a", "openeuler/b"])
        self.assertTrue(all(f.stage == SyncStage.WRITE for f in result.failures))
        logs = self.db.query(SyncLog).order_by(SyncLog.repo_full_name).all()
        self.assertEqual([log.stage for log in logs], [SyncStage.WRITE, SyncStage.WRITE])
        self.assertEqual(self.db.query(TrackedItem).count(), 0)

    def test_transient_failure_is_retried_when_configured(self):
        client = _FakeClient(
            issues={"a": _items(1)},
            failures={"a": [RemoteSourceError("busy", status_code=503, transient=True)]},
        )

        result = self._service(client, gitcode_repos="a", sync_fetch_attempts=2).run()

        self.assertEqual(result.status, "success")
        self.assertEqual(result.upserted, 1)
        self.assertEqual([c[0] for c in client.calls], ["issues", "issues", "pulls"])

    def test_no_retry_by_default(self):
        client = _FakeClient(
            failures={"a": [RemoteSourceError("busy", status_code=503, transient=True)]},
        )
        result = self._service(client, gitcode_repos="a").run()
        self.assertEqual(result.status, "failed")
        self.assertEqual(len(client.calls), 1)

    def test_permanent_failure_is_not_retried(self):
        client = _FakeClient(
            failures={"a": [RemoteSourceError("gone", status_code=404)]},
        )
        result = self._service(client, gitcode_repos="a", sync_fetch_attempts=3).run()
        self.assertEqual(result.status, "failed")
        self.assertEqual(len(client.calls), 1)

    def test_resync_preserves_overlay(self):
        client = _FakeClient(issues={"a": _items(1, title="Before")})
        self._service(client, gitcode_repos="a").run()
        apply_patch(
            self.db, "issue", "openeuler/a", "1", OverlayPatch(assignee="dave", priority=0, note="n")
        )

        client.issues["a"] = _items(1, title="After")
        self._service(client, gitcode_repos="a").run()

        self.db.expire_all()
        row = self.db.query(TrackedItem).one()
        self.assertEqual(row.title, "After 1")
        self.assertEqual((row.assignee, row.priority, row.note), ("dave", 0, "n"))

    def test_keyless_record_among_ten_yields_nine_rows(self):
        page = [{"title": "orphan"}] + [{"number": n, "title": f"t{n}"} for n in range(1, 10)]

        def handler(request):
            if request.url.path.endswith("/issues") and request.url.params["page"] == "1":
                return httpx.Response(200, json=page)
            return httpx.Response(200, json=[])

        def factory(settings):
            return GitCodeClient(
                settings.gitcode_base_url,
                settings.gitcode_token,
                transport=httpx.MockTransport(handler),
            )

        service = SyncService(self.db, self._settings(gitcode_repos="a"), factory)
        result = service.run()

        self.assertEqual(result.status, "success")
        self.assertEqual(result.upserted, 9)
        self.assertEqual(self.db.query(TrackedItem).count(), 9)

    def test_split_full_name(self):
        self.assertEqual(SyncService.split_full_name("openeuler/yuanrong"), ("openeuler", "yuanrong"))


if __name__ == "__main__":
    unittest.main()
