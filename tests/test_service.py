from __future__ import annotations

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from zebraci.dispatch import DispatchResult, RemoteBuildService
from zebraci.errors import DispatchError
from zebraci.model import PipelineConfig
from zebraci.service.dispatcher import Dispatcher
from zebraci.service.main import create_app, signature_valid
from zebraci.service.settings import ServiceSettings


class FakeBuildService(RemoteBuildService):
    def __init__(self, fail=False):
        self.fail = fail
        self.submitted = []

    def submit(self, repository, substitutions):
        if self.fail:
            raise DispatchError(kind="dispatch", message="quota exceeded")
        self.submitted.append(dict(substitutions))
        return DispatchResult(project="zealous-zebra", substitutions=dict(substitutions), build_id="b-1")


def fake_checkout(clone_url, ref, dest):
    dest.mkdir(parents=True)
    (dest / "Cargo.toml").write_text("[package]\n")
    return dest


def _client(tmp_path, service, secret=None):
    settings = ServiceSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'runs.db'}",
        webhook_secret=secret,
        work_dir=tmp_path / "checkouts",
    )
    dispatcher = Dispatcher(PipelineConfig(), service, settings.work_dir, checkout=fake_checkout)
    return TestClient(create_app(settings, dispatcher))


def _push(ref, repository="org/zebra", sha="abc123"):
    return {"ref": ref, "after": sha, "repository": {"full_name": repository}}


def _post(client, payload, event="push", headers=None):
    return client.post(
        "/webhooks/github",
        content=json.dumps(payload),
        headers={"X-GitHub-Event": event, "Content-Type": "application/json", **(headers or {})},
    )


@pytest.fixture
def service():
    return FakeBuildService()


@pytest.fixture
def client(tmp_path, service):
    with _client(tmp_path, service) as c:
        yield c


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_ping(client):
    assert _post(client, {"zen": "hi"}, event="ping").json() == {"ok": True}


def test_other_events_ignored(client, service):
    resp = _post(client, {}, event="issues")
    assert resp.status_code == 202
    assert service.submitted == []


def test_deleted_branch_ignored(client, service):
    payload = {**_push("refs/heads/gone"), "deleted": True}
    assert _post(client, payload).status_code == 202
    assert service.submitted == []


def test_malformed_push_rejected(client):
    assert _post(client, {"ref": "refs/heads/main"}).status_code == 422


def test_push_dispatches_and_records_run(client, service, tmp_path):
    resp = _post(client, _push("refs/heads/main"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["identifier"] == "org/zebra/main"
    assert body["collides_with"] == []

    assert service.submitted == [{"BRANCH_NAME": "org/zebra/main"}]
    run = client.get(f"/runs/{body['run_id']}").json()
    assert run["status"] == "ok"
    assert run["build_id"] == "b-1"
    assert run["sha"] == "abc123"
    assert list((tmp_path / "checkouts").iterdir()) == []


def test_colliding_branches_reported(client):
    _post(client, _push("refs/heads/feature/x"))
    body = _post(client, _push("refs/heads/x")).json()
    assert body["identifier"] == "org/zebra/x"
    assert body["collides_with"] == ["refs/heads/feature/x"]


def test_list_runs_by_identifier(client):
    _post(client, _push("refs/heads/main"))
    _post(client, _push("refs/heads/dev"))
    runs = client.get("/runs", params={"identifier": "org/zebra/dev"}).json()
    assert [r["ref"] for r in runs] == ["refs/heads/dev"]


def test_unknown_run(client):
    assert client.get("/runs/not-a-uuid").status_code == 404
    assert client.get("/runs/00000000-0000-0000-0000-000000000000").status_code == 404


def test_failed_dispatch_recorded(tmp_path):
    with _client(tmp_path, FakeBuildService(fail=True)) as c:
        body = _post(c, _push("refs/heads/main")).json()
        run = c.get(f"/runs/{body['run_id']}").json()
    assert run["status"] == "failed"
    assert "quota exceeded" in run["error"]


def test_signature_required_when_secret_set(tmp_path):
    secret = "s3cret"
    payload = json.dumps(_push("refs/heads/main")).encode()
    good = "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()

    with _client(tmp_path, FakeBuildService(), secret=secret) as c:
        headers = {"X-GitHub-Event": "push", "Content-Type": "application/json"}
        bad = c.post("/webhooks/github", content=payload, headers={**headers, "X-Hub-Signature-256": "sha256=00"})
        ok = c.post("/webhooks/github", content=payload, headers={**headers, "X-Hub-Signature-256": good})
    assert bad.status_code == 401
    assert ok.status_code == 200


def test_signature_valid_requires_header():
    assert not signature_valid("s", b"{}", None)


def test_checkout_error_marks_run_failed(tmp_path):
    def denied_checkout(clone_url, ref, dest):
        raise PermissionError(f"cannot create {dest}")

    settings = ServiceSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'runs.db'}",
        work_dir=tmp_path / "checkouts",
    )
    service = FakeBuildService()
    dispatcher = Dispatcher(PipelineConfig(), service, settings.work_dir, checkout=denied_checkout)
    with TestClient(create_app(settings, dispatcher)) as c:
        body = _post(c, _push("refs/heads/main")).json()
        run = c.get(f"/runs/{body['run_id']}").json()

    assert run["status"] == "failed"
    assert run["error"].startswith("PermissionError: cannot create")
    assert service.submitted == []
