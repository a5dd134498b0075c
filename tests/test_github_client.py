import base64
import time
import httpx
import pytest

from mergepolicy.errors import ConfigError, RemoteError
from mergepolicy.github import GitHubClient
from mergepolicy.metrics import REGISTRY


class DummyResponse:
    def __init__(self, status_code: int, headers: dict | None = None, body=None):
        self.status_code = status_code
        self.headers = headers or {}
        self._json = body if body is not None else {}

    def json(self):
        return self._json

    @property
    def text(self):
        import json as _json

        return _json.dumps(self._json)


@pytest.fixture(autouse=True)
def _bypass_headers(monkeypatch):
    # Avoid real JWT/token fetch
    monkeypatch.setattr(GitHubClient, "_headers", lambda self: {})


def route(monkeypatch, responses):
    """Serve canned responses keyed by (METHOD, path suffix) and record calls."""
    calls = []

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        calls.append((method, url, json))
        for (m, suffix), resp in responses.items():
            if m == method and url.endswith(suffix):
                return resp
        raise AssertionError(f"unexpected request {method} {url}")

    monkeypatch.setattr(httpx, "request", fake_request)
    return calls


def test_rate_limit_headers_are_exported(monkeypatch):
    reset = int(time.time()) + 60
    route(
        monkeypatch,
        {
            ("GET", "/pulls/1"): DummyResponse(
                200,
                headers={"X-RateLimit-Remaining": "17", "X-RateLimit-Reset": str(reset)},
                body={"number": 1},
            )
        },
    )
    pr = GitHubClient(installation_id=42).get_pr("octo", "repo", 1)
    assert pr == {"number": 1}
    assert REGISTRY.get_sample_value("github_rate_limit_remaining", {"installation": "42"}) == 17
    assert REGISTRY.get_sample_value("github_rate_limit_reset", {"installation": "42"}) == reset


def test_server_error_is_not_retried(monkeypatch):
    calls = route(monkeypatch, {("GET", "/pulls/2"): DummyResponse(502, body={"message": "Bad Gateway"})})
    with pytest.raises(RemoteError) as exc:
        GitHubClient(installation_id=7).get_pr("octo", "repo", 2)
    assert exc.value.status == 502
    assert "Bad Gateway" in str(exc.value)
    assert len(calls) == 1


def test_transport_error_becomes_remote_error(monkeypatch):
    calls = []

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        calls.append(url)
        raise httpx.ConnectTimeout("timed out")

    monkeypatch.setattr(httpx, "request", fake_request)
    with pytest.raises(RemoteError):
        GitHubClient(installation_id=7).compare_refs("octo", "repo", "main", "abc")
    assert len(calls) == 1


def test_compare_refs_returns_behind_and_ahead(monkeypatch):
    route(
        monkeypatch,
        {("GET", "/compare/main...abc"): DummyResponse(200, body={"behind_by": 4, "ahead_by": 2})},
    )
    assert GitHubClient(installation_id=1).compare_refs("octo", "repo", "main", "abc") == (4, 2)


def test_merge_ref_statuses(monkeypatch):
    calls = route(monkeypatch, {("POST", "/merges"): DummyResponse(201, body={"sha": "f00d"})})
    gh = GitHubClient(installation_id=1)
    assert gh.merge_ref("octo", "repo", "feature", "main") == "f00d"
    assert calls[0][2] == {"base": "feature", "head": "main"}

    route(monkeypatch, {("POST", "/merges"): DummyResponse(204)})
    assert gh.merge_ref("octo", "repo", "feature", "main") == ""

    route(monkeypatch, {("POST", "/merges"): DummyResponse(409, body={"message": "Merge conflict"})})
    with pytest.raises(RemoteError) as exc:
        gh.merge_ref("octo", "repo", "feature", "main")
    assert exc.value.status == 409


def test_merge_pr_omits_platform_default_message(monkeypatch):
    calls = route(monkeypatch, {("PUT", "/pulls/9/merge"): DummyResponse(200, body={"merged": True})})
    ok, msg = GitHubClient(installation_id=1).merge_pr("octo", "repo", 9, "rebase", None, None, sha="abc")
    assert ok is True
    assert calls[0][2] == {"merge_method": "rebase", "sha": "abc"}


def test_paginated_comments(monkeypatch):
    pages = iter(
        [
            DummyResponse(200, body=[{"body": str(i)} for i in range(100)]),
            DummyResponse(200, body=[{"body": "last"}]),
        ]
    )

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        return next(pages)

    monkeypatch.setattr(httpx, "request", fake_request)
    comments = GitHubClient(installation_id=1).list_issue_comments("octo", "repo", 3)
    assert len(comments) == 101
    assert comments[-1] == {"body": "last"}


def test_load_repo_file_missing_is_none(monkeypatch):
    route(monkeypatch, {("GET", "/contents/.github/bulldozer.yml"): DummyResponse(404, body={"message": "Not Found"})})
    assert GitHubClient(installation_id=1).load_repo_file("octo", "repo", ".github/bulldozer.yml") is None


def test_load_repo_file_decodes_base64(monkeypatch):
    body = {"encoding": "base64", "content": base64.b64encode(b"merge:\n  method: squash\n").decode()}
    route(monkeypatch, {("GET", "/contents/.github/bulldozer.yml"): DummyResponse(200, body=body)})
    text = GitHubClient(installation_id=1).load_repo_file("octo", "repo", ".github/bulldozer.yml")
    assert text == "merge:\n  method: squash\n"


@pytest.mark.parametrize("status", [403, 429, 500, 502])
def test_load_repo_file_outage_raises(monkeypatch, status):
    route(monkeypatch, {("GET", "/contents/.github/bulldozer.yml"): DummyResponse(status, body={"message": "busy"})})
    with pytest.raises(RemoteError) as exc:
        GitHubClient(installation_id=1).load_repo_file("octo", "repo", ".github/bulldozer.yml")
    assert exc.value.status == status


def test_load_repo_file_undecodable_content_is_config_error(monkeypatch):
    body = {"encoding": "base64", "content": base64.b64encode(b"\xff\xfe\xfa").decode()}
    route(monkeypatch, {("GET", "/contents/.github/bulldozer.yml"): DummyResponse(200, body=body)})
    with pytest.raises(ConfigError):
        GitHubClient(installation_id=1).load_repo_file("octo", "repo", ".github/bulldozer.yml")
