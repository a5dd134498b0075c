import time
import base64
import logging
import threading
from typing import Any, Dict, Optional, Tuple, List
import httpx
import jwt
from datetime import datetime, timedelta, timezone

from .config import SETTINGS
from .errors import ConfigError, RemoteError
from .metrics import (
    github_api_requests_total,
    github_api_latency_seconds,
    github_rate_limit_remaining,
    github_rate_limit_reset,
)

logger = logging.getLogger(__name__)

# Installation tokens are refreshed this many seconds before they expire
TOKEN_SAFETY_MARGIN_SECONDS = 120


def _safe_url(url: str) -> str:
    try:
        u = httpx.URL(url)
        # remove query to avoid leaking params
        return str(u.copy_with(query=None))
    except Exception:
        return url.split("?", 1)[0]


def _param_keys(d: Optional[Dict[str, Any]]) -> List[str]:
    return sorted((d or {}).keys())


def _error_message(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("message", ""))
    except Exception:
        return resp.text


class GitHubClient:
    """Repository client backed by the GitHub REST API.

    Every call is a single attempt. Transport failures and unexpected status
    codes surface as RemoteError so the caller owns retry and backoff.
    """

    # installation_id -> (token, expiry epoch), shared by all clients in the process
    _tok_cache: Dict[int, Tuple[str, float]] = {}
    _tok_lock = threading.Lock()

    def __init__(self, installation_id: int):
        self.installation_id = installation_id
        self.base_url = SETTINGS.github_api_url
        self.app_id = SETTINGS.app_id
        self.private_key_pem = SETTINGS.app_private_key.encode("utf-8")
        self.timeout = SETTINGS.http_timeout_seconds

    def _app_jwt(self) -> str:
        now = datetime.now(tz=timezone.utc)
        payload = {
            "iat": int(now.timestamp()) - 60,
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key_pem, algorithm="RS256")

    def _ensure_token(self) -> str:
        # Held across the exchange so concurrent units mint one token per installation
        with self._tok_lock:
            cached = self._tok_cache.get(self.installation_id)
            if cached and time.time() < cached[1] - TOKEN_SAFETY_MARGIN_SECONDS:
                return cached[0]
            token, expiry = self._exchange_token()
            self._tok_cache[self.installation_id] = (token, expiry)
            return token

    def _exchange_token(self) -> Tuple[str, float]:
        jwt_ = self._app_jwt()
        url = f"{self.base_url}/app/installations/{self.installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {jwt_}",
            "Accept": "application/vnd.github+json",
        }
        endpoint = "POST /app/installations/{id}/access_tokens"
        start = time.perf_counter()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "github.request: method=POST path=%s installation=%s phase=token_exchange",
                _safe_url(url),
                self.installation_id,
            )
        try:
            resp = httpx.post(url, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            github_api_requests_total.labels(endpoint=endpoint, status="exc").inc()
            raise RemoteError("token_exchange", message=str(e)) from e
        duration = time.perf_counter() - start
        github_api_latency_seconds.labels(endpoint=endpoint).observe(duration)
        github_api_requests_total.labels(endpoint=endpoint, status=str(resp.status_code)).inc()
        if resp.status_code not in (200, 201):
            raise RemoteError("token_exchange", resp.status_code, _error_message(resp))
        data = resp.json()
        token = data.get("token")
        expires_at = data.get("expires_at")  # e.g., 2024-01-01T00:00:00Z
        if expires_at:
            expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00")).timestamp()
        else:
            expiry = time.time() + 3600
        return token, expiry

    def _headers(self) -> Dict[str, str]:
        token = self._ensure_token()
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "merge-policy-bot/1.0",
        }

    def request(
        self, method: str, path: str, params: Optional[Dict[str, Any]] = None, data: Optional[Any] = None
    ) -> httpx.Response:
        url = path if path.startswith("http") else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        endpoint = f"{method} {path if path.startswith('/') else '/' + path}"
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "github.request: method=%s path=%s installation=%s params=%s",
                method.upper(),
                _safe_url(url),
                self.installation_id,
                _param_keys(params),
            )
        headers = self._headers()
        start = time.perf_counter()
        try:
            resp = httpx.request(method, url, headers=headers, params=params, json=data, timeout=self.timeout)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            duration = time.perf_counter() - start
            github_api_latency_seconds.labels(endpoint=endpoint).observe(duration)
            github_api_requests_total.labels(endpoint=endpoint, status="exc").inc()
            logger.debug(
                "github.response_error: method=%s path=%s error=%s duration_ms=%d installation=%s",
                method.upper(),
                _safe_url(url),
                e,
                int(duration * 1000),
                self.installation_id,
            )
            raise RemoteError(endpoint, message=str(e)) from e
        duration = time.perf_counter() - start
        github_api_latency_seconds.labels(endpoint=endpoint).observe(duration)
        github_api_requests_total.labels(endpoint=endpoint, status=str(resp.status_code)).inc()
        self._record_rate_limit(resp)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "github.response: method=%s path=%s status=%s duration_ms=%d installation=%s rl_remaining=%s",
                method.upper(),
                _safe_url(url),
                resp.status_code,
                int(duration * 1000),
                self.installation_id,
                resp.headers.get("X-RateLimit-Remaining"),
            )
        return resp

    def _record_rate_limit(self, resp: httpx.Response) -> None:
        installation = str(self.installation_id)
        remaining = resp.headers.get("X-RateLimit-Remaining")
        reset = resp.headers.get("X-RateLimit-Reset")
        if remaining is not None and remaining.isdigit():
            github_rate_limit_remaining.labels(installation=installation).set(int(remaining))
        if reset is not None and reset.isdigit():
            github_rate_limit_reset.labels(installation=installation).set(int(reset))

    def _expect(self, resp: httpx.Response, operation: str, *ok: int) -> httpx.Response:
        if resp.status_code not in (ok or (200,)):
            raise RemoteError(operation, resp.status_code, _error_message(resp))
        return resp

    def _paginate(self, path: str, operation: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            params = {"per_page": 100, "page": page}
            r = self._expect(self.request("GET", path, params=params), operation)
            batch = r.json()
            items.extend(batch)
            if len(batch) < 100:
                break
            page += 1
        return items

    # --- Pull request state ---
    def get_pr(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        r = self.request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        return self._expect(r, "get_pr").json()

    def list_issue_comments(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._paginate(f"/repos/{owner}/{repo}/issues/{number}/comments", "list_issue_comments")

    def list_reviews(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/reviews", "list_reviews")

    def list_pr_commits(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/commits", "list_pr_commits")

    def get_combined_status(self, owner: str, repo: str, sha: str) -> Dict[str, Any]:
        r = self.request("GET", f"/repos/{owner}/{repo}/commits/{sha}/status")
        return self._expect(r, "get_combined_status").json()

    def list_check_suites(self, owner: str, repo: str, sha: str) -> List[Dict[str, Any]]:
        r = self.request("GET", f"/repos/{owner}/{repo}/commits/{sha}/check-suites")
        return self._expect(r, "list_check_suites").json().get("check_suites", [])

    # --- Refs ---
    def compare_refs(self, owner: str, repo: str, base: str, head: str) -> Tuple[int, int]:
        """Return (behind_by, ahead_by) of head relative to base."""
        r = self.request("GET", f"/repos/{owner}/{repo}/compare/{base}...{head}")
        data = self._expect(r, "compare_refs").json()
        return int(data.get("behind_by", 0)), int(data.get("ahead_by", 0))

    def merge_ref(self, owner: str, repo: str, base: str, head: str) -> str:
        """Merge head into the branch base and return the merge commit SHA.

        An empty string means base already contained head.
        """
        r = self.request("POST", f"/repos/{owner}/{repo}/merges", data={"base": base, "head": head})
        if r.status_code == 204:
            return ""
        if r.status_code == 409:
            raise RemoteError("merge_ref", 409, "merge conflict")
        return self._expect(r, "merge_ref", 201).json().get("sha", "")

    def update_ref(self, owner: str, repo: str, branch: str, sha: str, force: bool = False) -> None:
        r = self.request(
            "PATCH", f"/repos/{owner}/{repo}/git/refs/heads/{branch}", data={"sha": sha, "force": force}
        )
        self._expect(r, "update_ref")

    def delete_ref(self, owner: str, repo: str, branch: str) -> None:
        r = self.request("DELETE", f"/repos/{owner}/{repo}/git/refs/heads/{branch}")
        self._expect(r, "delete_ref", 204)

    def merge_pr(
        self,
        owner: str,
        repo: str,
        number: int,
        method: str,
        commit_title: Optional[str],
        commit_message: Optional[str],
        sha: Optional[str] = None,
    ) -> Tuple[bool, str]:
        data: Dict[str, Any] = {"merge_method": method}
        if commit_title is not None:
            data["commit_title"] = commit_title
        if commit_message is not None:
            data["commit_message"] = commit_message
        if sha:
            data["sha"] = sha
        r = self.request("PUT", f"/repos/{owner}/{repo}/pulls/{number}/merge", data=data)
        if r.status_code in (200, 201):
            return True, f"Merged PR #{number} via {method}"
        return False, f"Merge failed for PR #{number}: {r.status_code} {_error_message(r)}"

    def load_repo_file(self, owner: str, repo: str, path: str) -> Optional[str]:
        """Return the decoded file contents, or None when the file does not exist."""
        r = self.request("GET", f"/repos/{owner}/{repo}/contents/{path}")
        if r.status_code == 404:
            return None
        data = self._expect(r, "load_repo_file").json()
        if not isinstance(data, dict) or data.get("encoding") != "base64":
            raise ConfigError(f"{path} is not a base64 encoded file")
        try:
            return base64.b64decode(data.get("content", "")).decode("utf-8")
        except ValueError as e:
            raise ConfigError(f"{path} could not be decoded: {e}") from e
