import logging
from typing import Any, Dict, List, Optional, Protocol

from .github import GitHubClient

logger = logging.getLogger(__name__)


class PullContext(Protocol):
    """Read-only view of one pull request, as needed by signal evaluation.

    Accessors may perform remote reads and raise on failure; callers
    propagate those errors rather than treating them as "no match".
    """

    owner: str
    repo: str
    number: int

    def locator(self) -> str: ...

    def is_draft(self) -> bool: ...

    def title(self) -> str: ...

    def body(self) -> str: ...

    def labels(self) -> List[str]: ...

    def comments(self) -> List[str]: ...

    def review_states(self) -> List[str]: ...

    def base_branch(self) -> str: ...

    def head_branch(self) -> str: ...

    def commits(self) -> List[str]: ...

    def changed_file_count(self) -> int: ...


class GitHubPullContext:
    """PullContext backed by the GitHub REST API.

    The pull request payload is fetched once per instance; comments, reviews
    and commits are fetched on first use. Build a new instance per evaluation.
    """

    def __init__(self, gh: GitHubClient, owner: str, repo: str, number: int, pr: Optional[Dict[str, Any]] = None):
        self.gh = gh
        self.owner = owner
        self.repo = repo
        self.number = number
        self._pr = pr
        self._comments: Optional[List[str]] = None
        self._reviews: Optional[List[str]] = None
        self._commits: Optional[List[str]] = None

    def locator(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"

    def pull_request(self) -> Dict[str, Any]:
        if self._pr is None:
            logger.debug("Fetching pull request %s", self.locator())
            self._pr = self.gh.get_pr(self.owner, self.repo, self.number)
        return self._pr

    def is_draft(self) -> bool:
        return bool(self.pull_request().get("draft"))

    def title(self) -> str:
        return self.pull_request().get("title") or ""

    def body(self) -> str:
        return self.pull_request().get("body") or ""

    def labels(self) -> List[str]:
        return [lbl["name"] for lbl in self.pull_request().get("labels", [])]

    def comments(self) -> List[str]:
        if self._comments is None:
            raw = self.gh.list_issue_comments(self.owner, self.repo, self.number)
            self._comments = [c.get("body") or "" for c in raw]
        return self._comments

    def review_states(self) -> List[str]:
        if self._reviews is None:
            # Only the most recent review of each reviewer counts
            latest: Dict[str, str] = {}
            for review in self.gh.list_reviews(self.owner, self.repo, self.number):
                state = review.get("state") or ""
                if state == "COMMENTED":
                    continue
                author = (review.get("user") or {}).get("login") or ""
                latest[author] = state
            self._reviews = list(latest.values())
        return self._reviews

    def base_branch(self) -> str:
        return self.pull_request().get("base", {}).get("ref") or ""

    def head_branch(self) -> str:
        return self.pull_request().get("head", {}).get("ref") or ""

    def head_sha(self) -> str:
        return self.pull_request().get("head", {}).get("sha") or ""

    def is_fork(self) -> bool:
        return bool(((self.pull_request().get("head") or {}).get("repo") or {}).get("fork"))

    def commits(self) -> List[str]:
        if self._commits is None:
            raw = self.gh.list_pr_commits(self.owner, self.repo, self.number)
            self._commits = [(c.get("commit") or {}).get("message") or "" for c in raw]
        return self._commits

    def changed_file_count(self) -> int:
        return int(self.pull_request().get("changed_files", 0))
