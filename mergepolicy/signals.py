import re
import logging
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import EvaluationError
from .metrics import policy_evaluation_errors_total
from .pull import PullContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Signals(BaseModel):
    """A set of independently optional conditions; any one matching satisfies the set."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    labels: List[str] = Field(default_factory=list)
    comments: List[str] = Field(default_factory=list)
    comment_substrings: List[str] = Field(default_factory=list)
    pr_body_substrings: List[str] = Field(default_factory=list)
    branches: List[str] = Field(default_factory=list)
    branch_patterns: List[str] = Field(default_factory=list)
    review_states: List[str] = Field(default_factory=list)
    max_commits: Optional[int] = None
    max_changed_files: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_keys(cls, data: Any) -> Any:
        # YAML decodes "labels:" with no items as None
        if data is None:
            return {}
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def enabled(self) -> bool:
        return bool(
            self.labels
            or self.comments
            or self.comment_substrings
            or self.pr_body_substrings
            or self.branches
            or self.branch_patterns
            or self.review_states
            or (self.max_commits or 0) > 0
            or (self.max_changed_files or 0) > 0
        )

    def matches(self, pull_ctx: PullContext, tag: str) -> Tuple[bool, str]:
        """Return (matched, reason) for the first configured signal that matches.

        Raises EvaluationError when a context accessor fails.
        """
        if not self.enabled():
            return False, f"no {tag} signals configured"

        if self.labels:
            wanted = {lbl.lower() for lbl in self.labels}
            for label in _read(pull_ctx, "labels", pull_ctx.labels):
                if label.lower() in wanted:
                    return True, f"label {label} matched"

        if self.comments or self.comment_substrings:
            comments = _read(pull_ctx, "comments", pull_ctx.comments)
            exact = {c.strip() for c in self.comments}
            for comment in comments:
                if comment.strip() in exact:
                    return True, f"comment {comment.strip()!r} matched"
            for sub in self.comment_substrings:
                if any(sub in comment for comment in comments):
                    return True, f"comment substring {sub!r} matched"

        if self.pr_body_substrings:
            body = _read(pull_ctx, "pr_body_substrings", pull_ctx.body)
            for sub in self.pr_body_substrings:
                if sub in body:
                    return True, f"body substring {sub!r} matched"

        if self.branches or self.branch_patterns:
            target = _read(pull_ctx, "branches", pull_ctx.base_branch)
            if target in self.branches:
                return True, f"target branch {target} matched"
            for pattern in self.branch_patterns:
                try:
                    if re.fullmatch(pattern, target):
                        return True, f"target branch {target} matched pattern {pattern}"
                except re.error as e:
                    raise _wrap(pull_ctx, "branch_patterns", e) from e

        if self.review_states:
            wanted = {s.upper() for s in self.review_states}
            for state in _read(pull_ctx, "review_states", pull_ctx.review_states):
                if state.upper() in wanted:
                    return True, f"review state {state} matched"

        if self.max_commits:
            count = len(_read(pull_ctx, "max_commits", pull_ctx.commits))
            if count <= self.max_commits:
                return True, f"commit count {count} within max_commits {self.max_commits}"

        if self.max_changed_files:
            count = _read(pull_ctx, "max_changed_files", pull_ctx.changed_file_count)
            if count <= self.max_changed_files:
                return True, f"changed file count {count} within max_changed_files {self.max_changed_files}"

        return False, f"no {tag} signal matched"


def _wrap(pull_ctx: PullContext, signal: str, e: Exception) -> EvaluationError:
    policy_evaluation_errors_total.labels(signal=signal).inc()
    return EvaluationError(signal, pull_ctx.locator(), e)


def _read(pull_ctx: PullContext, signal: str, accessor: Callable[[], T]) -> T:
    try:
        return accessor()
    except Exception as e:
        logger.debug("Signal %s could not be evaluated for %s: %s", signal, pull_ctx.locator(), e)
        raise _wrap(pull_ctx, signal, e) from e
