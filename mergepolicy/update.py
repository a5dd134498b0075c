import logging
from typing import Tuple

from .errors import RemoteError
from .github import GitHubClient
from .metrics import branch_updates_total
from .pull import PullContext

logger = logging.getLogger(__name__)


def update_pr(gh: GitHubClient, pull_ctx: PullContext, base_ref: str) -> Tuple[bool, str]:
    """Merge base_ref into the pull request's head branch when it is behind.

    Closed, forked and up to date pull requests are left alone. Failures to
    read pull request or comparison state raise RemoteError; a failed merge
    (usually a conflict) is reported as (False, reason).
    """
    owner, repo, number = pull_ctx.owner, pull_ctx.repo, pull_ctx.number
    pr = gh.get_pr(owner, repo, number)

    if pr.get("state") == "closed":
        return _skip(pull_ctx, "closed", "pull request already closed")

    head = pr.get("head") or {}
    if (head.get("repo") or {}).get("fork"):
        return _skip(pull_ctx, "fork", "pull request is from a fork, cannot keep it up to date with base ref")

    head_ref, head_sha = head.get("ref"), head.get("sha")
    if not head_ref or not head_sha:
        return _skip(pull_ctx, "no_head", "pull request has no head ref")

    behind_by, _ = gh.compare_refs(owner, repo, base_ref, head_sha)
    if behind_by == 0:
        return _skip(pull_ctx, "up_to_date", "already up to date")

    logger.debug("%s is %d commits behind %s, attempting an update", pull_ctx.locator(), behind_by, base_ref)
    try:
        sha = gh.merge_ref(owner, repo, head_ref, base_ref)
    except RemoteError as e:
        branch_updates_total.labels(result="fail").inc()
        logger.error("Update merge of %s into %s failed: %s", base_ref, pull_ctx.locator(), e)
        return False, f"update failed: {e}"

    if not sha:
        # 204: the head already contains the base
        return _skip(pull_ctx, "up_to_date", "already up to date")

    branch_updates_total.labels(result="success").inc()
    logger.info("Successfully updated %s from base ref %s as merge %s", pull_ctx.locator(), base_ref, sha)
    return True, f"updated from {base_ref} as merge {sha}"


def _skip(pull_ctx: PullContext, result: str, reason: str) -> Tuple[bool, str]:
    branch_updates_total.labels(result=result).inc()
    logger.debug("Not updating %s: %s", pull_ctx.locator(), reason)
    return False, reason
