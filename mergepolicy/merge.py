import logging
from typing import Optional, Tuple

from .errors import RemoteError
from .github import GitHubClient
from .metrics import merge_attempts_total, method_resolutions_total
from .models import MergeConfig, MergeMethod, SquashOptions
from .pull import GitHubPullContext, PullContext

logger = logging.getLogger(__name__)


def resolve_merge_method(
    merge_config: MergeConfig, target_branch: str, pull_ctx: Optional[PullContext] = None
) -> Tuple[MergeMethod, str]:
    """Return the merge method for a target branch and the tier that supplied it.

    Precedence: exact branch_method entry, then the first conditional
    merge_method whose trigger matches (only when a context is given), then
    the default method.
    """
    method: MergeMethod
    if target_branch in merge_config.branch_method:
        method, source = merge_config.branch_method[target_branch], "branch"
    else:
        method, source = merge_config.method, "default"
        if pull_ctx is not None:
            for conditional in merge_config.merge_method:
                if not conditional.trigger.enabled():
                    continue
                matched, reason = conditional.trigger.matches(pull_ctx, "merge_method")
                if matched:
                    logger.debug("%s uses merge method %s because %s", pull_ctx.locator(), conditional.method, reason)
                    method, source = conditional.method, "conditional"
                    break
    method_resolutions_total.labels(source=source, method=method).inc()
    return method, source


def _between_delimiters(body: str, delimiter: str) -> str:
    parts = body.split(delimiter)
    if len(parts) < 3:
        return body
    return parts[1].strip()


def commit_message(pull_ctx: PullContext, options: SquashOptions) -> Tuple[Optional[str], Optional[str]]:
    """Derive the squash commit (title, body); None leaves the choice to GitHub."""
    title: Optional[str] = None
    if options.title == "pull_request_title":
        title = f"{pull_ctx.title()} (#{pull_ctx.number})"
    elif options.title == "first_commit_title":
        commits = pull_ctx.commits()
        if commits:
            title = commits[0].splitlines()[0] if commits[0] else ""

    body: Optional[str] = None
    if options.body == "pull_request_body":
        body = pull_ctx.body()
        if options.message_delimiter:
            body = _between_delimiters(body, options.message_delimiter)
    elif options.body == "summarize_commits":
        body = "\n\n".join(f"* {msg}" for msg in pull_ctx.commits())
    elif options.body == "empty_body":
        body = ""
    return title, body


def merge_pr(gh: GitHubClient, pull_ctx: GitHubPullContext, merge_config: MergeConfig) -> Tuple[bool, str]:
    owner, repo, number = pull_ctx.owner, pull_ctx.repo, pull_ctx.number
    method, source = resolve_merge_method(merge_config, pull_ctx.base_branch(), pull_ctx)
    logger.debug("Merging %s with method=%s (from %s)", pull_ctx.locator(), method, source)

    if method == "ff-only":
        try:
            gh.update_ref(owner, repo, pull_ctx.base_branch(), pull_ctx.head_sha(), force=False)
            ok, msg = True, f"Fast-forwarded {pull_ctx.base_branch()} to {pull_ctx.head_sha()} for PR #{number}"
        except RemoteError as e:
            ok, msg = False, f"Fast-forward failed for PR #{number}: {e}"
    else:
        title: Optional[str] = None
        body: Optional[str] = None
        if method == "squash":
            title, body = commit_message(pull_ctx, merge_config.options.squash or SquashOptions())
        ok, msg = gh.merge_pr(owner, repo, number, method, title, body, sha=pull_ctx.head_sha())

    merge_attempts_total.labels(method=method, result="success" if ok else "error").inc()
    if not ok:
        logger.error("Merge of %s failed: %s", pull_ctx.locator(), msg)
        return False, msg
    logger.info("Merged %s: %s", pull_ctx.locator(), msg)

    if merge_config.delete_after_merge and not pull_ctx.is_fork():
        try:
            gh.delete_ref(owner, repo, pull_ctx.head_branch())
        except RemoteError:
            logger.error("Failed to delete head branch of %s", pull_ctx.locator(), exc_info=True)
    return True, msg
