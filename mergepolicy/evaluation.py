import logging
from typing import Optional, Tuple

from .github import GitHubClient
from .metrics import policy_decisions_total
from .models import MergeConfig, UpdateConfig
from .pull import PullContext
from .signals import Signals

logger = logging.getLogger(__name__)

# Check suite conclusions that do not block a merge
GREEN_CONCLUSIONS = ("success", "neutral", "skipped")


def decide(
    pull_ctx: PullContext,
    trigger: Signals,
    ignore: Signals,
    *,
    ignore_drafts: Optional[bool] = None,
    policy: str = "update",
) -> Tuple[bool, str]:
    """Decide whether a trigger/ignore gated action applies to a pull request.

    Ignore beats trigger; an enabled trigger is authoritative; with neither
    enabled and no mode flag the action is not applicable. Signal evaluation
    errors propagate to the caller.
    """
    ok, reason = _decide(pull_ctx, trigger, ignore, ignore_drafts)
    policy_decisions_total.labels(policy=policy, outcome="eligible" if ok else "ineligible").inc()
    if ok:
        logger.debug("%s is eligible for %s because %s", pull_ctx.locator(), policy, reason)
    else:
        logger.debug("%s is deemed not eligible for %s because %s", pull_ctx.locator(), policy, reason)
    return ok, reason


def _decide(
    pull_ctx: PullContext, trigger: Signals, ignore: Signals, ignore_drafts: Optional[bool]
) -> Tuple[bool, str]:
    if not ignore.enabled() and not trigger.enabled() and ignore_drafts is None:
        return False, "no policy configured"

    if ignore.enabled():
        ignored, reason = ignore.matches(pull_ctx, "ignore")
        if ignored:
            return False, reason

    if trigger.enabled():
        return trigger.matches(pull_ctx, "trigger")

    if ignore_drafts and pull_ctx.is_draft():
        return False, "draft"

    return True, "no blocking policy"


def should_update_pr(pull_ctx: PullContext, update_config: UpdateConfig) -> Tuple[bool, str]:
    return decide(
        pull_ctx,
        update_config.trigger,
        update_config.ignore,
        ignore_drafts=update_config.ignore_drafts,
        policy="update",
    )


def should_merge_pr(pull_ctx: PullContext, merge_config: MergeConfig) -> Tuple[bool, str]:
    return decide(pull_ctx, merge_config.trigger, merge_config.ignore, policy="merge")


def are_checks_green(gh: GitHubClient, owner: str, repo: str, sha: str, cfg: MergeConfig) -> Tuple[bool, str]:
    combined = gh.get_combined_status(owner, repo, sha)
    suites = gh.list_check_suites(owner, repo, sha)
    statuses = combined.get("statuses") or []

    by_context = {s.get("context"): s.get("state") for s in statuses}
    for context in cfg.required_statuses:
        state = by_context.get(context)
        if state != "success":
            return False, f"required status {context} is {state or 'missing'}"

    # If there are no statuses and no check suites, allow merge when configured
    if not statuses and not suites:
        logger.debug(
            "No statuses and no check suites for %s/%s@%s; allow_merge_with_no_checks=%s",
            owner,
            repo,
            sha,
            cfg.allow_merge_with_no_checks,
        )
        if cfg.allow_merge_with_no_checks:
            return True, "no checks"
        return False, "no checks reported"

    if statuses:
        state = combined.get("state")
        if state != "success":
            return False, f"combined status is {state}"
    for s in suites:
        concl = s.get("conclusion")
        if concl not in GREEN_CONCLUSIONS:
            return False, f"check suite conclusion is {concl}"
    return True, "checks green"
