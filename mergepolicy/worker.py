import logging
from typing import Optional, Tuple

import yaml
from pydantic import ValidationError

from .config import SETTINGS
from .errors import ConfigError
from .evaluation import are_checks_green, should_merge_pr, should_update_pr
from .github import GitHubClient
from .merge import merge_pr
from .metrics import config_load_failures_total, worker_processing_seconds
from .models import PolicyConfig
from .pull import GitHubPullContext
from .update import update_pr

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (1,)


def parse_config(text: str) -> PolicyConfig:
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML: {e}") from e
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("policy document must be a mapping")
    try:
        cfg = PolicyConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid policy document: {e}") from e
    if cfg.version not in SUPPORTED_VERSIONS:
        raise ConfigError(f"unsupported config version {cfg.version}")
    return cfg


def load_config(gh: GitHubClient, owner: str, repo: str) -> Optional[PolicyConfig]:
    for path in SETTINGS.config_paths:
        try:
            content = gh.load_repo_file(owner, repo, path)
            if content is None:
                continue
            logger.debug("Loaded policy for %s/%s from %s", owner, repo, path)
            return parse_config(content)
        except ConfigError:
            config_load_failures_total.inc()
            raise
    return None


def process_item(gh: GitHubClient, owner: str, repo: str, number: int) -> Tuple[bool, str]:
    logger.debug("Loading config for %s/%s", owner, repo)
    try:
        cfg = load_config(gh, owner, repo)
    except ConfigError as e:
        logger.error("Invalid policy document for %s/%s: %s", owner, repo, e)
        return False, "invalid_config"
    if cfg is None:
        return False, "no_config"

    pull_ctx = GitHubPullContext(gh, owner, repo, number)
    pr = pull_ctx.pull_request()
    if pr.get("state") == "closed":
        return False, "closed"

    with worker_processing_seconds.labels(phase="evaluate", owner=owner, repo=repo).time():
        merge_ok, merge_reason = should_merge_pr(pull_ctx, cfg.merge)
        if merge_ok and pull_ctx.is_draft():
            merge_ok, merge_reason = False, "draft"
        if merge_ok:
            merge_ok, merge_reason = are_checks_green(gh, owner, repo, pull_ctx.head_sha(), cfg.merge)
    if merge_ok:
        with worker_processing_seconds.labels(phase="merge", owner=owner, repo=repo).time():
            return merge_pr(gh, pull_ctx, cfg.merge)
    logger.debug("PR #%s not merged: %s", number, merge_reason)

    with worker_processing_seconds.labels(phase="evaluate", owner=owner, repo=repo).time():
        update_ok, update_reason = should_update_pr(pull_ctx, cfg.update)
    if not update_ok:
        return False, f"not_merged:{merge_reason}; not_updated:{update_reason}"
    with worker_processing_seconds.labels(phase="update_branch", owner=owner, repo=repo).time():
        return update_pr(gh, pull_ctx, pull_ctx.base_branch())
