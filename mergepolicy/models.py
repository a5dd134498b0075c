import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .signals import Signals

logger = logging.getLogger(__name__)

MergeMethod = Literal["merge", "squash", "rebase", "ff-only"]
TitleStrategy = Literal["pull_request_title", "first_commit_title", "github_default"]
BodyStrategy = Literal["pull_request_body", "summarize_commits", "empty_body"]


def _resolve_legacy(data: Any, section: str) -> Any:
    """Fold the legacy whitelist/blacklist keys into trigger/ignore.

    When both the legacy and the modern key are configured the modern key wins.
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        return data
    data = dict(data)
    for legacy, modern in (("whitelist", "trigger"), ("blacklist", "ignore")):
        legacy_signals = Signals.model_validate(data.get(legacy))
        if not legacy_signals.enabled():
            continue
        if Signals.model_validate(data.get(modern)).enabled():
            logger.warning(
                "%s: both %s and legacy %s are configured; using %s", section, modern, legacy, modern
            )
            continue
        data[modern] = data[legacy]
    return data


class PolicySection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    trigger: Signals = Field(default_factory=Signals)
    ignore: Signals = Field(default_factory=Signals)

    # Legacy aliases for trigger/ignore, folded in at load time
    whitelist: Signals = Field(default_factory=Signals)
    blacklist: Signals = Field(default_factory=Signals)


class UpdateConfig(PolicySection):
    ignore_drafts: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy(cls, data: Any) -> Any:
        return _resolve_legacy(data, "update")


class SquashOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    title: TitleStrategy = "github_default"
    body: BodyStrategy = "empty_body"
    message_delimiter: Optional[str] = None


class MergeOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    squash: Optional[SquashOptions] = None


class ConditionalMergeMethod(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    method: MergeMethod
    trigger: Signals = Field(default_factory=Signals)


class MergeConfig(PolicySection):
    delete_after_merge: bool = False
    allow_merge_with_no_checks: bool = False

    method: MergeMethod = "merge"
    # Evaluated in declaration order; the first matching trigger wins
    merge_method: List[ConditionalMergeMethod] = Field(default_factory=list)
    options: MergeOptions = Field(default_factory=MergeOptions)

    branch_method: Dict[str, MergeMethod] = Field(default_factory=dict)

    # Status contexts required in addition to branch protection
    required_statuses: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy(cls, data: Any) -> Any:
        data = _resolve_legacy(data, "merge")
        if isinstance(data, dict):
            for key in ("merge_method", "branch_method", "required_statuses", "options"):
                if key in data and data[key] is None:
                    data.pop(key)
        return data


class PolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    version: int = 1
    merge: MergeConfig = Field(default_factory=MergeConfig)
    update: UpdateConfig = Field(default_factory=UpdateConfig)

    @model_validator(mode="before")
    @classmethod
    def _empty_sections(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if not (k in ("merge", "update") and v is None)}
        return data
