# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping

from .env import get_bool_env, get_csv_env, get_env, get_float_env, get_int_env

LOGGER = logging.getLogger(__name__)

CAUTION_THRESHOLDS: dict[str, float] = {
    "very-cautious": 0.99,
    "cautious": 0.985,
    "somewhat-cautious": 0.98,
    "less-cautious": 0.975,
}
DEFAULT_CAUTION_LEVEL = "very-cautious"
DEFAULT_SKIP_TAGS = ("mw-manual-revert", "mw-rollback", "mw-undo", "mw-reverted")
REVERT_TAGS = ("mw-manual-revert", "mw-rollback", "mw-undo")
PAGE_MOVE_TAGS = frozenset({"mw-new-redirect", "mw-removed-redirect", "mw-changed-redirect-target"})
REVERT_WINDOW_HOURS = 24

LANGUAGE_AGNOSTIC_MODEL = "revertrisk-language-agnostic"
MULTILINGUAL_MODEL = "revertrisk-multilingual"
MULTILINGUAL_PREFIX = "AutoModeratorMultilingualConfig"


class PolicyError(ValueError):
    """Invalid policy configuration."""


def normalize_tag(tag: str) -> str:
    clean = str(tag).strip().casefold()
    return clean[3:] if clean.startswith("mw-") else clean


@dataclass(frozen=True)
class Policy:
    enabled: bool = False
    caution_level: str = DEFAULT_CAUTION_LEVEL
    explicit_threshold: float | None = None
    skip_tags: tuple[str, ...] = DEFAULT_SKIP_TAGS
    skip_user_rights: tuple[str, ...] = ("bot", "autopatrol")
    skip_user_groups: tuple[str, ...] = ("sysop",)
    max_reverts_per_user_per_page: int | None = None
    revert_window_hours: int = REVERT_WINDOW_HOURS
    use_minor_edit_flag: bool = False
    use_bot_flag: bool = False
    talk_page_message_enabled: bool = False
    false_positive_page: str = ""
    help_page_link: str = ""
    disable_anon_talk: bool = False
    multilingual_wiki: bool = False
    multilingual_enabled: bool = False
    multilingual_threshold: float | None = None
    _skip_tag_keys: frozenset[str] = field(init=False, repr=False, compare=False, default=frozenset())

    def __post_init__(self) -> None:
        if self.caution_level not in CAUTION_THRESHOLDS:
            raise PolicyError(
                f"unknown caution level {self.caution_level!r}; expected one of {sorted(CAUTION_THRESHOLDS)}"
            )
        for name in ("explicit_threshold", "multilingual_threshold"):
            value = getattr(self, name)
            if value is not None and not 0.0 < float(value) < 1.0:
                raise PolicyError(f"{name.replace('_', ' ')} must be in (0, 1), got {value}")
        if self.max_reverts_per_user_per_page is not None and self.max_reverts_per_user_per_page < 0:
            raise PolicyError("max reverts per user per page cannot be negative")
        if self.revert_window_hours <= 0:
            raise PolicyError("revert window must be positive")
        # rollbacks, undos and manual reverts are never scored, whatever the configured list says
        keys = {normalize_tag(tag) for tag in (*self.skip_tags, *REVERT_TAGS)}
        object.__setattr__(self, "_skip_tag_keys", frozenset(keys))

    @property
    def uses_multilingual_model(self) -> bool:
        return self.multilingual_wiki and self.multilingual_enabled

    @property
    def model_name(self) -> str:
        return MULTILINGUAL_MODEL if self.uses_multilingual_model else LANGUAGE_AGNOSTIC_MODEL

    @property
    def threshold(self) -> float:
        return self.threshold_for(self.model_name)

    def threshold_for(self, model_name: str) -> float:
        if model_name == MULTILINGUAL_MODEL and self.multilingual_threshold is not None:
            return float(self.multilingual_threshold)
        if self.explicit_threshold is not None:
            return float(self.explicit_threshold)
        return CAUTION_THRESHOLDS[self.caution_level]

    @property
    def revert_limit_enabled(self) -> bool:
        return bool(self.max_reverts_per_user_per_page)

    def matching_skip_tags(self, tags: frozenset[str] | set[str]) -> set[str]:
        return {tag for tag in tags if normalize_tag(tag) in self._skip_tag_keys}

    def with_overrides(self, data: Mapping[str, Any]) -> Policy:
        return Policy.from_mapping(data, base=self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], base: Policy | None = None) -> Policy:
        """
        Build a policy from on-wiki configuration keys (`MediaWiki:AutoModeratorConfig.json`
        and, on multilingual wikis, `MediaWiki:AutoModeratorMultilingualConfig.json`).

        `AutoModeratorMultilingualConfig*` keys override their plain counterparts when the
        base policy marks the wiki as multilingual, and are ignored otherwise.
        Unknown keys and wrongly typed values raise `PolicyError`.
        """
        if not isinstance(data, Mapping):
            raise PolicyError(f"policy configuration must be an object, got {type(data).__name__}")
        unknown = sorted(set(data) - set(WIKI_CONFIG_FIELDS) - set(MULTILINGUAL_CONFIG_FIELDS))
        if unknown:
            raise PolicyError(f"unknown configuration key(s): {', '.join(unknown)}")

        base = base or cls()
        changes = _coerce_fields(
            {key: value for key, value in data.items() if key in WIKI_CONFIG_FIELDS},
            WIKI_CONFIG_FIELDS,
        )
        multilingual = {key: value for key, value in data.items() if key in MULTILINGUAL_CONFIG_FIELDS}
        if multilingual:
            multilingual_changes = _coerce_fields(multilingual, MULTILINGUAL_CONFIG_FIELDS)
            if base.multilingual_wiki:
                changes.update(multilingual_changes)
            else:
                LOGGER.debug("Ignoring %s multilingual key(s) on a wiki without the multilingual model", len(multilingual))
        return replace(base, **changes)

    @classmethod
    def from_env(cls) -> Policy:
        raw_threshold = (get_env("AUTOMOD_POLICY_REVERT_THRESHOLD") or "").strip()
        raw_multilingual_threshold = (get_env("AUTOMOD_POLICY_MULTILINGUAL_THRESHOLD") or "").strip()
        max_reverts = get_int_env("AUTOMOD_POLICY_MAX_REVERTS_PER_USER_PER_PAGE", 0)
        try:
            return cls(
                enabled=get_bool_env("AUTOMOD_POLICY_ENABLED", False),
                caution_level=(get_env("AUTOMOD_POLICY_CAUTION_LEVEL") or DEFAULT_CAUTION_LEVEL).strip(),
                explicit_threshold=get_float_env("AUTOMOD_POLICY_REVERT_THRESHOLD") if raw_threshold else None,
                skip_tags=tuple(get_csv_env("AUTOMOD_POLICY_SKIP_TAGS", DEFAULT_SKIP_TAGS)),
                skip_user_rights=tuple(get_csv_env("AUTOMOD_POLICY_SKIP_USER_RIGHTS", ["bot", "autopatrol"])),
                skip_user_groups=tuple(get_csv_env("AUTOMOD_POLICY_SKIP_USER_GROUPS", ["sysop"])),
                max_reverts_per_user_per_page=max_reverts if max_reverts > 0 else None,
                revert_window_hours=get_int_env("AUTOMOD_POLICY_REVERT_WINDOW_HOURS", REVERT_WINDOW_HOURS),
                use_minor_edit_flag=get_bool_env("AUTOMOD_POLICY_MINOR_EDIT", False),
                use_bot_flag=get_bool_env("AUTOMOD_POLICY_BOT_FLAG", False),
                talk_page_message_enabled=get_bool_env("AUTOMOD_POLICY_TALK_PAGE_MESSAGE", False),
                false_positive_page=(get_env("AUTOMOD_POLICY_FALSE_POSITIVE_PAGE") or "").strip(),
                help_page_link=(get_env("AUTOMOD_POLICY_HELP_PAGE_LINK") or "").strip(),
                disable_anon_talk=get_bool_env("AUTOMOD_POLICY_DISABLE_ANON_TALK", False),
                multilingual_wiki=get_bool_env("AUTOMOD_POLICY_MULTILINGUAL_WIKI", False),
                multilingual_enabled=get_bool_env("AUTOMOD_POLICY_MULTILINGUAL_ENABLED", False),
                multilingual_threshold=(
                    get_float_env("AUTOMOD_POLICY_MULTILINGUAL_THRESHOLD") if raw_multilingual_threshold else None
                ),
            )
        except PolicyError:
            LOGGER.error("Invalid AUTOMOD_POLICY_* environment configuration")
            raise


def _coerce_fields(data: Mapping[str, Any], fields: Mapping[str, tuple[str, Callable[[Any], Any]]]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for key, value in data.items():
        field_name, coerce = fields[key]
        try:
            changes[field_name] = coerce(value)
        except (TypeError, ValueError) as exc:
            raise PolicyError(f"{key}: {exc}") from exc

    # EnableUserRevertsPerPage=false switches the limit off whatever its value
    if changes.pop("_limit_enabled", True) is False:
        changes["max_reverts_per_user_per_page"] = None
    return {name: value for name, value in changes.items() if not name.startswith("_")}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise TypeError(f"expected a boolean, got {type(value).__name__}")


def _as_str(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    raise TypeError(f"expected a string, got {type(value).__name__}")


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return tuple(item.strip() for item in value if item.strip())
    raise TypeError("expected a list of strings")


def _as_probability(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("expected a number, got bool")
    number = float(value)
    if not 0.0 < number < 1.0:
        raise ValueError(f"expected a number in (0, 1), got {number}")
    return number


def _as_optional_probability(value: Any) -> float | None:
    if isinstance(value, str) and not value.strip():
        return None
    return _as_probability(value)


def _as_caution_level(value: Any) -> str:
    level = _as_str(value)
    if level not in CAUTION_THRESHOLDS:
        raise ValueError(f"unknown caution level {level!r}")
    return level


def _as_revert_count(value: Any) -> int | None:
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, bool):
        raise TypeError("expected an integer, got bool")
    count = int(value)
    if count < 0:
        raise ValueError("expected a non-negative integer")
    return count or None


WIKI_CONFIG_FIELDS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "AutoModeratorEnableRevisionCheck": ("enabled", _as_bool),
    "AutoModeratorCautionLevel": ("caution_level", _as_caution_level),
    "AutoModeratorRevertProbability": ("explicit_threshold", _as_probability),
    "AutoModeratorSkipUserRights": ("skip_user_rights", _as_str_tuple),
    "AutoModeratorSkipUserGroups": ("skip_user_groups", _as_str_tuple),
    "AutoModeratorUseEditFlagMinor": ("use_minor_edit_flag", _as_bool),
    "AutoModeratorEnableBotFlag": ("use_bot_flag", _as_bool),
    "AutoModeratorRevertTalkPageMessageEnabled": ("talk_page_message_enabled", _as_bool),
    "AutoModeratorFalsePositivePageTitle": ("false_positive_page", _as_str),
    "AutoModeratorEnableUserRevertsPerPage": ("_limit_enabled", _as_bool),
    "AutoModeratorUserRevertsPerPage": ("max_reverts_per_user_per_page", _as_revert_count),
    "AutoModeratorHelpPageLink": ("help_page_link", _as_str),
}

_SHARED_MULTILINGUAL_KEYS = (
    "EnableRevisionCheck",
    "CautionLevel",
    "SkipUserRights",
    "UseEditFlagMinor",
    "EnableBotFlag",
    "RevertTalkPageMessageEnabled",
    "FalsePositivePageTitle",
    "EnableUserRevertsPerPage",
    "UserRevertsPerPage",
    "HelpPageLink",
)

MULTILINGUAL_CONFIG_FIELDS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    f"{MULTILINGUAL_PREFIX}{suffix}": WIKI_CONFIG_FIELDS[f"AutoModerator{suffix}"] for suffix in _SHARED_MULTILINGUAL_KEYS
}
MULTILINGUAL_CONFIG_FIELDS.update(
    {
        f"{MULTILINGUAL_PREFIX}EnableMultilingual": ("multilingual_enabled", _as_bool),
        f"{MULTILINGUAL_PREFIX}MultilingualThreshold": ("multilingual_threshold", _as_optional_probability),
        f"{MULTILINGUAL_PREFIX}RevertTalkPageMessageRegisteredUsersOnly": ("disable_anon_talk", _as_bool),
        # accepted for compatibility, the language-agnostic model is the fallback either way
        f"{MULTILINGUAL_PREFIX}EnableLanguageAgnostic": ("_language_agnostic", _as_bool),
        f"{MULTILINGUAL_PREFIX}ConfigureThreshold": ("_configure_threshold", lambda value: value),
    }
)
