# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass

from .env import get_bool_env, get_env, get_float_env, get_int_env

DEFAULT_LIFTWING_BASE_URL = "https://api.wikimedia.org/service/lw/inference/v1/models/"
DEFAULT_LIFTWING_MODEL = "revertrisk-language-agnostic"
DEFAULT_CONFIG_PAGE = "MediaWiki:AutoModeratorConfig.json"
DEFAULT_MULTILINGUAL_CONFIG_PAGE = "MediaWiki:AutoModeratorMultilingualConfig.json"


def lang_from_wiki_id(wiki_id: str) -> str:
    """`enwiki` -> `en`, `zh_yuewiki` -> `zh_yue`."""
    clean = (wiki_id or "").strip()
    index = clean.find("wiki")
    return clean[:index] if index > 0 else clean


@dataclass(frozen=True)
class RuntimeSettings:
    lang: str = "en"
    family: str = "wikipedia"
    username: str = "AutoModerator"
    wiki_id: str = "enwiki"
    liftwing_base_url: str = DEFAULT_LIFTWING_BASE_URL
    liftwing_model: str = DEFAULT_LIFTWING_MODEL
    liftwing_add_host_header: bool = False
    liftwing_host_header: str = ""
    liftwing_timeout_seconds: float = 10.0
    config_page: str = DEFAULT_CONFIG_PAGE
    multilingual_config_page: str = DEFAULT_MULTILINGUAL_CONFIG_PAGE
    rc_limit: int = 100
    job_max_attempts: int = 3
    dry_run: bool = False

    @property
    def score_lang(self) -> str:
        return lang_from_wiki_id(self.wiki_id)

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        lang = (get_env("AUTOMOD_LANG") or "en").strip()
        return cls(
            lang=lang,
            family=(get_env("AUTOMOD_FAMILY") or "wikipedia").strip(),
            username=(get_env("AUTOMOD_USERNAME") or "AutoModerator").strip(),
            wiki_id=(get_env("AUTOMOD_WIKI_ID") or f"{lang}wiki").strip(),
            liftwing_base_url=(get_env("AUTOMOD_LIFTWING_BASE_URL") or DEFAULT_LIFTWING_BASE_URL).strip(),
            liftwing_model=(get_env("AUTOMOD_LIFTWING_MODEL") or DEFAULT_LIFTWING_MODEL).strip(),
            liftwing_add_host_header=get_bool_env("AUTOMOD_LIFTWING_ADD_HOST_HEADER", False),
            liftwing_host_header=(get_env("AUTOMOD_LIFTWING_HOST_HEADER") or "").strip(),
            liftwing_timeout_seconds=max(get_float_env("AUTOMOD_LIFTWING_TIMEOUT_SECONDS", 10.0), 1.0),
            config_page=(get_env("AUTOMOD_CONFIG_PAGE") or DEFAULT_CONFIG_PAGE).strip(),
            multilingual_config_page=(
                get_env("AUTOMOD_MULTILINGUAL_CONFIG_PAGE") or DEFAULT_MULTILINGUAL_CONFIG_PAGE
            ).strip(),
            rc_limit=max(get_int_env("AUTOMOD_RC_LIMIT", 100), 1),
            job_max_attempts=max(get_int_env("AUTOMOD_JOB_MAX_ATTEMPTS", 3), 1),
            dry_run=get_bool_env("AUTOMOD_DRY_RUN", False),
        )
