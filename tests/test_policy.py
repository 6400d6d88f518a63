# -*- coding: utf-8 -*-
from __future__ import annotations

import pytest

from automoderator.policy import CAUTION_THRESHOLDS, Policy, PolicyError
from automoderator.settings import RuntimeSettings, lang_from_wiki_id


def test_defaults_are_conservative():
    policy = Policy()
    assert policy.enabled is False
    assert policy.threshold == CAUTION_THRESHOLDS["very-cautious"] == 0.99
    assert not policy.revert_limit_enabled


@pytest.mark.parametrize(
    ("level", "threshold"),
    [("very-cautious", 0.99), ("cautious", 0.985), ("somewhat-cautious", 0.98), ("less-cautious", 0.975)],
)
def test_caution_levels_map_to_thresholds(level, threshold):
    assert Policy(caution_level=level).threshold == threshold


def test_explicit_threshold_wins():
    assert Policy(caution_level="cautious", explicit_threshold=0.5).threshold == 0.5


@pytest.mark.parametrize("value", [0.0, 1.0, 1.5, -0.1])
def test_threshold_out_of_range_is_rejected(value):
    with pytest.raises(PolicyError):
        Policy(explicit_threshold=value)


def test_unknown_caution_level_is_rejected():
    with pytest.raises(PolicyError):
        Policy(caution_level="reckless")


def test_from_mapping_reads_wiki_keys():
    policy = Policy.from_mapping(
        {
            "AutoModeratorEnableRevisionCheck": True,
            "AutoModeratorCautionLevel": "somewhat-cautious",
            "AutoModeratorSkipUserRights": ["bot", "rollback"],
            "AutoModeratorUseEditFlagMinor": True,
            "AutoModeratorRevertTalkPageMessageEnabled": True,
            "AutoModeratorFalsePositivePageTitle": "Project:AutoModerator/False positives",
            "AutoModeratorEnableUserRevertsPerPage": True,
            "AutoModeratorUserRevertsPerPage": 2,
            "AutoModeratorHelpPageLink": "Help:AutoModerator",
        }
    )
    assert policy.enabled
    assert policy.threshold == 0.98
    assert policy.skip_user_rights == ("bot", "rollback")
    assert policy.skip_user_groups == ("sysop",)
    assert policy.use_minor_edit_flag
    assert policy.talk_page_message_enabled
    assert policy.false_positive_page == "Project:AutoModerator/False positives"
    assert policy.max_reverts_per_user_per_page == 2
    assert policy.help_page_link == "Help:AutoModerator"


def test_from_mapping_overlays_base():
    base = Policy(enabled=True, explicit_threshold=0.7, use_bot_flag=True)
    policy = base.with_overrides({"AutoModeratorUseEditFlagMinor": True})
    assert policy.threshold == 0.7
    assert policy.use_bot_flag
    assert policy.use_minor_edit_flag


def test_disabled_revert_limit_ignores_count():
    policy = Policy.from_mapping(
        {"AutoModeratorEnableUserRevertsPerPage": False, "AutoModeratorUserRevertsPerPage": 3}
    )
    assert policy.max_reverts_per_user_per_page is None


def test_unknown_keys_are_rejected_at_construction():
    with pytest.raises(PolicyError, match="AutoModeratorFlyingCars"):
        Policy.from_mapping({"AutoModeratorFlyingCars": True})


@pytest.mark.parametrize(
    "data",
    [
        {"AutoModeratorEnableRevisionCheck": "yes"},
        {"AutoModeratorSkipUserRights": "bot"},
        {"AutoModeratorRevertProbability": True},
        {"AutoModeratorRevertProbability": 2},
        {"AutoModeratorCautionLevel": "reckless"},
        {"AutoModeratorUserRevertsPerPage": -1},
    ],
)
def test_wrong_types_are_rejected(data):
    with pytest.raises(PolicyError):
        Policy.from_mapping(data)


def test_non_object_is_rejected():
    with pytest.raises(PolicyError):
        Policy.from_mapping(["AutoModeratorEnableRevisionCheck"])  # type: ignore[arg-type]


def test_from_env(monkeypatch):
    monkeypatch.setenv("AUTOMOD_POLICY_ENABLED", "true")
    monkeypatch.setenv("AUTOMOD_POLICY_REVERT_THRESHOLD", "0.5")
    monkeypatch.setenv("AUTOMOD_POLICY_SKIP_TAGS", "rollback, undo")
    monkeypatch.setenv("AUTOMOD_POLICY_MAX_REVERTS_PER_USER_PER_PAGE", "1")
    monkeypatch.setenv("AUTOMOD_POLICY_DISABLE_ANON_TALK", "1")

    policy = Policy.from_env()

    assert policy.enabled
    assert policy.threshold == 0.5
    assert policy.skip_tags == ("rollback", "undo")
    assert policy.matching_skip_tags({"mw-rollback", "visualeditor"}) == {"mw-rollback"}
    assert policy.max_reverts_per_user_per_page == 1
    assert policy.disable_anon_talk


def test_from_env_rejects_bad_caution_level(monkeypatch):
    monkeypatch.setenv("AUTOMOD_POLICY_CAUTION_LEVEL", "yolo")
    with pytest.raises(PolicyError):
        Policy.from_env()


MULTILINGUAL_CONFIG = {
    "AutoModeratorMultilingualConfigEnableRevisionCheck": True,
    "AutoModeratorMultilingualConfigFalsePositivePageTitle": "Project:AutoModerator/False positives",
    "AutoModeratorMultilingualConfigUseEditFlagMinor": True,
    "AutoModeratorMultilingualConfigRevertTalkPageMessageEnabled": True,
    "AutoModeratorMultilingualConfigRevertTalkPageMessageRegisteredUsersOnly": True,
    "AutoModeratorMultilingualConfigEnableBotFlag": True,
    "AutoModeratorMultilingualConfigSkipUserRights": ["bot"],
    "AutoModeratorMultilingualConfigCautionLevel": "cautious",
    "AutoModeratorMultilingualConfigEnableUserRevertsPerPage": True,
    "AutoModeratorMultilingualConfigUserRevertsPerPage": "2",
    "AutoModeratorMultilingualConfigHelpPageLink": "Help:AutoModerator",
    "AutoModeratorMultilingualConfigEnableLanguageAgnostic": False,
    "AutoModeratorMultilingualConfigEnableMultilingual": True,
    "AutoModeratorMultilingualConfigMultilingualThreshold": "0.992",
    "AutoModeratorMultilingualConfigConfigureThreshold": "",
}


def test_multilingual_keys_configure_a_multilingual_wiki():
    policy = Policy(multilingual_wiki=True).with_overrides(
        {"AutoModeratorEnableRevisionCheck": False, "AutoModeratorCautionLevel": "less-cautious", **MULTILINGUAL_CONFIG}
    )

    assert policy.enabled
    assert policy.caution_level == "cautious"
    assert policy.use_minor_edit_flag
    assert policy.use_bot_flag
    assert policy.talk_page_message_enabled
    assert policy.disable_anon_talk
    assert policy.skip_user_rights == ("bot",)
    assert policy.max_reverts_per_user_per_page == 2
    assert policy.help_page_link == "Help:AutoModerator"
    assert policy.model_name == "revertrisk-multilingual"
    assert policy.threshold == 0.992
    assert policy.threshold_for("revertrisk-language-agnostic") == 0.985


def test_multilingual_keys_are_accepted_but_ignored_elsewhere():
    policy = Policy.from_mapping({"AutoModeratorEnableRevisionCheck": True, **MULTILINGUAL_CONFIG})

    assert policy.enabled
    assert policy.caution_level == "very-cautious"
    assert not policy.use_bot_flag
    assert policy.model_name == "revertrisk-language-agnostic"
    assert policy.threshold == 0.99


def test_multilingual_model_needs_the_model_switched_on():
    policy = Policy(multilingual_wiki=True, multilingual_threshold=0.992)
    assert policy.model_name == "revertrisk-language-agnostic"
    assert policy.threshold == 0.99


@pytest.mark.parametrize(
    "data",
    [
        {"AutoModeratorMultilingualConfigMultilingualThreshold": "oopsie"},
        {"AutoModeratorMultilingualConfigMultilingualThreshold": "1.5"},
        {"AutoModeratorMultilingualConfigEnableMultilingual": "yes"},
    ],
)
def test_bad_multilingual_values_are_rejected(data):
    with pytest.raises(PolicyError):
        Policy(multilingual_wiki=True).with_overrides(data)


def test_revert_tags_are_skipped_whatever_the_configured_list(monkeypatch):
    monkeypatch.setenv("AUTOMOD_POLICY_SKIP_TAGS", "visualeditor")

    policy = Policy.from_env()

    assert policy.skip_tags == ("visualeditor",)
    assert policy.matching_skip_tags({"mw-rollback", "mw-undo", "mw-manual-revert", "mobile edit"}) == {
        "mw-rollback",
        "mw-undo",
        "mw-manual-revert",
    }
    assert Policy(skip_tags=()).matching_skip_tags({"mw-reverted", "mw-undo"}) == {"mw-undo"}


def test_from_env_reads_multilingual_settings(monkeypatch):
    monkeypatch.setenv("AUTOMOD_POLICY_MULTILINGUAL_WIKI", "1")
    monkeypatch.setenv("AUTOMOD_POLICY_MULTILINGUAL_ENABLED", "true")
    monkeypatch.setenv("AUTOMOD_POLICY_MULTILINGUAL_THRESHOLD", "0.97")

    policy = Policy.from_env()

    assert policy.uses_multilingual_model
    assert policy.threshold == 0.97


@pytest.mark.parametrize(("wiki_id", "lang"), [("enwiki", "en"), ("frwiki", "fr"), ("zh_yuewiki", "zh_yue"), ("testwiki", "test")])
def test_lang_from_wiki_id(wiki_id, lang):
    assert lang_from_wiki_id(wiki_id) == lang


def test_runtime_settings_from_env(monkeypatch):
    monkeypatch.setenv("AUTOMOD_LANG", "fr")
    monkeypatch.delenv("AUTOMOD_WIKI_ID", raising=False)
    monkeypatch.setenv("AUTOMOD_JOB_MAX_ATTEMPTS", "5")

    settings = RuntimeSettings.from_env()

    assert settings.wiki_id == "frwiki"
    assert settings.score_lang == "fr"
    assert settings.job_max_attempts == 5
    assert settings.liftwing_model == "revertrisk-language-agnostic"
