# -*- coding: utf-8 -*-
from __future__ import annotations

import pytest

from automoderator.decision import RevertDecisionEngine, SaveConflictError, SaveError
from automoderator.models import (
    OUTCOME_CONFLICT,
    OUTCOME_FAILED,
    OUTCOME_PASSED,
    OUTCOME_REVERTED,
    OUTCOME_SKIPPED,
    TAG_FAILED,
    TAG_PASSED,
    MalformedScoreError,
    RevisionContext,
    RevisionRecord,
    Score,
)
from automoderator.policy import Policy
from automoderator.undo import UndoConflictError
from conftest import ACTOR, EDITOR, FakePageUpdater, FakeTagStore, page_history

HIGH = 0.806738942861557
LOW = 0.193261057138443


def _score(probability) -> Score:
    return Score(
        model_name="revertrisk-language-agnostic",
        model_version="3",
        wiki_db="enwiki",
        revision_id=101,
        output={"probabilities": {"true": probability, "false": 1 - probability if isinstance(probability, float) else 0}},
    )


def _ctx(tags=frozenset({"visualeditor"})) -> RevisionContext:
    return RevisionContext(rev_id=101, parent_rev_id=100, page_id=10, user=EDITOR, tags=tags, page_title="Example")


def _engine(pages=None, tags=None, **kwargs) -> tuple[RevertDecisionEngine, FakePageUpdater, FakeTagStore]:
    pages = pages or page_history()
    tags = tags or FakeTagStore()
    policy = kwargs.pop("policy", Policy(enabled=True, explicit_threshold=0.5))
    return RevertDecisionEngine(pages, tags, policy, ACTOR, **kwargs), pages, tags


def test_high_probability_reverts_and_tags_failed():
    engine, pages, tags = _engine()

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_REVERTED
    assert decision.reverted
    assert decision.restored_rev_id == 100
    assert decision.revert_rev_id is not None
    assert TAG_FAILED in decision.tags
    assert TAG_PASSED not in decision.tags
    assert "visualeditor" in decision.tags
    assert tags.calls == [(decision.tags.as_tuple(), 101)]

    saved = pages.saves[0]
    assert saved["content"] == "Intro line.\nSecond line.\n"
    assert saved["base_rev_id"] == 101
    assert saved["undo_rev_id"] == 101
    assert saved["undo_after_rev_id"] == 100
    assert "0.807" in saved["summary"]
    assert saved["minor"] is False and saved["bot"] is False
    assert pages.get_current_revision(10).content == "Intro line.\nSecond line.\n"


def test_low_probability_passes_and_tags_passed():
    engine, pages, tags = _engine()

    decision = engine.maybe_revert(_ctx(), _score(LOW))

    assert decision.outcome == OUTCOME_PASSED
    assert not decision.reverted
    assert TAG_PASSED in decision.tags
    assert TAG_FAILED not in decision.tags
    assert pages.saves == []
    assert len(tags.calls) == 1


def test_probability_equal_to_threshold_passes():
    engine, pages, _tags = _engine()
    assert engine.maybe_revert(_ctx(), _score(0.5)).outcome == OUTCOME_PASSED
    assert pages.saves == []


def test_caution_level_threshold_is_used_without_explicit_threshold():
    policy = Policy(enabled=True, caution_level="less-cautious")
    engine, _pages, _tags = _engine(policy=policy)
    assert engine.maybe_revert(_ctx(), _score(0.97)).outcome == OUTCOME_PASSED

    engine, pages, _tags = _engine(policy=policy)
    assert engine.maybe_revert(_ctx(), _score(0.976)).outcome == OUTCOME_REVERTED
    assert len(pages.saves) == 1


def test_policy_flags_reach_the_save():
    engine, pages, _tags = _engine(policy=Policy(enabled=True, explicit_threshold=0.5, use_minor_edit_flag=True, use_bot_flag=True))
    engine.maybe_revert(_ctx(), _score(HIGH))
    assert pages.saves[0]["minor"] is True
    assert pages.saves[0]["bot"] is True


def test_missing_previous_revision_skips_without_tags():
    lonely = FakePageUpdater([RevisionRecord(101, 100, 10, EDITOR, content="text\n")])
    engine, pages, tags = _engine(pages=lonely)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_SKIPPED
    assert not decision.reverted
    assert len(decision.tags) == 0
    assert tags.calls == []
    assert pages.saves == []


def test_missing_content_skips_as_norev():
    pages = FakePageUpdater(
        [
            RevisionRecord(100, 50, 10, EDITOR, content=None),
            RevisionRecord(101, 100, 10, EDITOR, content="bad\n"),
        ]
    )
    engine, _pages, tags = _engine(pages=pages)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_SKIPPED
    assert decision.reason == "norev"
    assert tags.calls == []


def test_merge_failure_skips_without_tags():
    def failing_merge(target, candidate, current):
        raise UndoConflictError("failure")

    engine, pages, tags = _engine(merge=failing_merge)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_SKIPPED
    assert decision.reason == "undo_conflict"
    assert tags.calls == []
    assert pages.saves == []


def test_edit_conflict_is_no_action():
    pages = page_history()
    pages.save_error = SaveConflictError("page changed", code="editconflict")
    engine, _pages, tags = _engine(pages=pages)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_CONFLICT
    assert decision.reason == "editconflict"
    assert not decision.reverted
    assert tags.calls == []


def test_other_save_errors_are_failures():
    pages = page_history()
    pages.save_error = SaveError("abusefilter-disallowed", code="abusefilter-disallowed")
    engine, _pages, tags = _engine(pages=pages)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_FAILED
    assert tags.calls == []


def test_malformed_score_fails_loudly():
    engine, pages, tags = _engine()
    broken = Score("m", "1", "enwiki", 101, output={"probabilities": {"false": 0.2}})

    with pytest.raises(MalformedScoreError):
        engine.maybe_revert(_ctx(), broken)
    with pytest.raises(MalformedScoreError):
        engine.maybe_revert(_ctx(), _score("0.9"))
    assert pages.saves == []
    assert tags.calls == []


def test_redelivery_after_revert_does_not_revert_again():
    engine, pages, tags = _engine()
    first = engine.maybe_revert(_ctx(), _score(HIGH))

    second = engine.maybe_revert(_ctx(), _score(HIGH))

    assert second.outcome == OUTCOME_REVERTED
    assert second.reason == "already_evaluated"
    assert len(pages.saves) == 1
    assert len(tags.calls) == 1
    assert set(second.tags) == set(first.tags)


def test_tagging_twice_converges_to_same_tags():
    tags = FakeTagStore()
    engine, _pages, _tags = _engine(tags=tags)
    decision = engine.maybe_revert(_ctx(), _score(LOW))

    tags.add_tags(decision.tags, 101)

    assert sorted(tags.tags[101]) == sorted(set(decision.tags))


def test_dry_run_neither_saves_nor_tags():
    engine, pages, tags = _engine(dry_run=True)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_REVERTED
    assert decision.reason == "dry_run"
    assert decision.restored_rev_id == 100
    assert decision.revert_rev_id is None
    assert pages.saves == []
    assert tags.calls == []


def test_on_revert_callback_runs_and_its_errors_are_contained():
    seen = []

    def callback(ctx, decision):
        seen.append((ctx.rev_id, decision.revert_rev_id))
        raise RuntimeError("talk page exploded")

    engine, _pages, tags = _engine(on_revert=callback)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.reverted
    assert seen == [(101, decision.revert_rev_id)]
    assert len(tags.calls) == 1


def test_on_revert_callback_not_called_on_pass():
    seen = []
    engine, _pages, _tags = _engine(on_revert=lambda ctx, decision: seen.append(ctx.rev_id))
    engine.maybe_revert(_ctx(), _score(LOW))
    assert seen == []


class FlakyTagStore(FakeTagStore):
    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    def add_tags(self, tags, rev_id) -> None:
        if self.failures:
            self.failures -= 1
            raise OSError("tag API unavailable")
        super().add_tags(tags, rev_id)


def test_redelivery_after_failed_tagging_tags_the_existing_revert():
    notified = []
    engine, pages, tags = _engine(tags=FlakyTagStore(), on_revert=lambda ctx, decision: notified.append(decision.revert_rev_id))

    with pytest.raises(OSError):
        engine.maybe_revert(_ctx(), _score(HIGH))
    revert_rev_id = pages.get_current_revision(10).rev_id

    second = engine.maybe_revert(_ctx(), _score(HIGH))

    assert second.outcome == OUTCOME_REVERTED
    assert second.reason == "already_reverted"
    assert second.revert_rev_id == revert_rev_id
    assert second.restored_rev_id == 100
    assert TAG_FAILED in tags.get_tags(101)
    assert len(pages.saves) == 1
    assert notified == [revert_rev_id]


def test_someone_elses_revert_is_not_claimed():
    pages = page_history()
    pages.revisions[150] = RevisionRecord(150, 101, 10, EDITOR, content="Intro line.\nSecond line.\n")
    engine, _pages, tags = _engine(pages=pages)

    decision = engine.maybe_revert(_ctx(), _score(HIGH))

    assert decision.outcome == OUTCOME_SKIPPED
    assert decision.reason == "undo_conflict"
    assert tags.calls == []
