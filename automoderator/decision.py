# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, Protocol

from .models import (
    OUTCOME_CONFLICT,
    OUTCOME_FAILED,
    OUTCOME_PASSED,
    OUTCOME_REVERTED,
    OUTCOME_SKIPPED,
    TAG_FAILED,
    TAG_PASSED,
    Decision,
    RevisionContext,
    RevisionRecord,
    Score,
    TagSet,
    UserRef,
)
from .policy import Policy
from .undo import UndoConflictError, compute_undo_content

LOGGER = logging.getLogger(__name__)


class SaveError(RuntimeError):
    """The wiki refused the revert edit."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code


class SaveConflictError(SaveError):
    """The page changed (or was already rolled back) after the revert was prepared."""


class PageUpdater(Protocol):
    def get_revision(self, rev_id: int) -> RevisionRecord | None: ...

    def get_previous_revision(self, revision: RevisionRecord) -> RevisionRecord | None: ...

    def get_current_revision(self, page_id: int) -> RevisionRecord | None: ...

    def save_revert(
        self,
        page_id: int,
        content: str,
        *,
        base_rev_id: int,
        undo_rev_id: int,
        undo_after_rev_id: int,
        summary: str,
        minor: bool,
        bot: bool,
    ) -> int: ...


class TagStore(Protocol):
    def add_tags(self, tags: Iterable[str], rev_id: int) -> None: ...

    def get_tags(self, rev_id: int) -> set[str]: ...


MergeFunction = Callable[[str | None, str | None, str | None], str]
RevertCallback = Callable[[RevisionContext, Decision], None]


def build_revert_summary(ctx: RevisionContext, probability: float) -> str:
    user = ctx.user.name
    if ctx.user.is_anonymous:
        author = f"[[Special:Contributions/{user}|{user}]]"
    else:
        author = f"[[Special:Contributions/{user}|{user}]] ([[User talk:{user}|talk]])"
    return (
        f"Undo revision [[Special:Diff/{ctx.rev_id}|{ctx.rev_id}]] by {author}: "
        f"revert risk probability {probability:.3f}"
    )


class RevertDecisionEngine:
    """
    Turn a score into a revert or a pass, then tag the candidate revision.

    Only `reverted` and `passed` outcomes are tagged. Skips, conflicts and failed
    saves leave the revision untagged so a later delivery can still evaluate it.
    """

    def __init__(
        self,
        page_updater: PageUpdater,
        tag_store: TagStore,
        policy: Policy,
        actor: UserRef,
        *,
        merge: MergeFunction = compute_undo_content,
        on_revert: RevertCallback | None = None,
        dry_run: bool = False,
    ) -> None:
        self.page_updater = page_updater
        self.tag_store = tag_store
        self.policy = policy
        self.actor = actor
        self.merge = merge
        self.on_revert = on_revert
        self.dry_run = dry_run

    def maybe_revert(self, ctx: RevisionContext, score: Score) -> Decision:
        probability = score.probability

        previous = self._already_evaluated(ctx, probability)
        if previous is not None:
            return previous

        if probability > self.policy.threshold_for(score.model_name):
            decision = self._revert(ctx, probability)
            if decision.outcome != OUTCOME_REVERTED:
                return decision
        else:
            decision = Decision(
                OUTCOME_PASSED,
                tags=TagSet(sorted(ctx.tags)).union([TAG_PASSED]),
                probability=probability,
            )

        if self.dry_run:
            LOGGER.info("Dry run: rev %s would be %s (p=%.3f)", ctx.rev_id, decision.outcome, probability)
            return replace(decision, reason="dry_run")

        self.tag_store.add_tags(decision.tags, ctx.rev_id)
        if decision.outcome == OUTCOME_REVERTED:
            self._notify_revert(ctx, decision)
        return decision

    def _already_evaluated(self, ctx: RevisionContext, probability: float) -> Decision | None:
        existing = self.tag_store.get_tags(ctx.rev_id)
        if TAG_FAILED in existing:
            LOGGER.info("rev %s already reverted and tagged, nothing to do", ctx.rev_id)
            return Decision(
                OUTCOME_REVERTED,
                tags=TagSet(sorted(existing)),
                probability=probability,
                restored_rev_id=ctx.parent_rev_id,
                reason="already_evaluated",
            )
        if TAG_PASSED in existing:
            LOGGER.info("rev %s already passed and tagged, nothing to do", ctx.rev_id)
            return Decision(
                OUTCOME_PASSED,
                tags=TagSet(sorted(existing)),
                probability=probability,
                reason="already_evaluated",
            )
        return None

    def _skip(self, ctx: RevisionContext, probability: float, reason: str) -> Decision:
        LOGGER.warning("Revert of rev %s skipped: %s", ctx.rev_id, reason)
        return Decision(OUTCOME_SKIPPED, probability=probability, reason=reason)

    def _revert(self, ctx: RevisionContext, probability: float) -> Decision:
        candidate = self.page_updater.get_revision(ctx.rev_id)
        if candidate is None:
            return self._skip(ctx, probability, "candidate_missing")
        target = self.page_updater.get_previous_revision(candidate)
        if target is None:
            return self._skip(ctx, probability, "no_previous_revision")
        current = self.page_updater.get_current_revision(ctx.page_id)
        if current is None:
            return self._skip(ctx, probability, "norev")
        if self._is_own_revert(ctx, target, current):
            # saved on an earlier delivery whose tagging step never completed
            LOGGER.info("rev %s was already reverted by rev %s, tagging it", ctx.rev_id, current.rev_id)
            return Decision(
                OUTCOME_REVERTED,
                tags=TagSet(sorted(ctx.tags)).union([TAG_FAILED]),
                probability=probability,
                revert_rev_id=current.rev_id,
                restored_rev_id=target.rev_id,
                reason="already_reverted",
            )

        try:
            content = self.merge(target.content, candidate.content, current.content)
        except UndoConflictError as exc:
            return self._skip(ctx, probability, "norev" if str(exc) == "norev" else "undo_conflict")

        if self.dry_run:
            return Decision(
                OUTCOME_REVERTED,
                tags=TagSet(sorted(ctx.tags)).union([TAG_FAILED]),
                probability=probability,
                restored_rev_id=target.rev_id,
            )

        try:
            revert_rev_id = self.page_updater.save_revert(
                ctx.page_id,
                content,
                base_rev_id=current.rev_id,
                undo_rev_id=ctx.rev_id,
                undo_after_rev_id=target.rev_id,
                summary=build_revert_summary(ctx, probability),
                minor=self.policy.use_minor_edit_flag,
                bot=self.policy.use_bot_flag,
            )
        except SaveConflictError as exc:
            LOGGER.info("Revert of rev %s lost a race (%s), leaving it alone", ctx.rev_id, exc.code or exc)
            return Decision(OUTCOME_CONFLICT, probability=probability, reason=exc.code or "editconflict")
        except SaveError as exc:
            LOGGER.error("Revert of rev %s failed: %s", ctx.rev_id, exc)
            return Decision(OUTCOME_FAILED, probability=probability, reason=exc.code or str(exc)[:200])

        LOGGER.info("Reverted rev %s on page %s (p=%.3f) as rev %s", ctx.rev_id, ctx.page_id, probability, revert_rev_id)
        return Decision(
            OUTCOME_REVERTED,
            tags=TagSet(sorted(ctx.tags)).union([TAG_FAILED]),
            probability=probability,
            revert_rev_id=revert_rev_id,
            restored_rev_id=target.rev_id,
        )

    def _is_own_revert(self, ctx: RevisionContext, target: RevisionRecord, current: RevisionRecord) -> bool:
        if current.rev_id == ctx.rev_id or not self.actor.same_as(current.user):
            return False
        if current.parent_id == ctx.rev_id:
            return True
        return current.content is not None and current.content == target.content

    def _notify_revert(self, ctx: RevisionContext, decision: Decision) -> None:
        if self.on_revert is None:
            return
        try:
            self.on_revert(ctx, decision)
        except Exception:
            LOGGER.exception("Post-revert callback failed for rev %s", ctx.rev_id)
