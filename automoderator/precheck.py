# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .models import RevisionContext, UserRef
from .policy import PAGE_MOVE_TAGS, Policy

LOGGER = logging.getLogger(__name__)

MAIN_NAMESPACE = 0


class UserDirectory(Protocol):
    def rights(self, user: UserRef) -> set[str]: ...

    def groups(self, user: UserRef) -> set[str]: ...

    def is_blocked(self, user: UserRef) -> bool: ...


class PageDirectory(Protocol):
    def is_fully_protected(self, page_id: int) -> bool: ...


class RevertHistory(Protocol):
    def count_reverts_against(self, actor: UserRef, user: UserRef, page_id: int, since: datetime) -> int: ...


@dataclass(frozen=True)
class PrecheckResult:
    passed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.passed


PASSED = PrecheckResult(True)


def _fail(ctx: RevisionContext, reason: str) -> PrecheckResult:
    LOGGER.debug("rev %s skipped by pre-check: %s", ctx.rev_id, reason)
    return PrecheckResult(False, reason)


def revert_limit_reached(
    ctx: RevisionContext,
    policy: Policy,
    actor: UserRef,
    history: RevertHistory,
    now: datetime | None = None,
) -> bool:
    if not policy.revert_limit_enabled:
        return False
    since = (now or datetime.now(timezone.utc)) - timedelta(hours=policy.revert_window_hours)
    count = history.count_reverts_against(actor, ctx.user, ctx.page_id, since)
    return count >= int(policy.max_reverts_per_user_per_page or 0)


def passes_precheck(
    ctx: RevisionContext,
    policy: Policy,
    actor: UserRef,
    users: UserDirectory,
    history: RevertHistory,
    pages: PageDirectory | None = None,
    now: datetime | None = None,
) -> PrecheckResult:
    """
    Decide cheaply whether an edit is worth scoring at all.

    Checks run in a fixed order and the first failure wins; nothing here writes anywhere.
    """
    if users.is_blocked(actor):
        return _fail(ctx, "actor_blocked")
    if ctx.user.same_as(actor):
        return _fail(ctx, "self_edit")
    if ctx.original_rev_id is not None:
        return _fail(ctx, "null_edit")
    if ctx.is_page_creation:
        return _fail(ctx, "page_creation")
    if policy.matching_skip_tags(ctx.tags):
        return _fail(ctx, "revert_tag")
    if ctx.tags & PAGE_MOVE_TAGS:
        return _fail(ctx, "page_move")

    if users.rights(ctx.user) & set(policy.skip_user_rights):
        return _fail(ctx, "trusted_right")
    if users.groups(ctx.user) & set(policy.skip_user_groups):
        return _fail(ctx, "trusted_group")
    if ctx.user.is_external:
        return _fail(ctx, "external_user")

    if ctx.namespace != MAIN_NAMESPACE:
        return _fail(ctx, "non_main_namespace")
    if pages is not None and pages.is_fully_protected(ctx.page_id):
        return _fail(ctx, "protected_page")
    if revert_limit_reached(ctx, policy, actor, history, now=now):
        return _fail(ctx, "max_reverts")
    return PASSED
