# -*- coding: utf-8 -*-
"""Pytest configuration and in-memory stand-ins for the wiki collaborators."""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Iterable

import pytest

# pywikibot refuses to import without a user-config.py unless told otherwise
os.environ.setdefault("PYWIKIBOT_NO_USER_CONFIG", "2")

from automoderator.decision import SaveConflictError, SaveError  # noqa: E402
from automoderator.discord import reset_notifier  # noqa: E402
from automoderator.models import RevisionRecord, UserRef  # noqa: E402
from automoderator.talk_page import TalkPage  # noqa: E402

ACTOR = UserRef(99, "AutoModerator")
EDITOR = UserRef(7, "Vandal Example")


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    monkeypatch.setenv("SERVER_ACTIONS_FILE", str(tmp_path / "server_actions.jsonl"))
    monkeypatch.setenv("TASK_REPORTS_FILE", str(tmp_path / "task_reports.jsonl"))
    monkeypatch.setenv("DISCORD_QUEUE_FILE", str(tmp_path / "discord_queue.json"))
    for key in ("DISCORD_WEBHOOK_MAIN", "DISCORD_WEBHOOK_ERRORS", "DISCORD_WEBHOOK_SERVER_LOGS", "DISCORD_WEBHOOK_REVERTS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("AUTOMOD_DRY_RUN", raising=False)
    reset_notifier()
    yield
    reset_notifier()


class FakeUsers:
    def __init__(
        self,
        rights: dict[str, set[str]] | None = None,
        groups: dict[str, set[str]] | None = None,
        blocked: Iterable[str] = (),
    ) -> None:
        self._rights = rights or {}
        self._groups = groups or {}
        self._blocked = set(blocked)

    def rights(self, user: UserRef) -> set[str]:
        return set(self._rights.get(user.name, set()))

    def groups(self, user: UserRef) -> set[str]:
        return set(self._groups.get(user.name, set()))

    def is_blocked(self, user: UserRef) -> bool:
        return user.name in self._blocked


class FakeHistory:
    def __init__(self, count: int = 0) -> None:
        self.count = count
        self.calls: list[tuple[UserRef, UserRef, int, datetime]] = []

    def count_reverts_against(self, actor: UserRef, user: UserRef, page_id: int, since: datetime) -> int:
        self.calls.append((actor, user, page_id, since))
        return self.count


class FakePages:
    def __init__(self, protected: Iterable[int] = ()) -> None:
        self.protected = set(protected)

    def is_fully_protected(self, page_id: int) -> bool:
        return page_id in self.protected


class FakePageUpdater:
    """Page history for a single page: revisions keyed by id, the last one current."""

    def __init__(self, revisions: Iterable[RevisionRecord] = (), save_error: SaveError | None = None) -> None:
        self.revisions = {revision.rev_id: revision for revision in revisions}
        self.save_error = save_error
        self.saves: list[dict[str, Any]] = []
        self._next_rev = max(self.revisions, default=0) + 100

    def get_revision(self, rev_id: int) -> RevisionRecord | None:
        return self.revisions.get(rev_id)

    def get_previous_revision(self, revision: RevisionRecord) -> RevisionRecord | None:
        if not revision.parent_id:
            return None
        return self.revisions.get(revision.parent_id)

    def get_current_revision(self, page_id: int) -> RevisionRecord | None:
        on_page = [revision for revision in self.revisions.values() if revision.page_id == page_id]
        return max(on_page, key=lambda revision: revision.rev_id) if on_page else None

    def save_revert(self, page_id: int, content: str, **kwargs: Any) -> int:
        if self.save_error is not None:
            raise self.save_error
        self._next_rev += 1
        self.saves.append({"page_id": page_id, "content": content, **kwargs})
        current = self.get_current_revision(page_id)
        self.revisions[self._next_rev] = RevisionRecord(
            rev_id=self._next_rev,
            parent_id=current.rev_id if current else None,
            page_id=page_id,
            user=ACTOR,
            content=content,
        )
        return self._next_rev


class FakeTagStore:
    def __init__(self) -> None:
        self.tags: dict[int, list[str]] = {}
        self.calls: list[tuple[tuple[str, ...], int]] = []

    def add_tags(self, tags: Iterable[str], rev_id: int) -> None:
        tags = tuple(tags)
        self.calls.append((tags, rev_id))
        current = self.tags.setdefault(rev_id, [])
        for tag in tags:
            if tag not in current:
                current.append(tag)

    def get_tags(self, rev_id: int) -> set[str]:
        return set(self.tags.get(rev_id, []))


class FakeTalkPages:
    def __init__(self, pages: dict[str, TalkPage] | None = None, available: bool = True, fail: bool = False) -> None:
        self.pages = pages or {}
        self._available = available
        self.fail = fail
        self.saved: list[tuple[str, str, str]] = []

    @property
    def available(self) -> bool:
        return self._available

    def get_talk_page(self, username: str) -> TalkPage | None:
        return self.pages.get(username, TalkPage(title=f"User talk:{username}", exists=False))

    def save_talk_page(self, page: TalkPage, text: str, summary: str, *, actor: UserRef) -> None:
        if self.fail:
            raise SaveError("protected talk page", code="protectedpage")
        self.saved.append((page.title, text, summary))


def page_history(page_id: int = 10, editor: UserRef = EDITOR) -> FakePageUpdater:
    """Two revisions: 100 (good text by someone else) then 101 (the candidate by `editor`)."""
    good = RevisionRecord(100, 50, page_id, UserRef(3, "Regular"), content="Intro line.\nSecond line.\n")
    bad = RevisionRecord(101, 100, page_id, editor, content="Intro line.\nSecond line VANDALISED.\n")
    return FakePageUpdater([good, bad])


__all__ = [
    "ACTOR",
    "EDITOR",
    "FakeHistory",
    "FakePageUpdater",
    "FakePages",
    "FakeTagStore",
    "FakeTalkPages",
    "FakeUsers",
    "SaveConflictError",
    "SaveError",
    "page_history",
]
