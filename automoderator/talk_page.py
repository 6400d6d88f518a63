# -*- coding: utf-8 -*-
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import mwparserfromhell

from .decision import SaveError
from .jobs import SendRevertTalkPageMsgJob
from .models import Decision, RevisionContext, RevisionRecord, UserRef
from .policy import Policy

LOGGER = logging.getLogger(__name__)

WIKITEXT_MODEL = "wikitext"


@dataclass(frozen=True)
class TalkPage:
    title: str
    text: str = ""
    content_model: str = WIKITEXT_MODEL
    exists: bool = False


class RevisionLookup(Protocol):
    def get_revision(self, rev_id: int) -> RevisionRecord | None: ...


class TalkPageStore(Protocol):
    @property
    def available(self) -> bool: ...

    def get_talk_page(self, username: str) -> TalkPage | None: ...

    def save_talk_page(self, page: TalkPage, text: str, summary: str, *, actor: UserRef) -> None: ...


def build_header(actor_name: str, when: datetime) -> str:
    return f"{calendar.month_name[when.month]} {when.year}: {actor_name} reverted one or more of your edits"


def build_edit_summary(page_title: str) -> str:
    return f"Notice of automatic revert on [[{page_title}]]"


def build_message(actor_name: str, rev_id: int, page_title: str, false_positive_page: str) -> str:
    message = (
        f"Hello! I am {actor_name}, an automated system which uses a machine learning model to identify "
        f"and revert potentially bad edits. I reverted [[Special:Diff/{rev_id}|your edit]] to [[{page_title}]]."
    )
    if false_positive_page:
        message += f" If you believe this edit was constructive, please [[{false_positive_page}|report it here]]."
    return message


def build_follow_up(rev_id: int, page_title: str) -> str:
    return f"I also reverted [[Special:Diff/{rev_id}|your edit]] to [[{page_title}]]."


def build_help_bullet(help_page: str) -> str:
    return f"* [[{help_page}|Learn more about this automated revert system]]"


def append_follow_up(text: str, header: str, comment: str) -> str | None:
    """Append `comment` to the section titled `header`; None when there is no such section."""
    wikicode = mwparserfromhell.parse(text)
    for section in wikicode.get_sections(levels=[2]):
        headings = section.filter_headings(recursive=False)
        if not headings or headings[0].title.strip_code().strip() != header:
            continue
        if not str(section).endswith("\n"):
            section.append("\n")
        section.append(f":{comment} ~~~~\n")
        return str(wikicode)
    return None


def append_section(text: str, header: str, body: str) -> str:
    prefix = text.rstrip()
    section = f"== {header} ==\n{body} ~~~~\n"
    return f"{prefix}\n\n{section}" if prefix else section


class TalkPageNotifier:
    """Leave a notice on the talk page of an editor whose edit was reverted."""

    def __init__(
        self,
        revisions: RevisionLookup,
        talk_pages: TalkPageStore,
        policy: Policy,
        actor: UserRef,
    ) -> None:
        self.revisions = revisions
        self.talk_pages = talk_pages
        self.policy = policy
        self.actor = actor

    def build_job(
        self,
        ctx: RevisionContext,
        decision: Decision,
        now: datetime | None = None,
    ) -> SendRevertTalkPageMsgJob:
        when = now or datetime.now(timezone.utc)
        return SendRevertTalkPageMsgJob(
            rev_id=ctx.rev_id,
            revert_rev_id=decision.revert_rev_id,
            page_title=ctx.page_title,
            header=build_header(self.actor.name, when),
            edit_summary=build_edit_summary(ctx.page_title),
            false_positive_page=self.policy.false_positive_page,
        )

    def send(self, job: SendRevertTalkPageMsgJob) -> bool:
        if not self.talk_pages.available:
            LOGGER.debug("Talk page delivery unavailable, skipping notice for rev %s", job.rev_id)
            return False
        try:
            revision = self.revisions.get_revision(job.rev_id)
        except Exception:
            LOGGER.exception("Unable to load reverted rev %s", job.rev_id)
            return False
        if revision is None or revision.user is None:
            LOGGER.warning("Reverted rev %s or its editor cannot be resolved", job.rev_id)
            return False
        editor = revision.user
        if editor.is_anonymous and self.policy.disable_anon_talk:
            LOGGER.debug("Anonymous talk pages disabled, no notice for %s", editor.name)
            return False

        try:
            page = self.talk_pages.get_talk_page(editor.name)
            if page is None:
                LOGGER.warning("No talk page title for %s", editor.name)
                return False
            if page.content_model != WIKITEXT_MODEL:
                LOGGER.info("Talk page %s has content model %s, skipping notice", page.title, page.content_model)
                return False

            text = append_follow_up(page.text, job.header, build_follow_up(job.rev_id, job.page_title)) if page.exists else None
            if text is None:
                body = build_message(self.actor.name, job.rev_id, job.page_title, job.false_positive_page)
                if self.policy.help_page_link:
                    body = f"{body}\n{build_help_bullet(self.policy.help_page_link)}"
                text = append_section(page.text if page.exists else "", job.header, body)

            self.talk_pages.save_talk_page(page, text, job.edit_summary, actor=self.actor)
        except SaveError as exc:
            LOGGER.warning("Talk page notice for rev %s not saved: %s", job.rev_id, exc)
            return False
        except Exception:
            LOGGER.exception("Talk page notice for rev %s failed", job.rev_id)
            return False
        LOGGER.info("Left revert notice for rev %s on %s", job.rev_id, page.title)
        return True
