# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Union

from .files import append_jsonl, read_json, write_json
from .locking import hold_lock
from .models import RevisionContext, UserRef
from .paths import DEAD_LETTER_FILE, JOB_QUEUE_FILE

LOGGER = logging.getLogger(__name__)

FETCH_JOB_TYPE = "AutoModeratorFetchRevScoreJob"
TALK_PAGE_JOB_TYPE = "AutoModeratorSendRevertTalkPageMsgJob"


def _int_or_none(value: Any) -> int | None:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed or None


@dataclass(frozen=True)
class FetchRevScoreJob:
    wiki_page_id: int
    rev_id: int
    user_id: int
    user_name: str
    original_rev_id: int | None = None
    parent_rev_id: int | None = None
    tags: tuple[str, ...] = ()
    scores: dict[str, Any] | None = None
    page_title: str = ""
    namespace: int = 0
    model_name: str = ""
    attempts: int = 0

    job_type = FETCH_JOB_TYPE

    @property
    def key(self) -> str:
        return f"{self.job_type}:{self.rev_id}"

    @classmethod
    def from_context(
        cls,
        ctx: RevisionContext,
        scores: Mapping[str, Any] | None = None,
        model_name: str = "",
    ) -> FetchRevScoreJob:
        return cls(
            wiki_page_id=ctx.page_id,
            rev_id=ctx.rev_id,
            user_id=ctx.user.user_id,
            user_name=ctx.user.name,
            original_rev_id=ctx.original_rev_id,
            parent_rev_id=ctx.parent_rev_id,
            tags=tuple(sorted(ctx.tags)),
            scores=dict(scores) if scores else None,
            page_title=ctx.page_title,
            namespace=ctx.namespace,
            model_name=model_name,
        )

    def to_context(self) -> RevisionContext:
        return RevisionContext(
            rev_id=self.rev_id,
            parent_rev_id=self.parent_rev_id,
            page_id=self.wiki_page_id,
            user=UserRef(self.user_id, self.user_name),
            original_rev_id=self.original_rev_id,
            tags=frozenset(self.tags),
            namespace=self.namespace,
            page_title=self.page_title,
        )

    def to_params(self) -> dict[str, Any]:
        return {
            "type": self.job_type,
            "wikiPageId": self.wiki_page_id,
            "revId": self.rev_id,
            "originalRevId": self.original_rev_id or False,
            "parentRevId": self.parent_rev_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "tags": list(self.tags),
            "scores": self.scores,
            "pageTitle": self.page_title,
            "namespace": self.namespace,
            "revertRiskModelName": self.model_name,
            "attempts": self.attempts,
        }

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> FetchRevScoreJob:
        scores = params.get("scores")
        return cls(
            wiki_page_id=int(params["wikiPageId"]),
            rev_id=int(params["revId"]),
            user_id=int(params.get("userId") or 0),
            user_name=str(params.get("userName") or ""),
            original_rev_id=_int_or_none(params.get("originalRevId")),
            parent_rev_id=_int_or_none(params.get("parentRevId")),
            tags=tuple(str(tag) for tag in params.get("tags") or ()),
            scores=dict(scores) if isinstance(scores, Mapping) and scores else None,
            page_title=str(params.get("pageTitle") or ""),
            namespace=int(params.get("namespace") or 0),
            model_name=str(params.get("revertRiskModelName") or ""),
            attempts=int(params.get("attempts") or 0),
        )


@dataclass(frozen=True)
class SendRevertTalkPageMsgJob:
    rev_id: int
    revert_rev_id: int | None
    page_title: str
    header: str
    edit_summary: str
    false_positive_page: str = ""
    attempts: int = 0

    job_type = TALK_PAGE_JOB_TYPE

    @property
    def key(self) -> str:
        return f"{self.job_type}:{self.rev_id}"

    def to_params(self) -> dict[str, Any]:
        return {
            "type": self.job_type,
            "revId": self.rev_id,
            "revertRevId": self.revert_rev_id,
            "pageTitle": self.page_title,
            "header": self.header,
            "editSummary": self.edit_summary,
            "falsePositivePage": self.false_positive_page,
            "attempts": self.attempts,
        }

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> SendRevertTalkPageMsgJob:
        return cls(
            rev_id=int(params["revId"]),
            revert_rev_id=_int_or_none(params.get("revertRevId")),
            page_title=str(params.get("pageTitle") or ""),
            header=str(params.get("header") or ""),
            edit_summary=str(params.get("editSummary") or ""),
            false_positive_page=str(params.get("falsePositivePage") or ""),
            attempts=int(params.get("attempts") or 0),
        )


Job = Union[FetchRevScoreJob, SendRevertTalkPageMsgJob]
JOB_TYPES: dict[str, type] = {
    FETCH_JOB_TYPE: FetchRevScoreJob,
    TALK_PAGE_JOB_TYPE: SendRevertTalkPageMsgJob,
}


def job_from_params(params: Mapping[str, Any]) -> Job:
    job_type = params.get("type")
    if job_type not in JOB_TYPES:
        raise ValueError(f"unknown job type: {job_type!r}")
    return JOB_TYPES[job_type].from_params(params)


@dataclass(frozen=True)
class JobResult:
    ok: bool
    allow_retries: bool = False
    error: str = ""
    details: dict[str, Any] = field(default_factory=dict)


class JsonJobQueue:
    """
    Job queue kept in a JSON file, every read-modify-write under a blocking file lock.

    Jobs are unique per (type, revId): pushing a duplicate is a no-op.
    """

    def __init__(
        self,
        path: Path = JOB_QUEUE_FILE,
        dead_letter_path: Path = DEAD_LETTER_FILE,
        *,
        max_attempts: int = 3,
        lock_dir: Path | None = None,
    ) -> None:
        self.path = path
        self.dead_letter_path = dead_letter_path
        self.max_attempts = max(int(max_attempts), 1)
        self.lock_dir = lock_dir
        self._lock_name = f"queue-{path.stem}"

    def _load(self) -> list[dict[str, Any]]:
        payload = read_json(self.path, default=[])
        if not isinstance(payload, list):
            LOGGER.warning("Job queue file %s is not a list, starting empty", self.path)
            return []
        return [item for item in payload if isinstance(item, dict)]

    @staticmethod
    def _key(params: Mapping[str, Any]) -> str:
        return f"{params.get('type')}:{params.get('revId')}"

    def __len__(self) -> int:
        with hold_lock(self._lock_name, self.lock_dir, blocking=True):
            return len(self._load())

    def push(self, job: Job) -> bool:
        with hold_lock(self._lock_name, self.lock_dir, blocking=True):
            queue = self._load()
            if any(self._key(item) == job.key for item in queue):
                LOGGER.debug("Job %s already queued", job.key)
                return False
            queue.append(job.to_params())
            write_json(self.path, queue)
        LOGGER.debug("Queued job %s", job.key)
        return True

    def pop(self) -> Job | None:
        with hold_lock(self._lock_name, self.lock_dir, blocking=True):
            queue = self._load()
            while queue:
                params = queue.pop(0)
                try:
                    job = job_from_params(params)
                except (KeyError, TypeError, ValueError) as exc:
                    LOGGER.error("Dropping unreadable job %s: %s", params, exc)
                    self._write_dead_letter(params, f"unreadable: {exc}")
                    continue
                write_json(self.path, queue)
                return job
            write_json(self.path, queue)
            return None

    def retry(self, job: Job, error: str = "") -> bool:
        """Requeue `job` with one more attempt; returns False when it was dead-lettered instead."""
        attempts = job.attempts + 1
        if attempts >= self.max_attempts:
            self.dead_letter(replace(job, attempts=attempts), error)
            return False
        with hold_lock(self._lock_name, self.lock_dir, blocking=True):
            queue = self._load()
            queue.append(replace(job, attempts=attempts).to_params())
            write_json(self.path, queue)
        LOGGER.info("Requeued job %s (attempt %s/%s)", job.key, attempts, self.max_attempts)
        return True

    def dead_letter(self, job: Job, error: str = "") -> None:
        LOGGER.warning("Dead-lettering job %s: %s", job.key, error or "no error recorded")
        self._write_dead_letter(job.to_params(), error)

    def _write_dead_letter(self, params: Mapping[str, Any], error: str) -> None:
        append_jsonl(
            self.dead_letter_path,
            {
                "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                "job": dict(params),
                "error": (error or "")[:500],
            },
        )
