# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from .decision import RevertDecisionEngine
from .discord import log_server_action, log_to_discord
from .jobs import FetchRevScoreJob, Job, JobResult, JsonJobQueue, SendRevertTalkPageMsgJob
from .liftwing import FetchResult, score_from_precomputed
from .models import (
    OUTCOME_CONFLICT,
    OUTCOME_FAILED,
    OUTCOME_PASSED,
    OUTCOME_REVERTED,
    OUTCOME_SKIPPED,
    Decision,
    MalformedScoreError,
    RevisionContext,
    UserRef,
)
from .policy import Policy
from .precheck import PageDirectory, RevertHistory, UserDirectory, passes_precheck, revert_limit_reached
from .talk_page import TalkPageNotifier

LOGGER = logging.getLogger(__name__)
SCRIPT_NAME = "automoderator"


class ScoreClient(Protocol):
    def fetch_score(self, rev_id: int, model: str | None = None) -> FetchResult: ...


class RevertService:
    """Wires the pre-check, the scoring client and the decision engine around the job queue."""

    def __init__(
        self,
        *,
        policy: Policy,
        actor: UserRef,
        users: UserDirectory,
        history: RevertHistory,
        scorer: ScoreClient,
        engine: RevertDecisionEngine,
        queue: JsonJobQueue,
        pages: PageDirectory | None = None,
        notifier: TalkPageNotifier | None = None,
        model_name: str = "revertrisk-language-agnostic",
        wiki_id: str = "",
    ) -> None:
        self.policy = policy
        self.actor = actor
        self.users = users
        self.history = history
        self.scorer = scorer
        self.engine = engine
        self.queue = queue
        self.pages = pages
        self.notifier = notifier
        self.model_name = model_name
        self.wiki_id = wiki_id

    @property
    def active_model(self) -> str:
        """The revert-risk model new jobs are scored with."""
        return self.policy.model_name if self.policy.uses_multilingual_model else self.model_name

    def handle_edit(self, ctx: RevisionContext, scores: Mapping[str, Any] | None = None) -> bool:
        if not self.policy.enabled:
            return False
        check = passes_precheck(ctx, self.policy, self.actor, self.users, self.history, self.pages)
        if not check:
            log_server_action(
                "precheck_skip",
                script_name=SCRIPT_NAME,
                level="DEBUG",
                context={"rev_id": ctx.rev_id, "page_id": ctx.page_id, "reason": check.reason},
            )
            return False
        queued = self.queue.push(FetchRevScoreJob.from_context(ctx, scores=scores, model_name=self.active_model))
        if queued:
            log_server_action("job_queued", script_name=SCRIPT_NAME, context={"rev_id": ctx.rev_id, "page_id": ctx.page_id})
        return queued

    def run_job(self, job: Job) -> JobResult:
        if isinstance(job, SendRevertTalkPageMsgJob):
            return self.run_talk_page_job(job)
        return self.run_fetch_job(job)

    def run_fetch_job(self, job: FetchRevScoreJob) -> JobResult:
        ctx = job.to_context()
        if revert_limit_reached(ctx, self.policy, self.actor, self.history):
            LOGGER.info("rev %s: revert limit reached for %s on page %s", ctx.rev_id, ctx.user.name, ctx.page_id)
            return JobResult(ok=True, details={"reason": "max_reverts"})

        try:
            model = job.model_name or self.active_model
            score = score_from_precomputed(job.scores, job.rev_id, model, self.wiki_id)
            if score is None:
                result = self.scorer.fetch_score(job.rev_id, model=model)
                if not result.ok or result.score is None:
                    log_server_action(
                        "score_fetch_failed",
                        script_name=SCRIPT_NAME,
                        level="WARNING",
                        context={
                            "rev_id": job.rev_id,
                            "model": model,
                            "http_status": result.http_status,
                            "error_type": result.error_type,
                            "allow_retries": result.allow_retries,
                        },
                    )
                    return JobResult(ok=False, allow_retries=result.allow_retries, error=result.error)
                score = result.score
            decision = self.engine.maybe_revert(ctx, score)
        except MalformedScoreError as exc:
            LOGGER.error("rev %s: malformed score: %s", job.rev_id, exc)
            log_server_action("score_malformed", script_name=SCRIPT_NAME, level="ERROR", context={"rev_id": job.rev_id, "error": str(exc)[:300]})
            return JobResult(ok=False, allow_retries=False, error=str(exc))

        self._record(ctx, decision)
        details = {"outcome": decision.outcome, "reason": decision.reason}
        if decision.outcome in {OUTCOME_REVERTED, OUTCOME_PASSED, OUTCOME_SKIPPED, OUTCOME_CONFLICT}:
            return JobResult(ok=True, details=details)
        return JobResult(ok=False, allow_retries=True, error=decision.reason or OUTCOME_FAILED, details=details)

    def run_talk_page_job(self, job: SendRevertTalkPageMsgJob) -> JobResult:
        if self.notifier is None:
            return JobResult(ok=True, details={"sent": False})
        sent = self.notifier.send(job)
        return JobResult(ok=True, details={"sent": sent})

    def queue_talk_page_notice(self, ctx: RevisionContext, decision: Decision) -> None:
        if self.notifier is None or not self.policy.talk_page_message_enabled:
            return
        self.queue.push(self.notifier.build_job(ctx, decision))

    def _record(self, ctx: RevisionContext, decision: Decision) -> None:
        level = {OUTCOME_REVERTED: "SUCCESS", OUTCOME_FAILED: "ERROR", OUTCOME_CONFLICT: "WARNING"}.get(decision.outcome, "INFO")
        log_server_action(
            f"revision_{decision.outcome}",
            script_name=SCRIPT_NAME,
            level=level,
            context={
                "rev_id": ctx.rev_id,
                "page_id": ctx.page_id,
                "user": ctx.user.name,
                "probability": decision.probability,
                "threshold": self.policy.threshold,
                "revert_rev_id": decision.revert_rev_id,
                "reason": decision.reason,
            },
        )
        if decision.outcome == OUTCOME_REVERTED and decision.reason != "already_evaluated":
            log_to_discord(
                f"Reverted [[{ctx.page_title or ctx.page_id}]] rev {ctx.rev_id} by {ctx.user.name} "
                f"(p={decision.probability:.3f}){' [dry run]' if decision.reason == 'dry_run' else ''}",
                level="WARNING",
                script_name=SCRIPT_NAME,
                channel="reverts",
            )
