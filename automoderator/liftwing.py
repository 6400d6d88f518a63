# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from .models import MalformedScoreError, Score
from .settings import RuntimeSettings

LOGGER = logging.getLogger(__name__)

USER_AGENT_PREFIX = "mediawiki.ext.AutoModerator"
REVISION_NOT_FOUND_MARKER = "The MW API does not have any info related to the rev-id"
MAX_ATTEMPTS = 2


def build_user_agent(lang: str) -> str:
    return f"{USER_AGENT_PREFIX}.{lang}"


@dataclass(frozen=True)
class FetchResult:
    score: Score | None = None
    http_status: int | None = None
    error: str = ""
    error_type: str = ""
    allow_retries: bool = False
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.score is not None and not self.error


def _error_text(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "")[:300]
    if isinstance(payload, Mapping) and payload.get("error"):
        return str(payload["error"])[:300]
    return (response.text or "")[:300]


class LiftWingClient:
    """Fetch revert-risk scores from the Lift Wing inference service."""

    def __init__(
        self,
        model: str,
        lang: str,
        base_url: str,
        *,
        timeout: float = 10.0,
        host_header: str | None = None,
    ) -> None:
        self.model = model
        self.lang = lang
        self.base_url = base_url
        self.timeout = timeout
        self.host_header = host_header or None

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> LiftWingClient:
        host = settings.liftwing_host_header if settings.liftwing_add_host_header else None
        return cls(
            settings.liftwing_model,
            settings.score_lang,
            settings.liftwing_base_url,
            timeout=settings.liftwing_timeout_seconds,
            host_header=host,
        )

    @property
    def url(self) -> str:
        return self.url_for(self.model)

    def url_for(self, model: str | None = None) -> str:
        return f"{self.base_url}{model or self.model}:predict"

    def headers(self) -> dict[str, str]:
        headers = {"User-Agent": build_user_agent(self.lang), "Content-Type": "application/json"}
        if self.host_header:
            headers["Host"] = self.host_header
        return headers

    def _post(self, url: str, body: dict[str, Any]) -> requests.Response:
        return requests.post(url, json=body, headers=self.headers(), timeout=self.timeout)

    def fetch_score(self, rev_id: int, model: str | None = None) -> FetchResult:
        """
        Score one revision with `model`, or with the client's own model when it is not given.

        4xx answers are final. A 5xx answer or a network error is retried once with the
        same request. A 2xx answer that is not a usable score raises `MalformedScoreError`.
        """
        url = self.url_for(model)
        body = {"rev_id": int(rev_id), "lang": self.lang}
        last_status: int | None = None
        last_error = ""

        for attempt in range(1, MAX_ATTEMPTS + 1):
            LOGGER.debug("Requesting %s for rev %s (attempt %s)", url, rev_id, attempt)
            try:
                response = self._post(url, body)
            except requests.RequestException as exc:
                last_status = None
                last_error = f"request_error: {exc}"
                LOGGER.warning("Lift Wing request failed for rev %s: %s", rev_id, exc)
                continue

            status = response.status_code
            if 200 <= status < 300:
                return FetchResult(score=self._decode(response, rev_id), http_status=status, attempts=attempt)

            last_status = status
            last_error = f"http_{status}: {_error_text(response)}"
            if 400 <= status < 500:
                error_type = "ClientError"
                if status == 400 and _error_text(response).startswith(REVISION_NOT_FOUND_MARKER):
                    error_type = "RevisionNotFound"
                LOGGER.info("Lift Wing refused rev %s: %s", rev_id, last_error)
                return FetchResult(
                    http_status=status,
                    error=last_error,
                    error_type=error_type,
                    allow_retries=False,
                    attempts=attempt,
                )
            LOGGER.warning("Lift Wing server error for rev %s: %s", rev_id, last_error)

        return FetchResult(
            http_status=last_status,
            error=last_error,
            error_type="ServerError" if last_status is not None else "NetworkError",
            allow_retries=True,
            attempts=MAX_ATTEMPTS,
        )

    def _decode(self, response: requests.Response, rev_id: int) -> Score:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedScoreError(f"undecodable Lift Wing response for rev {rev_id}: {(response.text or '')[:200]}") from exc
        return Score.from_payload(payload)


def score_from_precomputed(
    scores: Mapping[Any, Any] | None,
    rev_id: int,
    model: str,
    wiki_db: str = "",
) -> Score | None:
    """
    Build a score from an ORES-style precomputed mapping
    `{rev_id: {model: {"score": {"probability": {"true": p}}}}}`.

    Returns None when the revision or model is absent.
    """
    if not scores:
        return None
    per_rev = scores.get(rev_id)
    if per_rev is None:
        per_rev = scores.get(str(rev_id))
    if not isinstance(per_rev, Mapping) or model not in per_rev:
        return None
    entry = per_rev[model]
    try:
        probability = entry["score"]["probability"]
    except (KeyError, TypeError) as exc:
        raise MalformedScoreError(f"precomputed score for rev {rev_id} has no probability") from exc
    if not isinstance(probability, Mapping):
        raise MalformedScoreError(f"precomputed score for rev {rev_id} is not a mapping")
    true_value = probability.get("true")
    false_value = probability.get("false")
    if false_value is None and isinstance(true_value, (int, float)) and not isinstance(true_value, bool):
        false_value = 1.0 - float(true_value)
    return Score(
        model_name=model,
        model_version=str(entry.get("version") or "") if isinstance(entry, Mapping) else "",
        wiki_db=wiki_db,
        revision_id=int(rev_id),
        output={"probabilities": {"true": true_value, "false": false_value}},
    )


class FixedScoreClient:
    """Scores every revision with the same probability (`testpass` / `testfail` clients)."""

    def __init__(self, probability: float, model: str = "revertrisk-language-agnostic", wiki_db: str = "enwiki") -> None:
        self.probability = float(probability)
        self.model = model
        self.wiki_db = wiki_db

    def fetch_score(self, rev_id: int, model: str | None = None) -> FetchResult:
        score = Score(
            model_name=model or self.model,
            model_version="3",
            wiki_db=self.wiki_db,
            revision_id=int(rev_id),
            output={
                "prediction": self.probability > 0.5,
                "probabilities": {"true": self.probability, "false": 1.0 - self.probability},
            },
        )
        return FetchResult(score=score, http_status=200, attempts=0)


def dump_score(score: Score) -> str:
    return json.dumps(
        {
            "model_name": score.model_name,
            "model_version": score.model_version,
            "wiki_db": score.wiki_db,
            "revision_id": score.revision_id,
            "output": dict(score.output),
        },
        ensure_ascii=False,
    )
