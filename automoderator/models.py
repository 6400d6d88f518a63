# -*- coding: utf-8 -*-
from __future__ import annotations

import ipaddress
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping

TAG_FAILED = "automod-failed"
TAG_PASSED = "automod-passed"
TERMINAL_TAGS = frozenset({TAG_FAILED, TAG_PASSED})

OUTCOME_REVERTED = "reverted"
OUTCOME_PASSED = "passed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_CONFLICT = "conflict"
OUTCOME_FAILED = "failed"


class MalformedScoreError(ValueError):
    """The scoring model returned something that is not a usable score."""


def normalize_username(name: str) -> str:
    return (name or "").strip().replace("_", " ").casefold()


@dataclass(frozen=True)
class UserRef:
    user_id: int
    name: str

    @property
    def is_anonymous(self) -> bool:
        try:
            ipaddress.ip_address(self.name.strip())
        except ValueError:
            return False
        return True

    @property
    def is_external(self) -> bool:
        return ">" in self.name

    def same_as(self, other: UserRef | None) -> bool:
        if other is None:
            return False
        if self.user_id and other.user_id:
            return self.user_id == other.user_id
        return normalize_username(self.name) == normalize_username(other.name)


@dataclass(frozen=True)
class RevisionContext:
    """A candidate edit, built once per edit event."""

    rev_id: int
    parent_rev_id: int | None
    page_id: int
    user: UserRef
    original_rev_id: int | None = None
    tags: frozenset[str] = frozenset()
    namespace: int = 0
    page_title: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", frozenset(self.tags))
        if not self.original_rev_id:
            object.__setattr__(self, "original_rev_id", None)

    @property
    def is_page_creation(self) -> bool:
        return not self.parent_rev_id


@dataclass(frozen=True)
class RevisionRecord:
    rev_id: int
    parent_id: int | None
    page_id: int
    user: UserRef | None
    content: str | None = None
    content_model: str = "wikitext"
    timestamp: datetime | None = None


class TagSet:
    """Ordered set of change tags; every operation returns a new set."""

    __slots__ = ("_items",)

    def __init__(self, tags: Iterable[str] = ()) -> None:
        items: dict[str, None] = {}
        for tag in tags:
            clean = str(tag).strip()
            if clean:
                items.setdefault(clean, None)
        self._items = tuple(items)

    def union(self, *others: Iterable[str]) -> TagSet:
        merged = list(self._items)
        for other in others:
            merged.extend(other)
        return TagSet(merged)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, tag: object) -> bool:
        return tag in self._items

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TagSet):
            return set(self._items) == set(other._items)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._items))

    def __repr__(self) -> str:
        return f"TagSet({list(self._items)!r})"

    def as_tuple(self) -> tuple[str, ...]:
        return self._items


@dataclass(frozen=True)
class Score:
    model_name: str
    model_version: str
    wiki_db: str
    revision_id: int | None
    output: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: object) -> Score:
        if not isinstance(payload, Mapping):
            raise MalformedScoreError(f"score payload must be an object, got {type(payload).__name__}")
        if payload.get("error"):
            raise MalformedScoreError(f"score payload carries an error: {payload.get('error')}")
        output = payload.get("output")
        if not isinstance(output, Mapping):
            raise MalformedScoreError("score payload has no 'output' object")
        revision_id = payload.get("revision_id")
        try:
            parsed_rev = int(revision_id) if revision_id is not None else None
        except (TypeError, ValueError):
            parsed_rev = None
        return cls(
            model_name=str(payload.get("model_name") or ""),
            model_version=str(payload.get("model_version") or ""),
            wiki_db=str(payload.get("wiki_db") or ""),
            revision_id=parsed_rev,
            output=dict(output),
        )

    @property
    def probability(self) -> float:
        """Probability that the edit should be reverted (`output.probabilities.true`)."""
        probabilities = self.output.get("probabilities")
        if not isinstance(probabilities, Mapping) or "true" not in probabilities:
            raise MalformedScoreError("score has no output.probabilities.true")
        raw = probabilities["true"]
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise MalformedScoreError(f"output.probabilities.true is not a number: {raw!r}")
        value = float(raw)
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            raise MalformedScoreError(f"output.probabilities.true out of range: {value}")
        return value


@dataclass(frozen=True)
class Decision:
    outcome: str
    tags: TagSet = field(default_factory=TagSet)
    probability: float | None = None
    revert_rev_id: int | None = None
    restored_rev_id: int | None = None
    reason: str = ""

    @property
    def reverted(self) -> bool:
        return self.outcome == OUTCOME_REVERTED and self.restored_rev_id is not None

    @property
    def evaluated(self) -> bool:
        return self.outcome in {OUTCOME_REVERTED, OUTCOME_PASSED}
