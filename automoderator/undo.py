# -*- coding: utf-8 -*-
from __future__ import annotations

import difflib


class UndoConflictError(RuntimeError):
    """The undo cannot be applied on top of the current page text."""


def _lines(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def _index_map(candidate: list[str], current: list[str]) -> dict[int, int]:
    """Map candidate line indices to current line indices for lines that survived unchanged."""
    mapping: dict[int, int] = {}
    matcher = difflib.SequenceMatcher(a=candidate, b=current, autojunk=False)
    for block in matcher.get_matching_blocks():
        for offset in range(block.size):
            mapping[block.a + offset] = block.b + offset
    return mapping


def _anchor(mapping: dict[int, int], index: int, candidate_size: int, current_size: int) -> int:
    if index in mapping:
        return mapping[index]
    if index > 0 and index - 1 in mapping:
        return mapping[index - 1] + 1
    if index == 0 and candidate_size == 0 and current_size == 0:
        return 0
    raise UndoConflictError(f"no anchor for insertion at candidate line {index}")


def compute_undo_content(target: str | None, candidate: str | None, current: str | None) -> str:
    """
    Undo the change `target -> candidate` on top of `current`.

    Each candidate-to-target hunk is replayed on current where the candidate lines it
    touches are still present and contiguous. Anything else is a conflict.
    """
    if target is None or candidate is None or current is None:
        raise UndoConflictError("norev")
    if current == candidate:
        return target

    candidate_lines = _lines(candidate)
    target_lines = _lines(target)
    current_lines = _lines(current)
    mapping = _index_map(candidate_lines, current_lines)

    edits: list[tuple[int, int, list[str]]] = []
    matcher = difflib.SequenceMatcher(a=candidate_lines, b=target_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        replacement = target_lines[j1:j2]
        if tag == "insert":
            start = _anchor(mapping, i1, len(candidate_lines), len(current_lines))
            edits.append((start, start, replacement))
            continue
        mapped = [mapping.get(index) for index in range(i1, i2)]
        if any(position is None for position in mapped):
            raise UndoConflictError(f"candidate lines {i1}-{i2} were changed since")
        first = mapped[0]
        if mapped != list(range(first, first + len(mapped))):
            raise UndoConflictError(f"candidate lines {i1}-{i2} are no longer contiguous")
        edits.append((first, first + len(mapped), replacement))

    merged = list(current_lines)
    for start, end, replacement in sorted(edits, key=lambda item: (item[0], item[1]), reverse=True):
        merged[start:end] = replacement
    return "".join(merged)
