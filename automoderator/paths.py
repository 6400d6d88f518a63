# -*- coding: utf-8 -*-
from __future__ import annotations

from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
LOG_DIR = ROOT_DIR / "logs"
BOT_LOG_FILE = ROOT_DIR / "bot.logs"
STATE_DIR = ROOT_DIR / "state"
JOB_QUEUE_FILE = STATE_DIR / "job_queue.json"
DEAD_LETTER_FILE = STATE_DIR / "dead_letter.jsonl"
CHECKPOINT_FILE = STATE_DIR / "watch_checkpoint.json"
CONTROL_DIR = ROOT_DIR / "control"
KILL_SWITCH_FILE = CONTROL_DIR / "kill.switch"
MAINTENANCE_FILE = CONTROL_DIR / "maintenance.mode"


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path
