# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest

from automoderator import task_control
from automoderator.env import get_bool_env, get_csv_env, get_float_env, get_int_env, load_dotenv
from automoderator.files import append_jsonl, read_json, read_jsonl, write_json
from automoderator.locking import LockUnavailableError, hold_lock


def test_load_dotenv_reads_config_and_env_files(tmp_path, monkeypatch):
    for key in ("AUTOMOD_ENV", "AUTOMOD_LANG", "AUTOMOD_POLICY_SKIP_TAGS", "AUTOMOD_RC_LIMIT", "AUTOMOD_KEEP"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("AUTOMOD_KEEP", "from-process")
    (tmp_path / "config.py").write_text(
        'AUTOMOD_LANG = "fr"\nAUTOMOD_POLICY_SKIP_TAGS = ["rollback", "undo"]\nlowercase_ignored = 1\n',
        encoding="utf-8",
    )
    (tmp_path / ".env").write_text(
        "# comment\nexport AUTOMOD_RC_LIMIT=250\nAUTOMOD_KEEP='from-file'\nnot a pair\n",
        encoding="utf-8",
    )

    load_dotenv(tmp_path)

    assert os.environ["AUTOMOD_LANG"] == "fr"
    assert get_csv_env("AUTOMOD_POLICY_SKIP_TAGS") == ["rollback", "undo"]
    assert get_int_env("AUTOMOD_RC_LIMIT") == 250
    assert os.environ["AUTOMOD_KEEP"] == "from-process"
    assert "lowercase_ignored" not in os.environ
    for key in ("AUTOMOD_LANG", "AUTOMOD_POLICY_SKIP_TAGS", "AUTOMOD_RC_LIMIT"):
        os.environ.pop(key, None)


def test_env_helpers_fall_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("AUTOMOD_TEST_INT", "many")
    monkeypatch.setenv("AUTOMOD_TEST_FLOAT", "")
    monkeypatch.setenv("AUTOMOD_TEST_BOOL", "Yes")
    assert get_int_env("AUTOMOD_TEST_INT", 4) == 4
    assert get_float_env("AUTOMOD_TEST_FLOAT", 0.5) == 0.5
    assert get_bool_env("AUTOMOD_TEST_BOOL") is True
    assert get_bool_env("AUTOMOD_TEST_MISSING", True) is True


def test_json_helpers(tmp_path):
    target = tmp_path / "nested" / "state.json"
    assert read_json(target, default={"empty": True}) == {"empty": True}
    write_json(target, {"last_revid": 12})
    assert read_json(target, default=None) == {"last_revid": 12}

    target.write_text("{broken", encoding="utf-8")
    assert read_json(target, default=[]) == []

    log = tmp_path / "actions.jsonl"
    append_jsonl(log, {"action": "a"})
    with log.open("a", encoding="utf-8") as handle:
        handle.write("garbage\n\n")
    append_jsonl(log, {"action": "b"})
    assert [record["action"] for record in read_jsonl(log)] == ["a", "b"]


def test_task_lock_is_exclusive(tmp_path):
    with hold_lock("watch", tmp_path):
        with pytest.raises(LockUnavailableError):
            with hold_lock("watch", tmp_path):
                pass
        with hold_lock("worker", tmp_path):
            pass
    with hold_lock("watch", tmp_path):
        pass


def test_runtime_pauses(tmp_path, monkeypatch):
    kill = tmp_path / "kill.switch"
    maintenance = tmp_path / "maintenance.mode"
    monkeypatch.setattr(task_control, "KILL_SWITCH_FILE", kill)
    monkeypatch.setattr(task_control, "MAINTENANCE_FILE", maintenance)

    task_control.ensure_runtime_allowed("watch")

    maintenance.touch()
    with pytest.raises(task_control.RunPausedError, match="maintenance"):
        task_control.ensure_runtime_allowed("watch")
    monkeypatch.setenv("AUTOMOD_ALLOW_DURING_MAINTENANCE", "1")
    task_control.ensure_runtime_allowed("watch")

    kill.touch()
    with pytest.raises(task_control.RunPausedError, match="kill switch"):
        task_control.ensure_runtime_allowed("watch")


def test_save_page_or_dry_run(monkeypatch):
    page = MagicMock()
    page.title.return_value = "User talk:Example"

    assert task_control.save_page_or_dry_run(page, script_name="t", summary="s", minor=True, bot=False)
    page.save.assert_called_once_with(summary="s", minor=True, bot=False)

    page.save.reset_mock()
    monkeypatch.setenv("AUTOMOD_DRY_RUN", "true")
    assert not task_control.save_page_or_dry_run(page, script_name="t", summary="s", minor=True, bot=False)
    page.save.assert_not_called()
