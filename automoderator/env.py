# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path
from types import ModuleType

from .paths import ROOT_DIR

TRUE_VALUES = {"1", "true", "yes", "on"}


def _load_python_config(path: Path) -> ModuleType | None:
    if not path.exists():
        return None
    spec = spec_from_file_location("automoderator_runtime_config", path)
    if spec is None or spec.loader is None:
        return None
    module = module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _export_module_constants(module: ModuleType) -> None:
    for attr_name in dir(module):
        if not attr_name.isupper():
            continue
        value = getattr(module, attr_name)
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            value = ",".join(str(item) for item in value)
        os.environ.setdefault(attr_name, str(value))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        if not key:
            continue
        os.environ.setdefault(key, value.strip().strip('"').strip("'"))


def load_dotenv(root: Path | None = None) -> None:
    """
    Load runtime configuration: `config.<env>.py` (or `config.py`), then `.env` and `.env.<env>`.

    Variables already present in the process environment always win.
    """
    base = root or ROOT_DIR
    env_name = (os.environ.get("AUTOMOD_ENV") or "prod").strip().lower()
    config_path = base / f"config.{env_name}.py"
    if not config_path.exists():
        config_path = base / "config.py"
    module = _load_python_config(config_path)
    if module is not None:
        _export_module_constants(module)

    _load_env_file(base / ".env")
    if env_name:
        _load_env_file(base / f".env.{env_name}")


def get_env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(name, default)


def get_bool_env(name: str, default: bool = False) -> bool:
    raw = get_env(name)
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() in TRUE_VALUES


def get_int_env(name: str, default: int = 0) -> int:
    raw = get_env(name)
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def get_float_env(name: str, default: float = 0.0) -> float:
    raw = get_env(name)
    if raw is None:
        return default
    try:
        return float(str(raw).strip())
    except (TypeError, ValueError):
        return default


def get_csv_env(name: str, default: list[str] | tuple[str, ...] | None = None) -> list[str]:
    raw = get_env(name)
    if raw is None:
        return list(default or [])
    return [part.strip() for part in str(raw).split(",") if part.strip()]
