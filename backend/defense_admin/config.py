"""Application configuration and path helpers."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from datetime import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

PACKAGE_DIR = Path(__file__).resolve().parent  # backend/defense_admin directory
BACKEND_DIR = PACKAGE_DIR.parent

logger = logging.getLogger(__name__)


def _candidate_roots() -> list[Path]:
    env_base = os.getenv("PROJECT_ROOT")
    candidates = []
    if env_base:
        candidates.append(Path(env_base))
    candidates.extend(
        [
            BACKEND_DIR.parent,  # repo root during local dev
            BACKEND_DIR,  # backend/ when running tests without full repo
            Path("/app"),  # docker image root
        ]
    )
    return candidates


def _resolve_base_dir() -> Path:
    for candidate in _candidate_roots():
        if (candidate / "setup.py").exists() or (candidate / "data").is_dir():
            return candidate
    return BACKEND_DIR


BASE_DIR = _resolve_base_dir()

DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
DATA_INPUT_DIR = DATA_DIR / "input"
DATA_OUTPUT_DIR = DATA_DIR / "output"
DEFAULT_STORE_PATH = DATA_DIR / "store.json"

CONFIG_CANDIDATES = ("defense_admin.yml", "defense_admin.yaml", "config.yml", "config.yaml")
ENV_PREFIX = "DEFENSE_ADMIN_"

DOCTORAL_DEGREES = ("PhD", "Doctor", "Associate Professor", "Professor", "Tiến sĩ")


@dataclass
class Settings:
    store_backend: str = "json"  # "json" or "memory"
    store_path: Path = DEFAULT_STORE_PATH
    slot_minutes: int = 60
    session_start: time = time(7, 30)
    session_end: time = time(17, 0)
    afternoon_start: time = time(13, 0)
    default_session_capacity: int = 8
    default_defense_quota: int = 5
    min_members: int = 4
    max_members: int = 5
    require_secretary: bool = True
    chair_policy: str = "degree"
    chair_degrees: Tuple[str, ...] = DOCTORAL_DEGREES
    rooms: List[str] = field(default_factory=list)
    default_lead_days: int = 14
    enforce_roles: bool = False
    admin_roles: Tuple[str, ...] = ("admin",)


def _normalize_keys(values: Dict[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in values.items():
        normalized_key = str(key).replace("-", "_").lower()
        if isinstance(value, dict):
            normalized[normalized_key] = _normalize_keys(value)
        else:
            normalized[normalized_key] = value
    return normalized


def _parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        # YAML 1.1 reads unquoted 07:30 as sexagesimal minutes
        return time(value // 60, value % 60)
    return time.fromisoformat(str(value).strip())


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [entry.strip() for entry in str(value).split(",") if entry.strip()]


def _coerce(name: str, value: Any) -> Any:
    if name == "store_path":
        return Path(value)
    if name in {"session_start", "session_end", "afternoon_start"}:
        return _parse_time(value)
    if name in {
        "slot_minutes",
        "default_session_capacity",
        "default_defense_quota",
        "min_members",
        "max_members",
        "default_lead_days",
    }:
        return int(value)
    if name in {"require_secretary", "enforce_roles"}:
        return _parse_bool(value)
    if name in {"chair_degrees", "admin_roles"}:
        return tuple(_parse_list(value))
    if name == "rooms":
        return _parse_list(value)
    return str(value)


def _find_config_file() -> Optional[Path]:
    explicit = os.getenv(f"{ENV_PREFIX}CONFIG")
    if explicit:
        return Path(explicit)
    for root in (BASE_DIR, DATA_DIR):
        for name in CONFIG_CANDIDATES:
            path = root / name
            if path.exists():
                return path
    return None


def _load_config_file(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain key/value mappings")
    return _normalize_keys(data)


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for item in fields(Settings):
        raw = os.getenv(f"{ENV_PREFIX}{item.name.upper()}")
        if raw is not None:
            overrides[item.name] = raw
    return overrides


def load_settings(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """Build settings from defaults, a YAML file, environment and explicit overrides.

    Later sources win. Unknown keys in the file are ignored with a warning.
    """
    values: Dict[str, Any] = {}
    config_path = path or _find_config_file()
    if config_path is not None:
        values.update(_load_config_file(config_path))
        logger.info("Loaded settings from %s", config_path)
    values.update(_env_overrides())
    if overrides:
        values.update(_normalize_keys(overrides))

    known = {item.name for item in fields(Settings)}
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown setting '%s'", key)
            continue
        if value is None:
            continue
        kwargs[key] = _coerce(key, value)

    settings = Settings(**kwargs)
    if settings.session_end <= settings.session_start:
        raise ValueError("session_end must be later than session_start")
    if settings.slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    if settings.min_members > settings.max_members:
        raise ValueError("min_members cannot exceed max_members")
    return settings


__all__ = [
    "BASE_DIR",
    "DATA_DIR",
    "DATA_INPUT_DIR",
    "DATA_OUTPUT_DIR",
    "DEFAULT_STORE_PATH",
    "Settings",
    "load_settings",
]
