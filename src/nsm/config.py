from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class StoreSettings:
    backend: str = "sqlite"
    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 10.0
    user_id: Optional[str] = None
    user_email: Optional[str] = None


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "NailStudioManager") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "studio.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def load_store_settings(env: Mapping[str, str] | None = None) -> StoreSettings:
    env = os.environ if env is None else env

    backend = env.get("NSM_STORE_BACKEND", "sqlite").strip().lower() or "sqlite"
    if backend not in ("sqlite", "rest"):
        raise ValueError(f"Unknown NSM_STORE_BACKEND: {backend!r} (expected 'sqlite' or 'rest')")

    url = env.get("NSM_STORE_URL", "").strip() or None
    api_key = env.get("NSM_STORE_KEY", "").strip() or None
    if backend == "rest" and (not url or not api_key):
        raise ValueError("NSM_STORE_URL and NSM_STORE_KEY are required for the rest backend")

    raw_timeout = env.get("NSM_STORE_TIMEOUT", "").strip()
    timeout = float(raw_timeout) if raw_timeout else 10.0
    if timeout <= 0:
        raise ValueError("NSM_STORE_TIMEOUT must be > 0")

    return StoreSettings(
        backend=backend,
        url=url,
        api_key=api_key,
        timeout=timeout,
        user_id=env.get("NSM_USER_ID", "").strip() or None,
        user_email=env.get("NSM_USER_EMAIL", "").strip() or None,
    )
