from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from mbconsole.core.reconciler import COLUMN_CHOICES

DEFAULT_URL = "http://127.0.0.1:8502"
ENV_URL = "MBCONSOLE_URL"
ENV_TOKEN = "MBCONSOLE_TOKEN"


@dataclass(slots=True)
class ConsoleSettings:
    """Client-side settings for the console."""

    base_url: str = DEFAULT_URL
    token: Optional[str] = None
    auto_connect: bool = True
    columns: int = 8
    timeout_s: float = 5.0
    trace_db: Optional[str] = None
    log_level: str = "WARNING"

    def validate(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if self.columns not in COLUMN_CHOICES:
            raise ValueError(f"columns must be one of {COLUMN_CHOICES}")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "ConsoleSettings":
        environ = os.environ if environ is None else environ
        changes: Dict[str, Any] = {}
        if environ.get(ENV_URL):
            changes["base_url"] = environ[ENV_URL]
        if environ.get(ENV_TOKEN):
            changes["token"] = environ[ENV_TOKEN]
        return replace(self, **changes) if changes else self


def _from_raw(raw: Dict[str, Any]) -> ConsoleSettings:
    known = {f.name for f in fields(ConsoleSettings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(unknown)}")
    defaults = ConsoleSettings()
    token = raw.get("token")
    trace_db = raw.get("trace_db")
    settings = ConsoleSettings(
        base_url=str(raw.get("base_url", defaults.base_url)).rstrip("/"),
        token=str(token) if token else None,
        auto_connect=bool(raw.get("auto_connect", defaults.auto_connect)),
        columns=int(raw.get("columns", defaults.columns)),
        timeout_s=float(raw.get("timeout_s", defaults.timeout_s)),
        trace_db=str(trace_db) if trace_db else None,
        log_level=str(raw.get("log_level", defaults.log_level)).upper(),
    )
    settings.validate()
    return settings


def load_settings(
    path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ConsoleSettings:
    """Load settings from a YAML/JSON file, then apply environment overrides.

    With no path the defaults are used.
    """
    if path is None:
        return ConsoleSettings().with_env(environ)

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("Settings must be an object/dict")

    return _from_raw(raw).with_env(environ)
