#!/usr/bin/env python3
"""Settings file loading (~/.seher/settings.json).

{
  "agents": [{"command": "claude", "args": ["--model", "opus"]},
             {"command": "copilot", "args": []}],
  "probe_retries": 3,
  "retry_backoff": 2.0,
  "max_wait": null,
  "timeout": 15
}

Requires: pydantic
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from cookie_models import DEFAULT_AGENT, AgentConfig, SeherError

logger = logging.getLogger(__name__)

SETTINGS_ENV = "SEHER_SETTINGS"


class SettingsError(SeherError): pass


class AgentEntry(BaseModel):
    """One entry of the ``agents`` list."""

    command: str = Field(min_length=1, description="Executable to launch")
    args: List[str] = Field(default_factory=list, description="Arguments placed before the user's own")

    def to_config(self) -> AgentConfig:
        return AgentConfig(command=self.command, args=tuple(self.args))


class SettingsFile(BaseModel):
    """The settings file as written on disk."""

    agents: Optional[List[AgentEntry]] = None
    probe_retries: int = Field(default=3, ge=0)
    retry_backoff: float = Field(default=2.0, ge=0.0)
    max_wait: Optional[float] = Field(default=None, ge=0.0, description="Seconds; null waits indefinitely")
    timeout: float = Field(default=15.0, ge=0.0, description="Per-request HTTP timeout in seconds")


@dataclass
class Settings:
    agents: List[AgentConfig] = field(default_factory=lambda: [DEFAULT_AGENT])
    probe_retries: int = 3
    retry_backoff: float = 2.0
    max_wait: Optional[float] = None
    timeout: float = 15.0

    @classmethod
    def from_dict(cls, data: Any) -> "Settings":
        try:
            parsed = SettingsFile.model_validate(data)
        except ValidationError as e:
            raise SettingsError(f"Invalid settings: {_describe(e)}") from None

        agents = [entry.to_config() for entry in parsed.agents or []]
        return cls(
            agents=agents or [DEFAULT_AGENT],
            probe_retries=parsed.probe_retries,
            retry_backoff=parsed.retry_backoff,
            max_wait=parsed.max_wait,
            timeout=parsed.timeout,
        )


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"]) or "settings"
        problems.append(f"{where}: {item['msg']}")
    return "; ".join(problems)


def settings_path() -> Path:
    override = os.environ.get(SETTINGS_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".seher" / "settings.json"


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings, falling back to defaults when the file is absent.

    Raises:
        SettingsError: File exists but is not valid settings JSON.
    """
    path = Path(path) if path is not None else settings_path()
    if not path.exists():
        logger.debug("No settings at %s, using defaults", path)
        return Settings()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SettingsError(f"Cannot read {path}: {e}") from None

    return Settings.from_dict(data)
