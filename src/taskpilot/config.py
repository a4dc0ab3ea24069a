"""Runtime configuration loaded from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_DB_PATH = "taskpilot.db"
DEFAULT_MAX_OPEN_PRS = 1
DEFAULT_MIN_BATCH_SIZE = 8
DEFAULT_MAX_BATCH_SIZE = 12

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised when an environment value cannot be parsed."""


@dataclass
class Settings:
    """Taskpilot settings.

    Attributes:
        db_path: SQLite database path (":memory:" for an in-memory store).
        runner_url: Base URL of the external attempt runner. None disables handoff.
        webhook_secret: Shared secret for GitHub webhook signatures.
        test_mode: Skip webhook signature validation.
        safety_checks_enabled: Run repo/open-PR checks before executing tasks.
        max_open_prs: Open PRs allowed per project before autopilot pauses.
        min_batch_size: Lower bound used when chunking plan steps into batches.
        max_batch_size: Upper bound used when chunking plan steps into batches.
    """

    db_path: str = DEFAULT_DB_PATH
    runner_url: str | None = None
    webhook_secret: str | None = None
    test_mode: bool = False
    safety_checks_enabled: bool = True
    max_open_prs: int = DEFAULT_MAX_OPEN_PRS
    min_batch_size: int = DEFAULT_MIN_BATCH_SIZE
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            Parsed Settings.

        Raises:
            ConfigError: If a numeric or boolean variable is malformed.
        """
        env = os.environ if environ is None else environ
        settings = cls(
            db_path=env.get("TASKPILOT_DB_PATH", DEFAULT_DB_PATH),
            runner_url=env.get("TASKPILOT_RUNNER_URL") or None,
            webhook_secret=env.get("GITHUB_WEBHOOK_SECRET") or None,
            test_mode=_parse_bool(env, "TASKPILOT_TEST_MODE", False),
            safety_checks_enabled=_parse_bool(env, "TASKPILOT_SAFETY_CHECKS", True),
            max_open_prs=_parse_int(env, "TASKPILOT_MAX_OPEN_PRS", DEFAULT_MAX_OPEN_PRS),
            min_batch_size=_parse_int(env, "TASKPILOT_MIN_BATCH_SIZE", DEFAULT_MIN_BATCH_SIZE),
            max_batch_size=_parse_int(env, "TASKPILOT_MAX_BATCH_SIZE", DEFAULT_MAX_BATCH_SIZE),
        )
        if settings.min_batch_size < 1 or settings.max_batch_size < settings.min_batch_size:
            raise ConfigError(
                f"Invalid batch sizes: min={settings.min_batch_size}, "
                f"max={settings.max_batch_size}"
            )
        return settings


def _parse_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{name} must be non-negative, got {value}")
    return value
