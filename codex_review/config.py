"""
Runtime configuration for codex-review.

Everything is sourced from the environment once, at startup, into an
immutable CodexReviewConfig. The one exception is the timeout override,
which is re-read for every invocation so an operator can tune it without
restarting the server.

The API credential is resolved through a secret reference
("env:OPENAI_API_KEY") and carried as an explicit value from then on.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .secrets import EnvSecretsProvider, SecretsProvider

logger = logging.getLogger(__name__)

API_KEY_ENV = "OPENAI_API_KEY"
API_KEY_REF = f"env:{API_KEY_ENV}"

ENV_TIMEOUT_MS = "CODEX_REVIEW_TIMEOUT_MS"
ENV_EXECUTABLE = "CODEX_REVIEW_EXECUTABLE"
ENV_DEFAULT_MODEL = "CODEX_REVIEW_DEFAULT_MODEL"
ENV_MAX_OUTPUT_BYTES = "CODEX_REVIEW_MAX_OUTPUT_BYTES"
ENV_AUDIT_LOG = "CODEX_REVIEW_AUDIT_LOG"

DEFAULT_EXECUTABLE = "codex"
DEFAULT_MODEL = "gpt-5-codex"
DEFAULT_TIMEOUT_MS = 300_000  # 5 minutes
KILL_GRACE_MS = 2_000


@dataclass(frozen=True)
class CodexReviewConfig:
    api_key: str | None = field(default=None, repr=False)
    executable: str = DEFAULT_EXECUTABLE
    default_model: str = DEFAULT_MODEL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    kill_grace_ms: int = KILL_GRACE_MS
    max_output_bytes: int | None = None  # None = unbounded
    audit_log: Path | None = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


def _positive_int(raw: str | None, *, name: str) -> int | None:
    if raw is None or raw.strip() == "":
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer")
        return None
    if value <= 0:
        logger.warning(f"Ignoring {name}={raw!r}: must be > 0")
        return None
    return value


def read_timeout_ms(environ: Mapping[str, str] | None = None, default: int = DEFAULT_TIMEOUT_MS) -> int:
    """Read the timeout override (ms) from the environment, falling back to `default`."""
    env = os.environ if environ is None else environ
    value = _positive_int(env.get(ENV_TIMEOUT_MS), name=ENV_TIMEOUT_MS)
    return default if value is None else value


def load_config(
    environ: Mapping[str, str] | None = None,
    *,
    secrets: SecretsProvider | None = None,
    api_key_ref: str = API_KEY_REF,
) -> CodexReviewConfig:
    """
    Build the configuration from environment variables.

    Args:
        environ: Environment mapping (defaults to os.environ)
        secrets: Provider used to resolve the API key reference
        api_key_ref: Secret reference for the API key

    Returns:
        A frozen CodexReviewConfig. A missing API key is not an error here;
        the handler reports it per call.
    """
    env = os.environ if environ is None else environ
    provider = secrets or EnvSecretsProvider(env)

    api_key = provider.get(api_key_ref) or None
    audit_log = env.get(ENV_AUDIT_LOG, "").strip()

    return CodexReviewConfig(
        api_key=api_key,
        executable=env.get(ENV_EXECUTABLE, "").strip() or DEFAULT_EXECUTABLE,
        default_model=env.get(ENV_DEFAULT_MODEL, "").strip() or DEFAULT_MODEL,
        timeout_ms=read_timeout_ms(env),
        max_output_bytes=_positive_int(env.get(ENV_MAX_OUTPUT_BYTES), name=ENV_MAX_OUTPUT_BYTES),
        audit_log=Path(audit_log).expanduser() if audit_log else None,
    )
