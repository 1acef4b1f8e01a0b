"""
Secrets reference provider.

Secrets are configured as references (e.g., "env:OPENAI_API_KEY"), not raw
values. Only the reference ever appears in logs or audit entries.

The reference format is: "<provider>:<key>"
- env:VAR_NAME - environment variable
"""

from __future__ import annotations

import os
from typing import Mapping, Protocol


class SecretsProvider(Protocol):
    """Protocol for resolving secret references to values."""

    def get(self, ref: str) -> str | None:
        """
        Resolve a secret reference to its value.

        Args:
            ref: Secret reference (e.g., "env:OPENAI_API_KEY")

        Returns:
            The secret value, or None if not found.
        """
        ...

    def supports(self, ref: str) -> bool:
        """Check if this provider can handle the given reference."""
        ...


class EnvSecretsProvider:
    """
    Resolve secrets from environment variables.

    Reference format: "env:VAR_NAME"
    Example: "env:OPENAI_API_KEY" resolves to os.environ["OPENAI_API_KEY"]
    """

    PREFIX = "env:"

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        env = os.environ if self._environ is None else self._environ
        value = env.get(ref[len(self.PREFIX) :])
        # Empty string counts as unset
        return value or None

