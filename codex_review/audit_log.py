"""
Invocation audit log.

One JSON Lines entry per handled review call: what was asked for (model,
effort, prompt size) and how it ended. Prompt and review text are never
recorded.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class AuditEntry:
    """A single audit log entry."""
    timestamp: str
    operation: str
    model: str
    effort: str
    outcome: str  # "success" or a FailureKind value
    duration_ms: int
    prompt_bytes: int
    output_bytes: int = 0
    output_file: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "model": self.model,
            "effort": self.effort,
            "outcome": self.outcome,
            "duration_ms": self.duration_ms,
            "prompt_bytes": self.prompt_bytes,
            "output_bytes": self.output_bytes,
            "output_file": self.output_file,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        """Create from dictionary."""
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            model=data.get("model", ""),
            effort=data.get("effort", ""),
            outcome=data.get("outcome", ""),
            duration_ms=int(data.get("duration_ms", 0)),
            prompt_bytes=int(data.get("prompt_bytes", 0)),
            output_bytes=int(data.get("output_bytes", 0)),
            output_file=data.get("output_file"),
            metadata=data.get("metadata", {}),
        )


def log_invocation(
    log_path: Path,
    *,
    model: str,
    effort: str,
    outcome: str,
    duration_ms: int,
    prompt_bytes: int,
    output_bytes: int = 0,
    output_file: str | None = None,
    operation: str = "codex_review",
    metadata: dict[str, Any] | None = None,
) -> AuditEntry:
    """
    Append one entry to the audit log.

    Args:
        log_path: JSON Lines file (parent directories are created)
        model: Model passed to codex
        effort: Reasoning effort passed to codex
        outcome: "success" or the failure kind
        duration_ms: Wall-clock time of the call
        prompt_bytes: UTF-8 size of the prompt
        output_bytes: UTF-8 size of the review text (0 on failure)
        output_file: Where the review was saved, if anywhere

    Returns:
        The created audit entry
    """
    entry = AuditEntry(
        timestamp=datetime.now(timezone.utc).isoformat(),
        operation=operation,
        model=model,
        effort=effort,
        outcome=outcome,
        duration_ms=duration_ms,
        prompt_bytes=prompt_bytes,
        output_bytes=output_bytes,
        output_file=output_file,
        metadata=metadata or {},
    )

    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Append as JSON Lines format (one JSON object per line)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict()) + "\n")

    return entry


def read_audit_log(log_path: Path, last_n: int | None = None) -> list[AuditEntry]:
    """
    Read entries from the audit log.

    Args:
        log_path: JSON Lines file
        last_n: If specified, return only the last N entries

    Returns:
        List of audit entries, oldest first
    """
    if not log_path.exists():
        return []

    entries = []
    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    entries.append(AuditEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError):
                    continue

    if last_n is not None:
        entries = entries[-last_n:]

    return entries
