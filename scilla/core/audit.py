"""Audit trail of transaction and workflow outcomes.

Every outcome reaches the loguru log. When ``audit_log`` is configured the
same entries are appended to a JSON lines file that ``scilla inspect audit``
reads back.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from loguru import logger

# Outcome statuses the operator has to follow up on.
ATTENTION_STATUSES = frozenset({"failed", "timed_out"})


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """One recorded outcome."""

    event: str
    level: str
    fields: dict[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_json(self) -> str:
        record = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "event": self.event,
            "fields": _plain(self.fields),
        }
        return json.dumps(record, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, line: str) -> AuditEntry:
        """Parse a line written by :meth:`to_json`.

        Raises:
            ValueError: If the line is not an audit record.
        """
        record = json.loads(line)
        if not isinstance(record, dict) or "event" not in record:
            raise ValueError(f"not an audit record: {line[:80]!r}")
        return cls(
            event=str(record["event"]),
            level=str(record.get("level", "INFO")),
            fields=dict(record.get("fields") or {}),
            timestamp=datetime.fromisoformat(record["timestamp"]),
        )


def _plain(value: object) -> object:
    # Signatures, pubkeys and other solders values are stored as base58 text.
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class AuditSink(Protocol):
    def write(self, entry: AuditEntry) -> None: ...


class LogAuditSink:
    """Send entries to loguru at the entry's level."""

    def write(self, entry: AuditEntry) -> None:
        detail = " ".join(f"{key}={value}" for key, value in entry.fields.items())
        logger.log(entry.level, "[audit] {} {}", entry.event, detail)


class JsonLinesAuditSink:
    """Append entries to a JSON lines file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, entry: AuditEntry) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(entry.to_json())
            handle.write("\n")


class AuditTrail:
    """Records outcomes to every configured sink."""

    def __init__(self, *sinks: AuditSink) -> None:
        self.sinks: list[AuditSink] = list(sinks) or [LogAuditSink()]

    @classmethod
    def for_session(cls, audit_log: Path | None = None) -> AuditTrail:
        sinks: list[AuditSink] = [LogAuditSink()]
        if audit_log is not None:
            sinks.append(JsonLinesAuditSink(audit_log))
        return cls(*sinks)

    def transaction(self, intent_kind: str, status: str, **fields: object) -> None:
        """Record the outcome of one intent; failures and unknowns as warnings."""
        level = "WARNING" if status in ATTENTION_STATUSES else "INFO"
        self.write(
            AuditEntry(
                "transaction_outcome",
                level,
                {"intent": intent_kind, "status": status, **fields},
            )
        )

    def step_completed(self, workflow: str, step: str, **fields: object) -> None:
        context = {"workflow": workflow, "step": step, **fields}
        self.write(AuditEntry("workflow_step_completed", "INFO", context))

    def write(self, entry: AuditEntry) -> None:
        for sink in self.sinks:
            sink.write(entry)


def read_audit_log(path: Path, tail: int = 0) -> list[AuditEntry | str]:
    """Return the last ``tail`` entries of an audit file (all when ``tail`` <= 0).

    Lines that do not parse are returned as stripped text so nothing is hidden
    from the operator. Blank lines are skipped.
    """
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as handle:
        lines = list(deque(handle, maxlen=tail if tail > 0 else None))
    entries: list[AuditEntry | str] = []
    for line in lines:
        text = line.strip()
        if not text:
            continue
        try:
            entries.append(AuditEntry.from_json(text))
        except (ValueError, KeyError, TypeError):
            entries.append(text)
    return entries
