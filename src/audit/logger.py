"""Relay audit trail — append-only JSON Lines with a SHA-256 hash chain."""

from __future__ import annotations

import fcntl
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path

from src.models import AuditEvent


@dataclass
class ChainValidationResult:
    valid: bool
    entries: int = 0
    broken_at_line: int | None = None


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Check that every entry's ``prev_hash`` matches the line before it."""
    text = log_path.read_text().strip()
    if not text:
        return ChainValidationResult(valid=True)

    lines = text.split("\n")
    prev_line: str | None = None
    for lineno, line in enumerate(lines, start=1):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            return ChainValidationResult(
                valid=False, entries=lineno - 1, broken_at_line=lineno,
            )
        expected = _line_hash(prev_line) if prev_line is not None else None
        if entry.get("prev_hash") != expected:
            return ChainValidationResult(
                valid=False, entries=lineno - 1, broken_at_line=lineno,
            )
        prev_line = line

    return ChainValidationResult(valid=True, entries=len(lines))


class AuditLogger:
    """Appends relay events (dispatches, webhooks, callbacks) to a JSONL file.

    Each line carries the SHA-256 of the previous line so truncation or
    editing of the trail can be detected with :func:`validate_audit_chain`.
    """

    def __init__(self, log_path: str) -> None:
        self.log_path = Path(log_path)
        self._last_line: str | None = None
        if self.log_path.exists():
            existing = self.log_path.read_text().strip()
            if existing:
                self._last_line = existing.rsplit("\n", 1)[-1]

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        data = json.loads(event.model_dump_json(exclude_none=True))
        data["prev_hash"] = (
            _line_hash(self._last_line) if self._last_line is not None else None
        )
        line = json.dumps(data, separators=(",", ":"))

        lock_file = self.log_path.parent / f".{self.log_path.name}.lock"
        with open(lock_file, "w") as lf:
            fcntl.flock(lf, fcntl.LOCK_EX)
            try:
                with open(self.log_path, "a") as f:
                    f.write(line + "\n")
            finally:
                fcntl.flock(lf, fcntl.LOCK_UN)

        self._last_line = line
