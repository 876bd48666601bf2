"""Append-only NDJSON history of test record transitions."""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from load_orchestrator.broadcaster import HistoryBroadcaster
from load_orchestrator.models.record import TestRecord, utcnow

log = logging.getLogger(__name__)

DEFAULT_TAIL_LIMIT = 50
MAX_TAIL_LIMIT = 1000


def history_entry(record: TestRecord) -> dict[str, Any]:
    """Timestamped snapshot of a record, as written to the log."""
    return {**record.to_json(), "timestamp": utcnow().isoformat()}


def clamp(value: int, lower: int, upper: int) -> int:
    """Bound ``value`` to ``[lower, upper]``."""
    return max(lower, min(upper, value))


class HistoryLog:
    """Durable history store holding one JSON record per line.

    Appends are best-effort: a write failure is logged and swallowed so the
    run being recorded is never affected. Reads of a missing file behave as
    reads of an empty log.
    """

    def __init__(
        self, path: Path, broadcaster: HistoryBroadcaster | None = None
    ) -> None:
        self.path = path
        self.broadcaster = broadcaster or HistoryBroadcaster()

    def exists(self) -> bool:
        """Whether the durable file is present."""
        return self.path.is_file()

    def append(self, entry: Mapping[str, Any]) -> bool:
        """Append one entry and notify live subscribers."""
        line = json.dumps(entry, separators=(",", ":")) + "\n"
        try:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line)
        except OSError as exc:
            log.error("Failed to write history to %s: %s", self.path, exc)
            return False

        self.broadcaster.publish(entry)
        return True

    def tail(self, limit: int = DEFAULT_TAIL_LIMIT) -> list[dict[str, Any]]:
        """Return the most recent entries, oldest first.

        Lines that are not valid JSON objects come back as ``{"raw": line}``.
        """
        lines = self._read_lines()
        limit = clamp(limit, 1, MAX_TAIL_LIMIT)
        return [_decode(line) for line in lines[-limit:]]

    def export_raw(self) -> bytes:
        """Return the whole store as stored."""
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return b""

    def truncate_to_last(self, max_entries: int) -> int:
        """Keep only the newest ``max_entries`` lines; returns how many remain."""
        if not self.exists():
            return 0

        kept = self._read_lines()[-max(1, max_entries) :]
        content = "".join(f"{line}\n" for line in kept)

        scratch = self.path.with_name(self.path.name + ".tmp")
        scratch.write_text(content, encoding="utf-8")
        scratch.replace(self.path)

        log.info("Trimmed history %s to %d entries", self.path, len(kept))
        return len(kept)

    def clear(self) -> bool:
        """Delete the store; returns whether a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        log.info("Cleared history %s", self.path)
        return True

    def _read_lines(self) -> list[str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return [line for line in text.splitlines() if line.strip()]


def _decode(line: str) -> dict[str, Any]:
    try:
        value = json.loads(line)
    except json.JSONDecodeError:
        return {"raw": line}
    if not isinstance(value, dict):
        return {"raw": line}
    return value
