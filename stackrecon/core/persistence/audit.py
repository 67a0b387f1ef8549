"""
Audit ledger — append-only deployment log.

Every ``deploy`` run appends one entry per stack plus one summary entry
to an NDJSON (newline-delimited JSON) file, so the history of which
exports were retained, which stacks failed and why survives the process.

Nothing rewrites or prunes the file; readers tolerate corrupt lines.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = ".state"
DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """One stack outcome, or the summary of a whole run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    entry_type: str = ""           # stack | run

    app: str = ""
    stage: str = ""
    stack: str = ""                # empty for run summaries

    status: str = ""               # stack state, or ok/partial/failed/cancelled
    attempts: int = 0
    duration_ms: int = 0
    retained_exports: list[str] = Field(default_factory=list)

    error: str | None = None
    error_kind: str | None = None
    export_name: str | None = None
    consumer: str | None = None

    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Appends deploy runs to ``<app root>/.state/audit.ndjson``.

    One JSON object per line. Writing never raises: a ledger that cannot
    be written is logged and the deploy result stands on its own.
    """

    def __init__(self, path: Path | None = None, app_root: Path | None = None):
        base = app_root if app_root is not None else Path()
        self._path = path or base / DEFAULT_AUDIT_DIR / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        self.write_many([entry])

    def write_many(self, entries: list[AuditEntry]) -> None:
        """Append entries in order with a single open of the ledger."""
        if not entries:
            return
        payload = "".join(
            json.dumps(e.model_dump(mode="json"), ensure_ascii=False) + "\n" for e in entries
        )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as ledger:
                ledger.write(payload)
        except OSError as e:
            logger.error("Cannot append to audit ledger %s: %s", self._path, e)
            return
        logger.debug("Appended %d audit entries to %s", len(entries), self._path)

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first. Corrupt lines are skipped."""
        return list(self._iter_entries())

    def read_run(self, run_id: str) -> list[AuditEntry]:
        """All entries written by one deploy run."""
        return [e for e in self._iter_entries() if e.run_id == run_id]

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]

    def _iter_entries(self) -> Iterator[AuditEntry]:
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self._path, e)
            return

        for number, raw in enumerate(lines, start=1):
            if not raw.strip():
                continue
            try:
                yield AuditEntry.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("%s:%d: skipping corrupt entry (%s)", self._path.name, number, e)
