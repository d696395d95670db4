"""Append-only session persistence plus a mutable contract baseline."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from review_orchestrator.core.exceptions import SessionNotFoundError, StorageUnavailableError
from review_orchestrator.core.models import ContractSnapshot
from review_orchestrator.core.session_record import SessionRecord, SessionSummary

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[\w.-]+$")


class SessionStore(Protocol):
    """Persistence for finished sessions and the snapshot baseline."""

    async def save(self, record: SessionRecord) -> Path:
        ...

    async def list(self) -> list[SessionSummary]:
        ...

    async def load(self, session_id: str) -> SessionRecord:
        ...

    async def save_baseline(self, snapshot: ContractSnapshot) -> Path:
        ...

    async def load_baseline(self) -> ContractSnapshot | None:
        ...


class FileSessionStore:
    """
    Directory of immutable JSON session documents.

    Layout under the project root:
        <state_dir>/sessions/<session id>.json   one per session, never rewritten
        <state_dir>/baseline.json                latest contract snapshot (mutable)

    Writes use temp file + fsync + rename so a crash never leaves a partial
    document. Any filesystem failure surfaces as StorageUnavailableError.
    """

    SESSIONS_DIR = "sessions"
    BASELINE_FILE = "baseline.json"

    def __init__(self, project_root: Path, state_dir: str = ".review_orchestrator") -> None:
        self.project_root = project_root.resolve()
        self.state_dir = self.project_root / state_dir
        self.sessions_dir = self.state_dir / self.SESSIONS_DIR
        self.baseline_file = self.state_dir / self.BASELINE_FILE

    def _session_path(self, session_id: str) -> Path:
        if not SESSION_ID_PATTERN.match(session_id):
            raise SessionNotFoundError(session_id)
        return self.sessions_dir / f"{session_id}.json"

    async def save(self, record: SessionRecord) -> Path:
        """
        Persist a session record.

        Raises:
            StorageUnavailableError: If the directory is not writable or the
                session id was already persisted.
        """
        path = self._session_path(record.id)
        try:
            self.sessions_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot create {self.sessions_dir}: {e}") from e

        if path.exists():
            raise StorageUnavailableError(f"Session {record.id} already persisted; records are immutable")

        self._write_atomic(path, record.model_dump_json(indent=2))
        logger.info("Session %s saved to %s", record.id, path)
        return path

    async def list(self) -> list[SessionSummary]:
        """Summaries of every readable session, oldest first."""
        if not self.sessions_dir.exists():
            return []

        summaries = []
        for session_file in sorted(self.sessions_dir.glob("*.json")):
            try:
                summaries.append(self._load_from_file(session_file).to_summary_row())
            except StorageUnavailableError as e:
                logger.warning("Failed to read session %s: %s", session_file.name, e)
        return summaries

    async def load(self, session_id: str) -> SessionRecord:
        """
        Load one session record.

        Raises:
            SessionNotFoundError: If no such session exists.
            StorageUnavailableError: If the document cannot be read.
        """
        path = self._session_path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        return self._load_from_file(path)

    async def save_baseline(self, snapshot: ContractSnapshot) -> Path:
        """Replace the baseline snapshot."""
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot create {self.state_dir}: {e}") from e
        self._write_atomic(self.baseline_file, snapshot.model_dump_json(indent=2))
        logger.info("Baseline saved to %s", self.baseline_file)
        return self.baseline_file

    async def load_baseline(self) -> ContractSnapshot | None:
        """Load the baseline snapshot, or None if none was saved."""
        if not self.baseline_file.exists():
            return None
        try:
            return ContractSnapshot.model_validate_json(self.baseline_file.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StorageUnavailableError(f"Cannot read baseline {self.baseline_file}: {e}") from e

    def _write_atomic(self, path: Path, content: str) -> None:
        temp_file = path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            temp_file.replace(path)

            # Sync directory on POSIX so the new entry is durable
            if os.name == "posix":
                try:
                    dir_fd = os.open(str(path.parent), os.O_RDONLY)
                    try:
                        os.fsync(dir_fd)
                    finally:
                        os.close(dir_fd)
                except OSError as dir_sync_error:
                    logger.debug("Directory sync skipped: %s", dir_sync_error)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            logger.error("Failed to write %s: %s", path, e, exc_info=True)
            raise StorageUnavailableError(f"Cannot write {path}: {e}") from e

    def _load_from_file(self, path: Path) -> SessionRecord:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return SessionRecord.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StorageUnavailableError(f"Cannot read {path}: {e}") from e
