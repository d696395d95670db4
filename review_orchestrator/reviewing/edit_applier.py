"""Sequential file edits with optimistic concurrency checks and rollback."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path

from review_orchestrator.core.exceptions import EditConflictError, RollbackError
from review_orchestrator.core.models import ChangeProposal, LineRange

logger = logging.getLogger(__name__)


class FileEditor:
    """
    Applies change proposals one at a time.

    The file is re-read immediately before each edit and the target lines are
    compared against the digest captured when the proposal was built. The
    first time a file is touched its original content is kept so the edit
    can be rolled back.
    """

    def __init__(self, project_root: Path, dry_run: bool = False) -> None:
        self.project_root = project_root.resolve()
        self.dry_run = dry_run
        self._originals: dict[str, str] = {}

    def _path(self, file: str) -> Path:
        path = Path(file)
        return path if path.is_absolute() else self.project_root / path

    def _read_lines(self, file: str) -> list[str] | None:
        path = self._path(file)
        try:
            return path.read_text(encoding="utf-8").splitlines(keepends=True)
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Cannot read %s: %s", path, e)
            return None

    @staticmethod
    def _digest_lines(lines: list[str]) -> str:
        return hashlib.sha1("".join(lines).encode("utf-8")).hexdigest()

    def digest(self, file: str, line_range: LineRange) -> str | None:
        """Digest of the target lines, or None if they cannot be read."""
        lines = self._read_lines(file)
        if lines is None or line_range.end > len(lines):
            return None
        return self._digest_lines(lines[line_range.start - 1 : line_range.end])

    def original_digest(self, file: str, line_range: LineRange) -> str | None:
        """
        Digest of the target lines as they were before this editor touched the file.

        Findings carry line numbers from the pre-fix analysis; comparing
        against this digest makes a range shifted by an earlier edit
        surface as a conflict.
        """
        if file not in self._originals:
            return self.digest(file, line_range)
        lines = self._originals[file].splitlines(keepends=True)
        if line_range.end > len(lines):
            return None
        return self._digest_lines(lines[line_range.start - 1 : line_range.end])

    def apply(self, proposal: ChangeProposal) -> None:
        """
        Replace the proposal's line range with its payload.

        Raises:
            EditConflictError: If the file is unreadable, too short, or the
                target lines changed since the proposal was built.
            OSError: If the write fails; the file is left as it was.
        """
        lines = self._read_lines(proposal.file)
        if lines is None:
            raise EditConflictError(proposal.file, "file not readable")

        start, end = proposal.line_range.start, proposal.line_range.end
        if end > len(lines):
            raise EditConflictError(
                proposal.file, f"range {proposal.line_range} beyond end of file ({len(lines)} lines)"
            )

        current = self._digest_lines(lines[start - 1 : end])
        if proposal.content_digest is not None and current != proposal.content_digest:
            raise EditConflictError(proposal.file, f"lines {proposal.line_range} modified externally")

        replacement = proposal.edit_payload
        if replacement and not replacement.endswith("\n") and lines[end - 1].endswith("\n"):
            replacement += "\n"
        new_content = "".join(lines[: start - 1]) + replacement + "".join(lines[end:])

        if self.dry_run:
            logger.info("[dry-run] Would edit %s:%s", proposal.file, proposal.line_range)
            return

        original = "".join(lines)
        self._write(proposal.file, new_content)
        self._originals.setdefault(proposal.file, original)
        logger.debug("Applied %s to %s:%s", proposal.id, proposal.file, proposal.line_range)

    def _write(self, file: str, content: str) -> None:
        """Write via temp file + rename so a crash never leaves a half-written file."""
        path = self._path(file)
        temp_file = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            temp_file.replace(path)
        except OSError:
            if temp_file.exists():
                temp_file.unlink()
            raise

    @property
    def touched_files(self) -> list[str]:
        """Files edited so far."""
        return list(self._originals)

    def rollback(self, files: list[str] | None = None) -> list[str]:
        """
        Restore original content.

        Args:
            files: Files to restore; None restores every touched file.

        Returns:
            Files actually restored.

        Raises:
            RollbackError: If any file could not be written back. Every other
                target is still restored; failed files keep their originals
                so the rollback can be retried.
        """
        targets = list(self._originals) if files is None else [f for f in files if f in self._originals]
        restored = []
        failed: dict[str, str] = {}
        for file in targets:
            try:
                self._write(file, self._originals[file])
            except OSError as e:
                logger.error("Rollback of %s failed: %s", file, e)
                failed[file] = str(e)
                continue
            del self._originals[file]
            restored.append(file)
            logger.info("Rolled back %s", file)

        unknown = sorted(set(files or []) - set(targets))
        if unknown:
            logger.warning("Rollback requested for untouched files: %s", ", ".join(unknown))
        if failed:
            raise RollbackError(restored, failed)
        return restored
