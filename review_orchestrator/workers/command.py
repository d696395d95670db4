"""Worker backed by an external command speaking JSON over stdin/stdout."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from review_orchestrator.core.exceptions import WorkerProtocolError
from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    Finding,
    ReviewMode,
    StackProfile,
)
from review_orchestrator.utils import truncate_with_marker
from review_orchestrator.utils.json_parser import JSONParseError, RobustJSONParser
from review_orchestrator.workers.base import AnalysisResponse, ScoreResponse

logger = logging.getLogger(__name__)


class CommandWorker:
    """
    Runs one external process per unit of work.

    The request is written to stdin as a single JSON object with an
    ``action`` of ``analyze`` or ``score``. The reply on stdout may be wrapped
    in prose or code fences; it is recovered with RobustJSONParser and
    validated against the response schema.
    """

    def __init__(
        self,
        command: list[str],
        working_dir: Path | str | None = None,
        parser: RobustJSONParser | None = None,
    ) -> None:
        if not command:
            raise ValueError("CommandWorker requires a non-empty command")
        self.command = command
        self.working_dir = str(working_dir) if working_dir else None
        self.parser = parser or RobustJSONParser()

    async def run_analysis_unit(
        self,
        category: Category,
        files: list[str],
        stack_profile: StackProfile,
        mode: ReviewMode,
    ) -> list[Finding]:
        """Ask the worker for findings in one category."""
        request = {
            "action": "analyze",
            "category": category.value,
            "files": files,
            "stack_profile": stack_profile.model_dump(mode="json"),
            "mode": mode.value,
        }
        response = await self._exchange(request, AnalysisResponse)
        return [item.to_finding(category) for item in response.findings]

    async def run_score_unit(
        self,
        category: Category,
        applied_changes: list[AppliedChange],
    ) -> float:
        """Ask the worker to score one category after fixes."""
        request = {
            "action": "score",
            "category": category.value,
            "applied_changes": [change.model_dump(mode="json") for change in applied_changes],
        }
        response = await self._exchange(request, ScoreResponse)
        return response.score

    async def _exchange(self, request: dict[str, Any], schema: type[BaseModel]) -> Any:
        payload = json.dumps(request).encode("utf-8")
        start_time = time.monotonic()

        try:
            # argv list, never a shell string
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_dir,
            )
        except OSError as e:
            logger.error("Worker command failed to start: %s", e, exc_info=True)
            raise WorkerProtocolError(f"Cannot start worker {self.command[0]}: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await process.communicate(payload)
        except asyncio.CancelledError:
            # Caller timed out this instance
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        duration = time.monotonic() - start_time
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        if process.returncode != 0:
            raise WorkerProtocolError(
                f"Worker exited with {process.returncode}: {truncate_with_marker(stderr.strip(), 300)}"
            )

        logger.debug(
            "Worker %s %s finished in %.1fs",
            request["action"],
            request["category"],
            duration,
        )

        try:
            return self.parser.parse_with_schema(stdout, schema)
        except JSONParseError as e:
            raise WorkerProtocolError(f"Unparseable worker output: {e.response_preview}") from e
        except ValidationError as e:
            raise WorkerProtocolError(f"Worker output failed validation: {e.error_count()} errors") from e
