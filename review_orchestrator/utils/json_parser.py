"""Recovery of JSON replies from worker output, with Pydantic validation."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterator, TypeVar

from json_repair import repair_json
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

FENCE_PATTERNS = (
    re.compile(r"```json\s*([\s\S]*?)\s*```"),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
)
PREVIEW_LENGTH = 200


def _preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    marker = "[...truncated]"
    return text if len(text) <= limit else text[: limit - len(marker)] + marker


class JSONParseError(Exception):
    """No recovery strategy produced JSON from a worker reply."""

    def __init__(
        self,
        message: str,
        response_preview: str = "",
        strategies_tried: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.response_preview = response_preview
        self.strategies_tried = strategies_tried or []


def unfence(text: str) -> str | None:
    """Body of the first ``json`` (or bare) code fence, if any."""
    for pattern in FENCE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def balanced_span(text: str, opener: str, closer: str) -> str | None:
    """First balanced opener..closer span, ignoring brackets inside strings."""
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


class RobustJSONParser:
    """
    Recovers a JSON value from a worker reply.

    Replies from model-backed workers tend to wrap the payload in prose or
    code fences, or to leave it slightly malformed. Candidates are tried in
    order: the raw reply, the fenced body, the first balanced object (or
    array), and finally a json_repair pass over the whole reply.
    """

    def _candidates(self, response: str, expected_type: type) -> Iterator[tuple[str, str | None]]:
        yield "direct", response
        fenced = unfence(response)
        yield "fence", fenced if fenced != response else None
        opener, closer = ("[", "]") if expected_type is list else ("{", "}")
        yield "brackets", balanced_span(response, opener, closer)

    def parse(self, response: str, expected_type: type = dict) -> Any:
        """
        Parse a worker reply.

        Args:
            response: Raw stdout of the worker.
            expected_type: dict or list, used to pick the bracket pair.

        Returns:
            The decoded JSON value.

        Raises:
            JSONParseError: If every strategy fails.
        """
        failures: list[str] = []
        for name, candidate in self._candidates(response, expected_type):
            if candidate is None:
                continue
            try:
                return json.loads(candidate)
            except json.JSONDecodeError as e:
                failures.append(f"{name}: {e}")

        try:
            repaired = json.loads(repair_json(response))
        except (json.JSONDecodeError, TypeError) as e:
            failures.append(f"repair: {e}")
        else:
            if repaired not in ("", None):
                logger.debug("Worker reply recovered by json_repair")
                return repaired
            failures.append("repair: no data")

        logger.error("Worker reply is not JSON after %d strategies: %s", len(failures), failures)
        raise JSONParseError(
            "Could not parse JSON from worker output",
            response_preview=_preview(response),
            strategies_tried=failures,
        )

    def parse_with_schema(self, response: str, schema: type[M]) -> M:
        """
        Parse a reply and validate it against a response model.

        Raises:
            JSONParseError: If no JSON could be recovered.
            ValidationError: If the JSON does not fit the schema.
        """
        data = self.parse(response, expected_type=dict)
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.warning("Worker reply failed %s validation: %s", schema.__name__, e.errors())
            raise
