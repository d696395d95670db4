"""Target resolution: file pattern to file list plus stack profile."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from review_orchestrator.core.exceptions import NoFilesMatchedError
from review_orchestrator.core.models import StackProfile

logger = logging.getLogger(__name__)


class TargetResolver(Protocol):
    """Resolves a target pattern into the files under review."""

    def resolve(self, pattern: str) -> tuple[list[str], StackProfile]:
        ...


class GlobTargetResolver:
    """Resolve targets with pathlib globbing and detect the stack from marker files."""

    SOURCE_EXTENSIONS: dict[str, str] = {
        ".py": "python",
        ".ts": "typescript",
        ".tsx": "typescript",
        ".js": "javascript",
        ".jsx": "javascript",
        ".go": "go",
        ".rs": "rust",
        ".java": "java",
        ".rb": "ruby",
    }

    # Marker file -> (language, framework hint)
    STACK_MARKERS: dict[str, tuple[str, str | None]] = {
        "pyproject.toml": ("python", None),
        "setup.py": ("python", None),
        "requirements.txt": ("python", None),
        "manage.py": ("python", "django"),
        "package.json": ("javascript", None),
        "tsconfig.json": ("typescript", None),
        "next.config.js": ("javascript", "nextjs"),
        "go.mod": ("go", None),
        "Cargo.toml": ("rust", None),
        "pom.xml": ("java", "maven"),
        "Gemfile": ("ruby", None),
    }

    IGNORED_DIRS: frozenset[str] = frozenset({
        ".git",
        ".hg",
        ".venv",
        "venv",
        "node_modules",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        "build",
        "dist",
        ".review_orchestrator",
    })

    def __init__(self, project_root: Path) -> None:
        self.project_root = project_root.resolve()

    def resolve(self, pattern: str) -> tuple[list[str], StackProfile]:
        """
        Resolve a pattern relative to the project root.

        A file path resolves to itself, a directory to every source file
        beneath it, anything else is treated as a glob. Absolute targets are
        accepted when they point inside the project root.

        Raises:
            NoFilesMatchedError: If nothing matches, or the target lies
                outside the project root.
        """
        candidate = (self.project_root / pattern).resolve()
        if not candidate.is_relative_to(self.project_root):
            logger.warning("Target %s is outside project root %s", pattern, self.project_root)
            raise NoFilesMatchedError(pattern)

        if candidate.is_file():
            paths = [candidate]
        elif candidate.is_dir():
            paths = [p for p in candidate.rglob("*") if p.suffix in self.SOURCE_EXTENSIONS]
        else:
            relative_pattern = candidate.relative_to(self.project_root).as_posix()
            try:
                paths = list(self.project_root.glob(relative_pattern))
            except (NotImplementedError, ValueError) as e:
                logger.warning("Unsupported target pattern %s: %s", pattern, e)
                raise NoFilesMatchedError(pattern) from e

        files = sorted(
            {
                p.relative_to(self.project_root).as_posix()
                for p in paths
                if p.is_file() and not self._is_ignored(p)
            }
        )
        if not files:
            raise NoFilesMatchedError(pattern)

        profile = self.detect_stack(files)
        logger.info(
            "Resolved %s to %d files (languages: %s)",
            pattern,
            len(files),
            ", ".join(profile.languages) or "unknown",
        )
        return files, profile

    def _is_ignored(self, path: Path) -> bool:
        relative = path.relative_to(self.project_root)
        return any(part in self.IGNORED_DIRS for part in relative.parts[:-1])

    def detect_stack(self, files: list[str]) -> StackProfile:
        """Build a stack profile from marker files and target file extensions."""
        profile = StackProfile()
        languages: list[str] = []
        frameworks: list[str] = []

        for marker, (language, framework) in self.STACK_MARKERS.items():
            if (self.project_root / marker).exists():
                profile.markers[marker] = language
                languages.append(language)
                if framework:
                    frameworks.append(framework)

        for file in files:
            language = self.SOURCE_EXTENSIONS.get(Path(file).suffix)
            if language:
                languages.append(language)

        profile.languages = sorted(set(languages))
        profile.frameworks = sorted(set(frameworks))
        return profile
