"""Tests for the command line interface."""

import argparse
import json
import logging
import shlex
import sys

import pytest

from review_orchestrator.__main__ import main, parse_args, parse_focus
from review_orchestrator.config.settings import load_settings_from_yaml
from review_orchestrator.core.models import Category, ReviewMode

FLATTEN_WORKER = r'''
import json, sys
request = json.load(sys.stdin)
if request["action"] == "analyze":
    print(json.dumps({"findings": [{
        "file": "src/app.py",
        "start_line": 2,
        "end_line": 4,
        "issue_summary": "Nested conditionals can be flattened",
        "proposed_fix": "    if a and b:\n        return 1",
        "confidence": 9.5,
    }]}))
else:
    print(json.dumps({"score": 10}))
'''


@pytest.fixture
def configured_project(sample_project):
    """Project with a scripted worker and no-op verification commands."""
    (sample_project / "worker.py").write_text(FLATTEN_WORKER)
    noop = [sys.executable, "-c", "pass"]
    config = {
        "worker_command": [sys.executable, "worker.py"],
        "verification": {"typecheck_command": noop, "lint_command": noop, "tests_command": noop},
        "resilience": {"retry_min_wait": 0, "retry_max_wait": 0},
    }
    # JSON is valid YAML
    (sample_project / ".review_orchestrator.yaml").write_text(json.dumps(config))
    return sample_project


class TestParseArgs:
    """Tests for argument parsing."""

    def test_run_arguments(self, tmp_path):
        args = parse_args([
            "run", "src/**/*.py",
            "--project", str(tmp_path),
            "--mode", "thorough",
            "--focus", "simplify, Clarity",
            "--sample-count", "2",
            "--strategy", "consensus",
            "--dry-run",
        ])

        assert args.command == "run"
        assert args.target == "src/**/*.py"
        assert args.mode == "thorough"
        assert args.focus == [Category.SIMPLIFY, Category.CLARITY]
        assert args.sample_count == 2
        assert args.strategy == "consensus"
        assert args.dry_run is True
        assert args.interactive is False

    def test_invalid_focus(self):
        with pytest.raises(argparse.ArgumentTypeError, match="valid categories"):
            parse_focus("simplify,speed")

    def test_invalid_mode_exits(self):
        with pytest.raises(SystemExit):
            parse_args(["run", "src", "--mode", "exhaustive"])


class TestCommands:
    """Tests for the subcommands."""

    @pytest.mark.asyncio
    async def test_no_command_prints_usage(self, capsys):
        assert await main([]) == 0
        assert "Usage:" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_history_empty(self, temp_project_dir, capsys):
        assert await main(["history", "--project", str(temp_project_dir)]) == 0
        assert "No sessions recorded." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_compare_unknown_session(self, temp_project_dir, capsys):
        code = await main(["compare", "a", "b", "--project", str(temp_project_dir)])
        assert code == 1
        assert "Session a not found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_run_without_worker_command(self, sample_project, capsys):
        (sample_project / ".review_orchestrator.yaml").write_text("worker_command: []\n")
        code = await main(["run", "src", "--project", str(sample_project)])
        assert code == 1
        assert "no worker command configured" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_run_then_history_and_compare(self, configured_project, capsys):
        project = str(configured_project)

        assert await main(["run", "src", "--project", project, "--mode", "quick", "--focus", "simplify"]) == 0
        first = capsys.readouterr().out
        assert "Status:      completed" in first
        assert "Session saved to" in first
        assert "if a and b:" in (configured_project / "src" / "app.py").read_text()

        assert await main([
            "run", "src", "--project", project, "--mode", "quick", "--focus", "simplify", "--dry-run",
        ]) == 0
        capsys.readouterr()

        assert await main(["history", "--project", project]) == 0
        rows = capsys.readouterr().out.strip().splitlines()
        assert len(rows) == 2
        ids = [row.split()[0] for row in rows]

        assert await main(["compare", *ids, "--project", project]) == 0
        assert f"Comparing {ids[0]} -> {ids[1]}" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_run_with_explicit_worker_command(self, configured_project, capsys):
        command = shlex.join([sys.executable, "worker.py"])
        code = await main([
            "run", "src/app.py",
            "--project", str(configured_project),
            "--mode", "quick",
            "--focus", "simplify",
            "--worker-command", command,
            "--dry-run",
        ])

        assert code == 0
        assert "Status:      completed" in capsys.readouterr().out
        assert (configured_project / "src" / "app.py").read_text().startswith("def compute(a, b):\n    if a:")

    @pytest.mark.asyncio
    async def test_compare_corrupt_session(self, temp_project_dir, capsys):
        sessions = temp_project_dir / ".review_orchestrator" / "sessions"
        sessions.mkdir(parents=True)
        (sessions / "20260101-000000-aaaaaa.json").write_text("{not json")
        (sessions / "20260102-000000-bbbbbb.json").write_text("{}")

        code = await main([
            "compare", "20260101-000000-aaaaaa", "20260102-000000-bbbbbb",
            "--project", str(temp_project_dir),
        ])

        assert code == 1
        assert "Error: Cannot read" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_init_writes_loadable_default_config(self, temp_project_dir, capsys):
        assert await main(["init", "--project", str(temp_project_dir)]) == 0
        config = temp_project_dir / ".review_orchestrator.yaml"
        assert "Created config file" in capsys.readouterr().out

        settings = load_settings_from_yaml(config)
        assert settings.get_profile(ReviewMode.THOROUGH).snapshot is True
        assert settings.state_dir == ".review_orchestrator"

        assert await main(["init", "--project", str(temp_project_dir)]) == 1
        assert "already exists" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_logging_follows_configured_level(self, temp_project_dir, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        (temp_project_dir / ".review_orchestrator.yaml").write_text("log_level: error\n")

        assert await main(["history", "--project", str(temp_project_dir)]) == 0
        assert calls[-1]["level"] == logging.ERROR

        (temp_project_dir / ".review_orchestrator.yaml").write_text("debug: true\nlog_level: error\n")
        assert await main(["history", "--project", str(temp_project_dir)]) == 0
        assert calls[-1]["level"] == logging.DEBUG
