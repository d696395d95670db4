"""Tests for the subprocess verification runner."""

import sys

import pytest

from review_orchestrator.config.settings import VerificationSettings
from review_orchestrator.core.models import CheckName, CheckStatus
from review_orchestrator.core.verification import (
    SubprocessVerificationRunner,
    parse_diagnostics,
    parse_pytest_failures,
)


def _script(code: str) -> list[str]:
    return [sys.executable, "-c", code]


class TestParsers:
    """Tests for output parsers."""

    def test_parse_diagnostics(self):
        output = (
            "src/app.py:3: error: Incompatible return value  [return-value]\n"
            "src/util.py:10:5: F401 'os' imported but unused\n"
            "Found 2 errors in 2 files\n"
        )
        details = parse_diagnostics(output)

        assert [(d.file, d.line) for d in details] == [("src/app.py", 3), ("src/util.py", 10)]
        assert details[1].message == "F401 'os' imported but unused"

    def test_parse_pytest_failures(self):
        output = (
            "FAILED tests/test_app.py::test_compute - AssertionError: 0 != 1\n"
            "FAILED tests/test_app.py::TestHelper::test_add\n"
            "2 failed, 3 passed\n"
        )
        details = parse_pytest_failures(output)

        assert [d.file for d in details] == ["tests/test_app.py", "tests/test_app.py"]
        assert details[0].message == "test_compute: AssertionError: 0 != 1"
        assert details[1].message == "TestHelper::test_add: failed"


class TestSubprocessVerificationRunner:
    """Tests for SubprocessVerificationRunner."""

    @pytest.mark.asyncio
    async def test_pass_fail_and_behavior_diff(self, temp_project_dir):
        config = VerificationSettings(
            typecheck_command=_script("print('src/app.py:3: error: bad'); raise SystemExit(1)"),
            lint_command=_script("print('All checks passed')"),
        )
        runner = SubprocessVerificationRunner(config, working_dir=temp_project_dir)

        results = await runner.run({CheckName.TYPECHECK, CheckName.LINT, CheckName.BEHAVIOR_DIFF})

        assert results[CheckName.TYPECHECK].status == CheckStatus.FAIL
        assert results[CheckName.TYPECHECK].details[0].file == "src/app.py"
        assert results[CheckName.LINT].status == CheckStatus.PASS
        assert results[CheckName.BEHAVIOR_DIFF].status == CheckStatus.SKIPPED
        assert CheckName.TESTS not in results

    @pytest.mark.asyncio
    async def test_missing_tool_is_skipped(self, temp_project_dir):
        config = VerificationSettings(lint_command=["definitely-not-a-real-linter-binary"])
        results = await SubprocessVerificationRunner(config, temp_project_dir).run({CheckName.LINT})
        assert results[CheckName.LINT].status == CheckStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_no_tests_collected_is_skipped(self, temp_project_dir):
        config = VerificationSettings(tests_command=_script("raise SystemExit(5)"))
        results = await SubprocessVerificationRunner(config, temp_project_dir).run({CheckName.TESTS})
        assert results[CheckName.TESTS].status == CheckStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, temp_project_dir):
        config = VerificationSettings(
            tests_command=_script("import time; time.sleep(10)"),
            tests_timeout=0.2,
        )
        results = await SubprocessVerificationRunner(config, temp_project_dir).run({CheckName.TESTS})

        assert results[CheckName.TESTS].status == CheckStatus.FAIL
        assert "timed out" in results[CheckName.TESTS].message
