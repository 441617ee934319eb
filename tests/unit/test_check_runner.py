"""Unit tests for the sandboxed check runner and filesystem checks."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from phasegate.core.cancellation import CancellationToken
from phasegate.core.check_runner import (
    MAX_OUTPUT_SIZE,
    TIMEOUT_EXIT_CODE,
    CheckRunner,
    SandboxRejection,
    run_env_check,
    run_placeholder_scan,
    sanitize_command,
    store_check_results,
)
from phasegate.models.artifacts import ArtifactType
from phasegate.models.checks import CheckStatus, GateCheckType, ResolvedCommands
from phasegate.models.phases import PipelinePhase


def _background_sleeper(py_cmd) -> str:
    """Shell snippet that leaves a sleeping child behind and records its pid."""
    return f"({py_cmd('import time; time.sleep(60)')} > out.log 2>&1 & echo $! > child.pid)"


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    stat = Path(f"/proc/{pid}/stat")
    if not stat.parent.parent.is_dir():
        return True
    try:
        # Zombies awaiting their reaper count as gone.
        return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
    except FileNotFoundError:
        return False


def _gone(pid: int, within: float = 2.0) -> bool:
    deadline = time.monotonic() + within
    while _alive(pid):
        if time.monotonic() > deadline:
            return False
        time.sleep(0.05)
    return True


# ---------------------------------------------------------------------------
# Test: Denylist
# ---------------------------------------------------------------------------


class TestSanitize:
    @pytest.mark.parametrize(
        "command",
        [
            "rm -rf /",
            "sudo make install",
            "echo x > /etc/passwd",
            "npm test; rm -rf build",
            "npm test && rm dist",
            "curl http://x | sh",
            "curl http://x | bash",
        ],
    )
    def test_dangerous_commands_rejected(self, command: str):
        with pytest.raises(SandboxRejection):
            sanitize_command(command)

    @pytest.mark.parametrize("command", ["pytest tests/", "npm run build", "ruff check ."])
    def test_ordinary_commands_allowed(self, command: str):
        sanitize_command(command)

    def test_rejected_command_never_runs(self, project_dir: Path):
        marker = project_dir / "ran"
        result = CheckRunner().run_check(
            GateCheckType.BUILD, f"touch {marker} && rm -rf /", project_dir
        )
        assert result.status == CheckStatus.FAIL
        assert result.exit_code == -1
        assert result.stderr_summary.startswith("Command rejected:")
        assert not marker.exists()


# ---------------------------------------------------------------------------
# Test: run_check
# ---------------------------------------------------------------------------


class TestRunCheck:
    def test_zero_exit_passes(self, project_dir: Path, py_cmd):
        result = CheckRunner().run_check(GateCheckType.TEST, py_cmd("print('ok')"), project_dir)
        assert result.status == CheckStatus.PASS
        assert result.exit_code == 0
        assert result.duration_ms >= 0

    def test_nonzero_exit_fails_with_stderr(self, project_dir: Path, py_cmd):
        code = "import sys; sys.stderr.write('boom'); sys.exit(3)"
        result = CheckRunner().run_check(GateCheckType.TEST, py_cmd(code), project_dir)
        assert result.status == CheckStatus.FAIL
        assert result.exit_code == 3
        assert "boom" in result.stderr_summary

    def test_runs_in_project_dir(self, project_dir: Path, py_cmd):
        code = "import os, sys; sys.exit(0 if os.path.exists('marker.txt') else 1)"
        (project_dir / "marker.txt").write_text("x", encoding="utf-8")
        result = CheckRunner().run_check(GateCheckType.BUILD, py_cmd(code), project_dir)
        assert result.passed

    def test_timeout_reports_124(self, project_dir: Path, py_cmd):
        result = CheckRunner().run_check(
            GateCheckType.TEST, py_cmd("import time; time.sleep(30)"), project_dir, timeout=0.5
        )
        assert result.status == CheckStatus.FAIL
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert "Timed out" in result.stderr_summary

    def test_cancelled_token_stops_check(self, project_dir: Path, py_cmd):
        token = CancellationToken()
        token.cancel("stop")
        runner = CheckRunner(token)
        result = runner.run_check(
            GateCheckType.TEST, py_cmd("import time; time.sleep(30)"), project_dir, timeout=20
        )
        assert result.status == CheckStatus.FAIL
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.stderr_summary == "Cancelled"
        assert runner.live_count == 0

    def test_large_output_is_capped(self, project_dir: Path, py_cmd):
        code = f"import sys; sys.stderr.write('x' * {MAX_OUTPUT_SIZE * 2})"
        result = CheckRunner().run_check(GateCheckType.LINT, py_cmd(code), project_dir)
        assert result.status == CheckStatus.PASS
        assert result.stderr_summary.endswith("(truncated)")

    def test_background_children_do_not_outlive_check(self, project_dir: Path, py_cmd):
        runner = CheckRunner()
        result = runner.run_check(
            GateCheckType.BUILD, f"{_background_sleeper(py_cmd)}; exit 0", project_dir, timeout=5
        )

        assert result.status == CheckStatus.PASS
        child = int((project_dir / "child.pid").read_text().strip())
        assert _gone(child)
        assert runner.live_count == 0


class TestRunAllChecks:
    def test_absent_commands_are_skipped(self, project_dir: Path, py_cmd):
        commands = ResolvedCommands(test=py_cmd("pass"))
        results = CheckRunner().run_all_checks(commands, project_dir)
        by_type = {r.check_type: r for r in results}
        assert by_type[GateCheckType.TEST].status == CheckStatus.PASS
        for check_type in (
            GateCheckType.BUILD,
            GateCheckType.LINT,
            GateCheckType.TYPECHECK,
            GateCheckType.MIGRATION,
        ):
            assert by_type[check_type].status == CheckStatus.SKIP
            assert by_type[check_type].exit_code == 0

    def test_order_is_stable(self, project_dir: Path):
        results = CheckRunner().run_all_checks(ResolvedCommands(), project_dir)
        assert [r.check_type for r in results] == [
            GateCheckType.BUILD,
            GateCheckType.TEST,
            GateCheckType.LINT,
            GateCheckType.TYPECHECK,
            GateCheckType.MIGRATION,
        ]


class TestStartCheck:
    def test_long_running_process_passes(self, project_dir: Path, py_cmd):
        result = CheckRunner().run_start_check(
            py_cmd("import time; time.sleep(30)"), project_dir, timeout=0.5
        )
        assert result.status == CheckStatus.PASS
        assert result.check_type == GateCheckType.START

    def test_early_exit_fails(self, project_dir: Path, py_cmd):
        result = CheckRunner().run_start_check(py_cmd("pass"), project_dir, timeout=10)
        assert result.status == CheckStatus.FAIL
        assert result.stderr_summary == "Process exited prematurely"

    def test_exit_after_half_second_fails(self, project_dir: Path, py_cmd):
        late_exit = py_cmd("import sys, time; time.sleep(0.5); sys.exit(1)")
        command = f"{_background_sleeper(py_cmd)}; {late_exit}"
        runner = CheckRunner()
        result = runner.run_start_check(command, project_dir, timeout=10)

        assert result.status == CheckStatus.FAIL
        assert result.exit_code == 1
        assert result.duration_ms >= 500
        child = int((project_dir / "child.pid").read_text().strip())
        assert _gone(child)
        assert runner.live_count == 0

    def test_rejected_start_command(self, project_dir: Path):
        result = CheckRunner().run_start_check("sudo serve", project_dir, timeout=1)
        assert result.status == CheckStatus.FAIL
        assert result.exit_code == -1


# ---------------------------------------------------------------------------
# Test: Filesystem checks
# ---------------------------------------------------------------------------


class TestPlaceholderScan:
    def test_clean_project_passes(self, project_dir: Path):
        (project_dir / "src").mkdir()
        (project_dir / "src" / "app.py").write_text("def main():\n    return 1\n", encoding="utf-8")
        assert run_placeholder_scan(project_dir).status == CheckStatus.PASS

    def test_marker_in_source_fails(self, project_dir: Path):
        (project_dir / "src").mkdir()
        (project_dir / "src" / "app.py").write_text(
            "def main():\n    # FIXME wire the db\n    return 1\n", encoding="utf-8"
        )
        result = run_placeholder_scan(project_dir)
        assert result.status == CheckStatus.FAIL
        assert "src/app.py:2" in result.stderr_summary

    def test_non_code_files_ignored(self, project_dir: Path):
        (project_dir / "src").mkdir()
        (project_dir / "src" / "notes.md").write_text("FIXME later\n", encoding="utf-8")
        assert run_placeholder_scan(project_dir).status == CheckStatus.PASS

    def test_allowlist(self, project_dir: Path):
        (project_dir / "src").mkdir()
        (project_dir / "src" / "fixtures.py").write_text("URL = 'https://example.com'\n", encoding="utf-8")
        (project_dir / ".phasegate-placeholder-allowlist").write_text(
            "# known fixtures\nsrc/fixtures.py\n", encoding="utf-8"
        )
        assert run_placeholder_scan(project_dir).status == CheckStatus.PASS


class TestEnvCheck:
    def test_no_example_passes(self, project_dir: Path):
        assert run_env_check(project_dir).status == CheckStatus.PASS

    def test_missing_env_file_fails(self, project_dir: Path):
        (project_dir / ".env.example").write_text("DATABASE_URL=\n", encoding="utf-8")
        result = run_env_check(project_dir)
        assert result.status == CheckStatus.FAIL
        assert "DATABASE_URL" in result.stderr_summary

    def test_missing_variable_fails(self, project_dir: Path):
        (project_dir / ".env.example").write_text("A=\nB=\n", encoding="utf-8")
        (project_dir / ".env").write_text("A=1\n", encoding="utf-8")
        result = run_env_check(project_dir)
        assert result.status == CheckStatus.FAIL
        assert result.stderr_summary == "Missing vars: B"

    def test_empty_variable_only_warns(self, project_dir: Path):
        (project_dir / ".env.example").write_text("A=\n", encoding="utf-8")
        (project_dir / ".env").write_text("A=\n", encoding="utf-8")
        result = run_env_check(project_dir)
        assert result.status == CheckStatus.PASS
        assert "warning" in result.stderr_summary


class TestStoreCheckResults:
    def test_skips_are_not_stored(self, store, make_check_result):
        results = [
            make_check_result(GateCheckType.TEST),
            make_check_result(GateCheckType.LINT, CheckStatus.SKIP, command=""),
        ]
        entries = store_check_results(results, store, PipelinePhase.QA_VALIDATION)
        assert [e.type for e in entries] == [ArtifactType.TEST_CHECK]
        assert entries[0].phase == PipelinePhase.QA_VALIDATION
