"""Sandboxed execution of project build/test/lint/typecheck commands.

Every check returns a ``GateCheckResult`` and never raises: rejected
commands, timeouts, and non-zero exits are all ``fail`` results with a
populated stderr summary.

Safety:
    * denylisted commands are rejected before any subprocess is created
    * cwd is pinned to the project root
    * each stream is capped at ``MAX_OUTPUT_SIZE`` bytes
    * two independent kill paths: SIGTERM to the process group at the soft
      timeout, plus a ``threading.Timer`` SIGKILL scheduled
      ``BACKUP_KILL_DELAY`` seconds later
    * the process group is torn down after the leader exits, so background
      children never outlive the check
"""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import IO

from phasegate.core.artifact_store import ArtifactStore
from phasegate.core.cancellation import CancellationToken
from phasegate.models.artifacts import ArtifactEntry
from phasegate.models.checks import (
    CHECK_ARTIFACT_TYPES,
    CheckStatus,
    GateCheckResult,
    GateCheckType,
    ResolvedCommands,
)
from phasegate.models.phases import PipelinePhase

logger = logging.getLogger(__name__)

# Default timeout per check type, in seconds.
DEFAULT_TIMEOUTS: dict[GateCheckType, float] = {
    GateCheckType.BUILD: 20 * 60,
    GateCheckType.TEST: 10 * 60,
    GateCheckType.LINT: 5 * 60,
    GateCheckType.TYPECHECK: 5 * 60,
    GateCheckType.MIGRATION: 5 * 60,
}
FALLBACK_TIMEOUT = 5 * 60

MAX_OUTPUT_SIZE = 1024 * 1024  # per stream
STDERR_SUMMARY_LIMIT = 2000
BACKUP_KILL_DELAY = 5.0
GROUP_KILL_GRACE = 0.5
TIMEOUT_EXIT_CODE = 124
POLL_INTERVAL = 0.1

DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"rm\s+-rf\s+/"),
    re.compile(r"sudo\s+"),
    re.compile(r">\s*/dev/"),
    re.compile(r">\s*/etc/"),
    re.compile(r">\s*/usr/"),
    re.compile(r";\s*rm\s"),
    re.compile(r"&&\s*rm\s"),
    re.compile(r"\|\s*sh$"),
    re.compile(r"\|\s*bash$"),
)

PLACEHOLDER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bTODO\b", re.IGNORECASE),
    re.compile(r"\bFIXME\b", re.IGNORECASE),
    re.compile(r"\bHACK\b", re.IGNORECASE),
    re.compile(r"\bXXX\b", re.IGNORECASE),
    re.compile(r"placeholder", re.IGNORECASE),
    re.compile(r"\bmock\b(?!\.)", re.IGNORECASE),  # not "mock." import paths
    re.compile(r"\btemp\b(?!late)", re.IGNORECASE),
    re.compile(r"lorem ipsum", re.IGNORECASE),
    re.compile(r"example\.com", re.IGNORECASE),
)

PLACEHOLDER_SCAN_DIRS: tuple[str, ...] = ("src", "app", "pages", "components", "lib", "server", "api")
PLACEHOLDER_CODE_EXTENSIONS: frozenset[str] = frozenset(
    {".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs"}
)
PLACEHOLDER_ALLOWLIST = ".phasegate-placeholder-allowlist"
MAX_REPORTED_FINDINGS = 20

# Check types run by run_all_checks, in order.
STANDARD_CHECKS: tuple[GateCheckType, ...] = (
    GateCheckType.BUILD,
    GateCheckType.TEST,
    GateCheckType.LINT,
    GateCheckType.TYPECHECK,
    GateCheckType.MIGRATION,
)


class SandboxRejection(RuntimeError):
    """Raised by ``sanitize_command`` for a denylisted command."""


def sanitize_command(command: str) -> None:
    """Raise ``SandboxRejection`` if *command* matches a dangerous pattern."""
    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(command):
            raise SandboxRejection(f"Matches dangerous pattern: {pattern.pattern}")


def _summarize(stderr: str) -> str | None:
    if not stderr:
        return None
    if len(stderr) > STDERR_SUMMARY_LIMIT:
        return stderr[:STDERR_SUMMARY_LIMIT] + "\n... (truncated)"
    return stderr


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 1)


class _CappedReader(threading.Thread):
    """Drains a pipe, keeping at most ``limit`` bytes."""

    def __init__(self, stream: IO[bytes], limit: int = MAX_OUTPUT_SIZE) -> None:
        super().__init__(daemon=True)
        self._stream = stream
        self._limit = limit
        self._chunks: list[bytes] = []
        self._size = 0
        self.truncated = False

    def run(self) -> None:
        try:
            for chunk in iter(lambda: self._stream.read(8192), b""):
                room = self._limit - self._size
                if room > 0:
                    self._chunks.append(chunk[:room])
                    self._size += min(room, len(chunk))
                if len(chunk) > room:
                    self.truncated = True
        except (OSError, ValueError):
            pass  # pipe closed after the process group was killed
        finally:
            self._stream.close()

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


class _Spawned:
    """A running check process with capped readers and a backup killer."""

    def __init__(self, proc: subprocess.Popen[bytes], backup_after: float) -> None:
        self.proc = proc
        assert proc.stdout is not None and proc.stderr is not None
        self.stdout = _CappedReader(proc.stdout)
        self.stderr = _CappedReader(proc.stderr)
        self.stdout.start()
        self.stderr.start()
        self._backup = threading.Timer(backup_after, self.kill)
        self._backup.daemon = True
        self._backup.start()

    def _signal_group(self, sig: signal.Signals) -> None:
        try:
            os.killpg(self.proc.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass

    def terminate(self) -> None:
        if self.proc.poll() is None:
            self._signal_group(signal.SIGTERM)

    def kill(self) -> None:
        if self.proc.poll() is None:
            logger.warning("Backup kill for pid %d", self.proc.pid)
        self._signal_group(signal.SIGKILL)

    def _group_alive(self) -> bool:
        try:
            os.killpg(self.proc.pid, 0)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    def _reap_group(self) -> None:
        """SIGTERM whatever is left in the group, then SIGKILL after a grace."""
        if not self._group_alive():
            return
        self._signal_group(signal.SIGTERM)
        deadline = time.monotonic() + GROUP_KILL_GRACE
        while time.monotonic() < deadline and self._group_alive():
            time.sleep(POLL_INTERVAL / 2)
        self._signal_group(signal.SIGKILL)

    def finish(self) -> None:
        """Reap the process and its group, stop the backup timer, join the readers."""
        try:
            self.proc.wait(timeout=BACKUP_KILL_DELAY)
        except subprocess.TimeoutExpired:
            self.kill()
            self.proc.wait()
        self._reap_group()
        self._backup.cancel()
        self.stdout.join(timeout=BACKUP_KILL_DELAY)
        self.stderr.join(timeout=BACKUP_KILL_DELAY)


class CheckRunner:
    """Runs sandboxed checks and tracks live children for cancellation.

    Parameters
    ----------
    cancel_token:
        Optional run-level token. When it fires, in-flight checks are
        terminated and reported as failed.
    """

    def __init__(self, cancel_token: CancellationToken | None = None) -> None:
        self._cancel_token = cancel_token
        self._live: set[_Spawned] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def _spawn(
        self, command: str, project_dir: Path, env: dict[str, str], timeout: float
    ) -> _Spawned:
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(project_dir),
            env={**os.environ, **env},
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
        spawned = _Spawned(proc, timeout + BACKUP_KILL_DELAY)
        with self._lock:
            self._live.add(spawned)
        return spawned

    def _release(self, spawned: _Spawned) -> None:
        spawned.finish()
        with self._lock:
            self._live.discard(spawned)

    def _wait(self, spawned: _Spawned, timeout: float) -> str:
        """Wait for exit. Returns "exited", "timeout" or "cancelled"."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return "timeout"
            try:
                spawned.proc.wait(timeout=min(remaining, POLL_INTERVAL))
                return "exited"
            except subprocess.TimeoutExpired:
                if self._cancel_token is not None and self._cancel_token.cancelled:
                    return "cancelled"

    def cancel(self) -> None:
        """Terminate every live check process."""
        with self._lock:
            live = list(self._live)
        for spawned in live:
            spawned.terminate()

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def run_check(
        self,
        check_type: GateCheckType,
        command: str,
        project_dir: Path,
        timeout: float | None = None,
    ) -> GateCheckResult:
        """Run *command* as a *check_type* check. Never raises."""
        started = time.monotonic()
        try:
            sanitize_command(command)
        except SandboxRejection as exc:
            logger.warning("Rejected %s command %r: %s", check_type.value, command, exc)
            return GateCheckResult(
                check_type=check_type,
                status=CheckStatus.FAIL,
                command=command,
                exit_code=-1,
                stderr_summary=f"Command rejected: {exc}",
                duration_ms=0,
            )

        limit = timeout if timeout is not None else DEFAULT_TIMEOUTS.get(check_type, FALLBACK_TIMEOUT)
        try:
            spawned = self._spawn(command, Path(project_dir), {"NODE_ENV": "test", "CI": "true"}, limit)
        except OSError as exc:
            return GateCheckResult(
                check_type=check_type,
                status=CheckStatus.FAIL,
                command=command,
                exit_code=-1,
                stderr_summary=f"Failed to start: {exc}",
                duration_ms=_elapsed_ms(started),
            )

        outcome = self._wait(spawned, limit)
        if outcome != "exited":
            spawned.terminate()
        self._release(spawned)

        stderr = spawned.stderr.text()
        if outcome == "timeout":
            logger.warning("%s check timed out after %ss", check_type.value, limit)
            exit_code = TIMEOUT_EXIT_CODE
            summary = f"Timed out after {limit:g}s"
            if stderr:
                summary = f"{summary}\n{_summarize(stderr)}"
        elif outcome == "cancelled":
            exit_code = TIMEOUT_EXIT_CODE
            summary = "Cancelled"
        else:
            exit_code = spawned.proc.returncode
            summary = _summarize(stderr)

        status = CheckStatus.PASS if outcome == "exited" and exit_code == 0 else CheckStatus.FAIL
        logger.info("%s check %s (exit %d)", check_type.value, status.value, exit_code)
        return GateCheckResult(
            check_type=check_type,
            status=status,
            command=command,
            exit_code=exit_code,
            stderr_summary=summary,
            duration_ms=_elapsed_ms(started),
        )

    def run_all_checks(
        self, commands: ResolvedCommands, project_dir: Path
    ) -> list[GateCheckResult]:
        """Run build, test, lint, typecheck and migration; skip absent ones."""
        results: list[GateCheckResult] = []
        for check_type in STANDARD_CHECKS:
            command = commands.for_check(check_type)
            if not command:
                results.append(
                    GateCheckResult(
                        check_type=check_type,
                        status=CheckStatus.SKIP,
                        command="",
                        exit_code=0,
                    )
                )
                continue
            results.append(self.run_check(check_type, command, project_dir))
        return results

    def run_start_check(
        self, command: str, project_dir: Path, timeout: float = 15.0
    ) -> GateCheckResult:
        """Launch the start command; surviving past *timeout* is a pass.

        A healthy server does not exit, so an early exit (any exit code) is a
        failure and a process still running at the deadline is a success.
        """
        started = time.monotonic()
        try:
            sanitize_command(command)
        except SandboxRejection as exc:
            return GateCheckResult(
                check_type=GateCheckType.START,
                status=CheckStatus.FAIL,
                command=command,
                exit_code=-1,
                stderr_summary=f"Command rejected: {exc}",
                duration_ms=0,
            )

        try:
            spawned = self._spawn(command, Path(project_dir), {"NODE_ENV": "production"}, timeout)
        except OSError as exc:
            return GateCheckResult(
                check_type=GateCheckType.START,
                status=CheckStatus.FAIL,
                command=command,
                exit_code=-1,
                stderr_summary=f"Failed to start: {exc}",
                duration_ms=_elapsed_ms(started),
            )

        outcome = self._wait(spawned, timeout)
        if outcome != "exited":
            spawned.terminate()
        self._release(spawned)
        stderr = spawned.stderr.text()

        if outcome == "timeout":
            return GateCheckResult(
                check_type=GateCheckType.START,
                status=CheckStatus.PASS,
                command=command,
                exit_code=0,
                stderr_summary=stderr[:500] or None,
                duration_ms=_elapsed_ms(started),
            )
        if outcome == "cancelled":
            return GateCheckResult(
                check_type=GateCheckType.START,
                status=CheckStatus.FAIL,
                command=command,
                exit_code=TIMEOUT_EXIT_CODE,
                stderr_summary="Cancelled",
                duration_ms=_elapsed_ms(started),
            )
        return GateCheckResult(
            check_type=GateCheckType.START,
            status=CheckStatus.FAIL,
            command=command,
            exit_code=spawned.proc.returncode,
            stderr_summary=_summarize(stderr) or "Process exited prematurely",
            duration_ms=_elapsed_ms(started),
        )


# ---------------------------------------------------------------------------
# Filesystem checks
# ---------------------------------------------------------------------------


def _load_allowlist(path: Path) -> set[str]:
    if not path.is_file():
        return set()
    lines = (line.strip() for line in path.read_text(encoding="utf-8").splitlines())
    return {line for line in lines if line and not line.startswith("#")}


def _scan_file(path: Path, rel: str, findings: list[str]) -> None:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return
    for lineno, line in enumerate(text.splitlines(), start=1):
        if any(p.search(line) for p in PLACEHOLDER_PATTERNS):
            findings.append(f"{rel}:{lineno}: {line.strip()[:80]}")


def run_placeholder_scan(
    project_dir: Path, allowlist_path: Path | None = None
) -> GateCheckResult:
    """Scan source directories for placeholder content, one aggregated result."""
    started = time.monotonic()
    project_dir = Path(project_dir)
    allowlist = _load_allowlist(allowlist_path or project_dir / PLACEHOLDER_ALLOWLIST)
    findings: list[str] = []

    for dirname in PLACEHOLDER_SCAN_DIRS:
        root = project_dir / dirname
        if not root.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d != "node_modules"
            )
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if filename.startswith(".") or path.suffix not in PLACEHOLDER_CODE_EXTENSIONS:
                    continue
                rel = path.relative_to(project_dir).as_posix()
                if rel in allowlist:
                    continue
                _scan_file(path, rel, findings)

    summary = None
    if findings:
        summary = f"Found {len(findings)} placeholder(s):\n" + "\n".join(
            findings[:MAX_REPORTED_FINDINGS]
        )
    return GateCheckResult(
        check_type=GateCheckType.PLACEHOLDER_SCAN,
        status=CheckStatus.FAIL if findings else CheckStatus.PASS,
        command="placeholder-scan",
        exit_code=1 if findings else 0,
        stderr_summary=summary,
        duration_ms=_elapsed_ms(started),
    )


def _parse_env_names(content: str) -> list[str]:
    names = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        name = line.split("=", 1)[0].strip()
        if name:
            names.append(name)
    return names


def _parse_env_values(content: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip("\"'")
    return values


def run_env_check(project_dir: Path) -> GateCheckResult:
    """Diff ``.env.example`` variable names against ``.env``.

    Missing variables fail the check; present-but-empty ones are reported
    as a warning only.
    """
    started = time.monotonic()
    project_dir = Path(project_dir)
    example = project_dir / ".env.example"
    env_file = project_dir / ".env"

    if not example.is_file():
        return GateCheckResult(
            check_type=GateCheckType.ENV_CHECK,
            status=CheckStatus.PASS,
            command="env-check",
            exit_code=0,
            stderr_summary="No .env.example found, skipping env validation",
            duration_ms=_elapsed_ms(started),
        )

    required = _parse_env_names(example.read_text(encoding="utf-8"))
    if not env_file.is_file():
        return GateCheckResult(
            check_type=GateCheckType.ENV_CHECK,
            status=CheckStatus.FAIL,
            command="env-check",
            exit_code=1,
            stderr_summary=(
                ".env file not found. Required vars from .env.example: "
                + ", ".join(required)
            ),
            duration_ms=_elapsed_ms(started),
        )

    actual = _parse_env_values(env_file.read_text(encoding="utf-8"))
    missing = [name for name in required if name not in actual]
    empty = [name for name in required if name in actual and not actual[name]]

    parts = []
    if missing:
        parts.append(f"Missing vars: {', '.join(missing)}")
    if empty:
        parts.append(f"Empty vars (warning): {', '.join(empty)}")
    return GateCheckResult(
        check_type=GateCheckType.ENV_CHECK,
        status=CheckStatus.FAIL if missing else CheckStatus.PASS,
        command="env-check",
        exit_code=1 if missing else 0,
        stderr_summary="; ".join(parts) or None,
        duration_ms=_elapsed_ms(started),
    )


def store_check_results(
    results: list[GateCheckResult], store: ArtifactStore, phase: PipelinePhase
) -> list[ArtifactEntry]:
    """Persist every non-skip result as a JSON check artifact."""
    entries = []
    for result in results:
        if result.status == CheckStatus.SKIP:
            continue
        entries.append(
            store.store_structured(CHECK_ARTIFACT_TYPES[result.check_type], result, phase)
        )
    return entries


# ---------------------------------------------------------------------------
# Module-level conveniences
# ---------------------------------------------------------------------------


def run_check(
    check_type: GateCheckType,
    command: str,
    project_dir: Path,
    timeout: float | None = None,
    cancel_token: CancellationToken | None = None,
) -> GateCheckResult:
    return CheckRunner(cancel_token).run_check(check_type, command, project_dir, timeout)


def run_all_checks(commands: ResolvedCommands, project_dir: Path) -> list[GateCheckResult]:
    return CheckRunner().run_all_checks(commands, project_dir)


def run_start_check(command: str, project_dir: Path, timeout: float = 15.0) -> GateCheckResult:
    return CheckRunner().run_start_check(command, project_dir, timeout)
