"""
Bazel Runner
============
Thin subprocess wrapper around the Bazel CLI.

BOUNDARY RULES:
    - Runner ONLY executes and captures output.
    - Runner NEVER parses test cases; that is the parser's job.
    - Runner never raises for infrastructure problems (missing binary,
      timeout); they are reported through RunOutput.error.

Exit codes (bazel test):
    0 all passed, 1 build failed, 3 some tests failed,
    4 no tests found / flaky, anything else = infrastructure error
"""
import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional

from testnorm.core.config import BAZEL_PATH, TEST_EXECUTION_TIMEOUT

logger = logging.getLogger(__name__)

EXIT_TESTS_FAILED = 3
EXIT_NO_TESTS = 4


# ---------------------------------------------------------------------------
# Run Output (input to the parsers)
# ---------------------------------------------------------------------------
@dataclass
class RunOutput:
    """
    Captured result of a single Bazel invocation.

    Fields
    ------
    exit_code : int
        Process exit code; -1 when the process could not run to completion.
    stdout / stderr : str
        Raw streams as captured.
    execution_time_seconds : float
        Wall clock duration.
    command : list[str]
        The argv that was executed.
    error : str | None
        Infrastructure failure description (not test failures).
    """
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    execution_time_seconds: float = 0.0
    command: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def combined(self) -> str:
        """stdout followed by stderr; the text handed to the line parser."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.error is None


def normalize_test_label(target: str) -> str:
    """`//pkg` (a package, no target name) becomes `//pkg/...`."""
    if target.startswith("//") and ":" not in target and not target.endswith("..."):
        return target.rstrip("/") + "/..."
    return target


def run_bazel(
    args: list[str],
    workspace_path: str,
    runner_path: str = BAZEL_PATH,
    timeout_seconds: Optional[int] = None,
) -> RunOutput:
    """
    Run `<runner_path> <args...>` in `workspace_path`.

    Returns
    -------
    RunOutput
        Always returned. On infrastructure failure exit_code is -1 and
        error is set.
    """
    command = [runner_path, *args]
    result = RunOutput(command=command)
    start = time.monotonic()

    try:
        completed = subprocess.run(
            command,
            cwd=workspace_path or None,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
        result.exit_code = completed.returncode
        result.stdout = completed.stdout or ""
        result.stderr = completed.stderr or ""
    except subprocess.TimeoutExpired as e:
        result.stdout = _as_text(e.stdout)
        result.stderr = _as_text(e.stderr)
        result.error = f"Timed out after {timeout_seconds}s"
        logger.warning("%s timed out after %ss", " ".join(command), timeout_seconds)
    except (OSError, ValueError) as e:
        result.error = f"Failed to start {runner_path}: {e}"
        logger.error("Failed to run %s: %s", " ".join(command), e)

    result.execution_time_seconds = round(time.monotonic() - start, 2)
    logger.debug("%s finished with exit code %d in %.2fs",
                 " ".join(command), result.exit_code, result.execution_time_seconds)
    return result


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def run_bazel_test(
    target: str,
    workspace_path: str,
    runner_path: str = BAZEL_PATH,
    timeout_seconds: int = TEST_EXECUTION_TIMEOUT,
    extra_args: Optional[list[str]] = None,
) -> RunOutput:
    """`bazel test <target> --test_output=all [extra_args...]`."""
    args = ["test", normalize_test_label(target), "--test_output=all", *(extra_args or [])]
    output = run_bazel(args, workspace_path, runner_path, timeout_seconds)
    if output.exit_code not in (0, EXIT_TESTS_FAILED, EXIT_NO_TESTS) and output.error is None:
        logger.warning("bazel test %s exited with %d", target, output.exit_code)
    return output


def run_bazel_info(key: str, workspace_path: str, runner_path: str = BAZEL_PATH) -> Optional[str]:
    """Value of `bazel info <key>` (last non-empty stdout line), or None."""
    output = run_bazel(["info", key], workspace_path, runner_path, timeout_seconds=60)
    if not output.succeeded:
        logger.warning("bazel info %s failed: %s", key, output.error or output.stderr.strip())
        return None
    lines = [line.strip() for line in output.stdout.splitlines() if line.strip()]
    return lines[-1] if lines else None


def run_bazel_query(
    expression: str,
    workspace_path: str,
    runner_path: str = BAZEL_PATH,
    output_format: str = "streamed_jsonproto",
) -> RunOutput:
    """`bazel query <expression> --output=<format>`."""
    return run_bazel(
        ["query", expression, f"--output={output_format}", "--keep_going"],
        workspace_path,
        runner_path,
        timeout_seconds=TEST_EXECUTION_TIMEOUT,
    )
