"""Async subprocess utilities.

Provides non-blocking subprocess execution for use in async contexts, used to
run a target project's own test command inside its workspace.

Example:
    >>> from repo_improver.utils.async_subprocess import run_command
    >>> stdout, stderr, code = await run_command("npm", "test", cwd="/repo", check=False)
    >>> if code == 0:
    ...     print(stdout)
"""

import asyncio
import subprocess
from pathlib import Path


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    capture_output: bool = True,
) -> tuple[str, str, int]:
    """Run a command asynchronously without shell interpolation.

    Args:
        *args: Command and arguments as separate strings. The first argument
            is the executable, subsequent arguments are passed to it.
        cwd: Working directory for command execution. If None, uses the
            current working directory of the parent process.
        check: If True (default), raise CalledProcessError when the command
            returns a non-zero exit code.
        timeout: Maximum seconds to wait for command completion. If exceeded,
            the process is killed and TimeoutError is raised. None means
            wait indefinitely.
        capture_output: If True (default), capture stdout and stderr as
            strings. If False, output goes to the parent's stdout/stderr.

    Returns:
        Tuple of (stdout, stderr, return_code) where stdout and stderr are
        decoded UTF-8 strings (with replacement for invalid bytes).

    Raises:
        subprocess.CalledProcessError: If check=True and command returns non-zero.
        TimeoutError: If timeout is exceeded. The process is killed first.
        FileNotFoundError: If the command executable is not found.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except TimeoutError:
        process.kill()
        await process.wait()
        raise

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")

    if check and process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode,
            args,
            stdout,
            stderr,
        )

    return stdout, stderr, process.returncode or 0
