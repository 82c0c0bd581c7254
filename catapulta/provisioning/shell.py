"""Local command execution helper."""

import asyncio
import logging
import shlex

logger = logging.getLogger(__name__)


def format_command(command):
    return command if isinstance(command, str) else shlex.join(command)


async def run_shell_cmd(command, dry_run=False, timeout=600, cwd=None, log_output=False):
    """Run a local command and return (returncode, stdout, stderr).

    Args:
        command: list of arguments, or a string run through ``/bin/sh``
            (needed for pipelines such as ``docker save | gzip``)
        dry_run: if True, log the command instead of executing
        timeout: maximum seconds to wait for the command
        cwd: working directory
        log_output: log each stdout line at INFO as it arrives

    Returns:
        (returncode, stdout, stderr) tuple
    """
    if dry_run:
        logger.info(f"[dry-run] {format_command(command)}")
        return 0, "", ""

    logger.debug(f"$ {format_command(command)}")
    try:
        if isinstance(command, str):
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        else:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
    except FileNotFoundError:
        program = format_command(command).split()[0]
        logger.error(f"Error: '{program}' not found. Is it installed and on PATH?")
        return 1, "", f"'{program}' not found"

    stderr_task = None
    try:
        if log_output:
            lines = []

            async def _read_stdout():
                async for raw_line in proc.stdout:
                    line = raw_line.decode(errors="replace").rstrip("\n")
                    logger.info(line)
                    lines.append(line)

            stderr_task = asyncio.ensure_future(proc.stderr.read())
            await asyncio.wait_for(asyncio.gather(_read_stdout(), proc.wait()), timeout=timeout)
            stderr_bytes = await stderr_task
            return proc.returncode, "\n".join(lines), stderr_bytes.decode(errors="replace")

        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
        stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""
        return proc.returncode, stdout, stderr
    except TimeoutError:
        logger.error(f"Command timed out after {timeout}s: {format_command(command)}")
        proc.kill()
        await proc.wait()
        if stderr_task is not None:
            stderr_task.cancel()
        return 1, "", f"timed out after {timeout}s"


async def command_exists(name, run=run_shell_cmd):
    """True if *name* resolves on the local PATH; *run* is the command runner to use."""
    rc, _, _ = await run(f"command -v {shlex.quote(name)} >/dev/null 2>&1", timeout=30)
    return rc == 0
