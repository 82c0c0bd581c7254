"""SSH transport: one multiplexed administrative session per operation."""

import asyncio
import logging
import os
import shlex
import shutil
import tempfile

from catapulta.errors import RemoteCommandError, TransferError

logger = logging.getLogger(__name__)

SSH_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "BatchMode=yes",
    "-o", "LogLevel=ERROR",
    "-o", "ServerAliveInterval=60",
    "-o", "ServerAliveCountMax=5",
]


def ssh_base_args(server, ssh_key, ssh_port, control_path=None):
    """Build base SSH arguments (without the remote command)."""
    args = ["ssh", *SSH_OPTIONS]
    if control_path:
        args += ["-o", "ControlMaster=auto", "-o", f"ControlPath={control_path}", "-o", "ControlPersist=120"]
    if ssh_key:
        args += ["-i", os.path.expanduser(ssh_key)]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(server)
    return args


def scp_base_args(ssh_key, ssh_port, control_path=None):
    """Build base SCP arguments; scp spells the port flag ``-P``."""
    args = ["scp", "-q", *SSH_OPTIONS]
    if control_path:
        args += ["-o", "ControlMaster=auto", "-o", f"ControlPath={control_path}", "-o", "ControlPersist=120"]
    if ssh_key:
        args += ["-i", os.path.expanduser(ssh_key)]
    if ssh_port and ssh_port != 22:
        args += ["-P", str(ssh_port)]
    return args


class SshSession:
    """Administrative channel to one host.

    All commands and copies share a single OpenSSH control connection, which
    is torn down by ``close()``. Use as an async context manager so the
    connection is released on every exit path::

        async with SshSession("root@203.0.113.7", ssh_key="~/.ssh/id_ed25519") as ssh:
            rc, out, err = await ssh.run("docker compose ps", cwd="/opt/app")
    """

    def __init__(self, address, ssh_key=None, ssh_port=22, dry_run=False):
        self.address = address
        self.ssh_key = ssh_key
        self.ssh_port = ssh_port
        self.dry_run = dry_run
        self._control_dir = None

    @property
    def host(self):
        return self.address.split("@")[-1]

    @property
    def control_path(self):
        if self._control_dir is None:
            return None
        return os.path.join(self._control_dir, "cm-%C")

    async def __aenter__(self):
        self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def open(self):
        if self._control_dir is None and not self.dry_run:
            # Short prefix: unix socket paths are length-limited
            self._control_dir = tempfile.mkdtemp(prefix="cata-")

    async def close(self):
        if self._control_dir is None:
            return
        args = ["ssh", "-o", f"ControlPath={self.control_path}", "-O", "exit", self.address]
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(proc.wait(), timeout=10)
        except (TimeoutError, FileNotFoundError) as e:
            logger.debug(f"Closing SSH control connection to {self.address}: {e!r}")
        finally:
            shutil.rmtree(self._control_dir, ignore_errors=True)
            self._control_dir = None

    async def run(self, command, cwd=None, timeout=600, log_output=False, connect_timeout=None):
        """Run a shell command on the remote host.

        Args:
            command: shell command string
            cwd: remote directory to ``cd`` into first
            timeout: maximum seconds to wait
            log_output: stream stdout (INFO) and stderr (ERROR) lines to the log
            connect_timeout: ssh ConnectTimeout, for readiness polling

        Returns:
            (returncode, stdout, stderr) tuple
        """
        full_cmd = f"cd {shlex.quote(cwd)} && {command}" if cwd else command
        if self.dry_run:
            logger.info(f"[dry-run] ssh {self.address}: {full_cmd}")
            return 0, "", ""

        args = ssh_base_args(self.address, self.ssh_key, self.ssh_port, self.control_path)
        if connect_timeout:
            args[1:1] = ["-o", f"ConnectTimeout={connect_timeout}"]
        args.append(full_cmd)
        logger.debug(f"ssh {self.address}: {full_cmd}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.error("Error: 'ssh' not found. Is OpenSSH installed and on PATH?")
            return 1, "", "'ssh' not found"

        try:
            if log_output:
                stdout_lines, stderr_lines = [], []

                async def _read_stream(pipe, lines, level):
                    async for raw_line in pipe:
                        line = raw_line.decode(errors="replace").rstrip("\n")
                        logger.log(level, line)
                        lines.append(line)

                await asyncio.wait_for(
                    asyncio.gather(
                        _read_stream(proc.stdout, stdout_lines, logging.INFO),
                        _read_stream(proc.stderr, stderr_lines, logging.ERROR),
                        proc.wait(),
                    ),
                    timeout=timeout,
                )
                return proc.returncode, "\n".join(stdout_lines), "\n".join(stderr_lines)

            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
            stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""
            return proc.returncode, stdout, stderr
        except TimeoutError:
            logger.error(f"Command timed out after {timeout}s: {command}")
            proc.kill()
            await proc.wait()
            return 1, "", f"timed out after {timeout}s"

    async def check(self, command, cwd=None, timeout=600, log_output=False):
        """Like ``run`` but raise ``RemoteCommandError`` on a non-zero exit.

        Returns:
            stdout of the command
        """
        rc, stdout, stderr = await self.run(command, cwd=cwd, timeout=timeout, log_output=log_output)
        if rc != 0:
            raise RemoteCommandError(command, rc, stdout, stderr)
        return stdout

    async def _scp(self, source, target, timeout):
        args = scp_base_args(self.ssh_key, self.ssh_port, self.control_path) + [source, target]
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return 1, "'scp' not found"
        try:
            _, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return 1, f"timed out after {timeout}s"
        return proc.returncode, stderr_bytes.decode(errors="replace").strip() if stderr_bytes else ""

    async def copy_to(self, local_path, remote_path, timeout=1800):
        """Copy a local file to the remote host.

        Raises:
            TransferError: the copy failed or timed out.
        """
        target = f"{self.address}:{remote_path}"
        if self.dry_run:
            logger.info(f"[dry-run] scp {local_path} -> {target}")
            return
        rc, stderr = await self._scp(str(local_path), target, timeout)
        if rc != 0:
            raise TransferError(local_path, target, stderr)

    async def copy_from(self, remote_path, local_path, timeout=1800):
        """Copy a remote file to the local machine.

        Raises:
            TransferError: the copy failed or timed out.
        """
        source = f"{self.address}:{remote_path}"
        if self.dry_run:
            logger.info(f"[dry-run] scp {source} -> {local_path}")
            return
        rc, stderr = await self._scp(source, str(local_path), timeout)
        if rc != 0:
            raise TransferError(str(local_path), source, stderr)

    async def write_file(self, remote_path, content, mode=None):
        """Write *content* to *remote_path* through a local temp file."""
        if self.dry_run:
            logger.info(f"[dry-run] write {self.address}:{remote_path} ({len(content)} bytes)")
            return
        with tempfile.NamedTemporaryFile(mode="w", suffix=f"_{os.path.basename(remote_path)}", delete=False) as f:
            f.write(content)
            tmp_path = f.name
        try:
            await self.copy_to(tmp_path, remote_path)
        finally:
            os.unlink(tmp_path)
        if mode is not None:
            await self.check(f"chmod {mode:o} {shlex.quote(remote_path)}")
