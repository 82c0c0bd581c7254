"""Exception hierarchy for descriptor validation, provisioning and deployment."""


class CatapultaError(Exception):
    """Base class for every error raised by catapulta."""


class ConfigError(CatapultaError):
    """Malformed deployment file."""


# ── Pre-flight (descriptor / topology) ─────────────────────────────


class TopologyError(CatapultaError):
    """Descriptor set cannot be turned into a deployable topology."""


class InvalidUpstream(TopologyError):
    """Upstream references a port the application does not declare."""

    def __init__(self, app, port, declared=()):
        self.app = app
        self.port = port
        self.declared = tuple(declared)
        if port is None:
            msg = f"App '{app}' exposes no ports, cannot be used as an upstream"
        else:
            ports = ", ".join(str(p) for p in self.declared) or "none"
            msg = f"App '{app}' does not expose port {port} (declared: {ports})"
        super().__init__(msg)


class InvalidTopology(TopologyError):
    """Routes reference unknown applications or conflict with each other."""


class DuplicateApplicationName(TopologyError):
    """Two application descriptors share a name."""

    def __init__(self, name):
        self.name = name
        super().__init__(f"Duplicate application name '{name}'")


# ── Runtime stages ─────────────────────────────────────────────────


class ProvisionError(CatapultaError):
    """Server could not be created, found or prepared."""


class DestroyError(CatapultaError):
    """Server could not be destroyed."""


class DnsError(CatapultaError):
    """A DNS provider rejected or failed a record operation."""

    def __init__(self, record, message):
        self.record = record
        self.message = message
        super().__init__(f"DNS {record}: {message}")


class DeployError(CatapultaError):
    """Local build/save step or deployment pre-flight failed."""


class TransferError(DeployError):
    """Copying an artifact to the remote host failed."""

    def __init__(self, local, remote, message=""):
        self.local = local
        self.remote = remote
        self.message = message
        detail = f": {message}" if message else ""
        super().__init__(f"Failed to copy {local} -> {remote}{detail}")


class RemoteCommandError(DeployError):
    """A command on the remote host exited non-zero."""

    def __init__(self, command, returncode, stdout="", stderr=""):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        msg = f"Remote command failed (exit {returncode}): {command}"
        if detail:
            msg += f"\n{detail}"
        super().__init__(msg)


class HealthcheckTimeout(DeployError):
    """A container did not report healthy before the deadline."""

    def __init__(self, app, timeout, last_status=None):
        self.app = app
        self.timeout = timeout
        self.last_status = last_status
        status = f" (last status: {last_status})" if last_status else ""
        super().__init__(f"App '{app}' not healthy after {timeout}s{status}")


class PipelineError(CatapultaError):
    """Fatal error escaping the pipeline, tagged with the stage that failed."""

    def __init__(self, stage, cause):
        self.stage = stage
        self.cause = cause
        name = getattr(stage, "value", stage)
        super().__init__(f"{name} failed: {cause}")
