"""NFS provisioner exceptions."""


class NfsProvisionerException(Exception):
    """Base exception for provisioner errors."""

    message = "An unknown exception occurred."

    def __init__(self, message=None, **kwargs):
        """Initialize exception with optional custom message."""
        self.kwargs = kwargs
        if message:
            self.message = message
        super(NfsProvisionerException, self).__init__(self.message % kwargs)


class CommandFailed(NfsProvisionerException):
    """External command exited non-zero or timed out."""

    message = "%(description)s failed: %(details)s"


class DaemonStartError(NfsProvisionerException):
    """A required NFS daemon could not be started.

    Startup never continues past this error; the caller is expected to tear
    down whatever was already started.
    """

    message = "Starting %(daemon)s failed: %(details)s"


class ExportError(NfsProvisionerException):
    """Export table update error."""

    message = "Export %(path)s: %(details)s"


class ExportServerNotRunning(NfsProvisionerException):
    """Export table was mutated while the server is stopped or stopping."""

    message = "NFS server is not running; refusing to modify export %(path)s"


class ManifestError(NfsProvisionerException):
    """Static exports manifest could not be read as a list of exports."""

    message = "Static exports manifest %(path)s: %(details)s"


class ClusterConfigError(NfsProvisionerException):
    """Kubernetes client configuration could not be loaded."""

    message = "Failed to create cluster config: %(details)s"


class ShutdownRequested(BaseException):
    """Raised in the main thread at the first safe point after a termination signal.

    Derives from BaseException so that ``except Exception`` handlers in
    reconciliation code never swallow it.
    """

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"received signal {signum}")
