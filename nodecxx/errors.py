"""Exception hierarchy for nodecxx."""


class NodecxxError(RuntimeError):
    """Base class for every error raised by nodecxx."""


class ConfigurationError(NodecxxError):
    """A build request or configuration file could not be resolved."""


class ProvisioningError(NodecxxError):
    """Runtime headers or import libraries could not be provisioned."""


class ManifestError(NodecxxError):
    """The manifest is missing, unreadable or has no compatible entry."""


class BuildError(NodecxxError):
    """A configure, build or copy step failed."""


class LoadError(NodecxxError):
    """No candidate addon could be loaded."""


class LoadCandidateError(NodecxxError):
    """A single candidate addon failed to load; the next one is tried."""

    def __init__(self, path, cause):
        super().__init__(f"Failed to load {path}: {cause}")
        self.path = path
        self.cause = cause
