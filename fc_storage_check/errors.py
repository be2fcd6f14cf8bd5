"""
Errors raised while setting up or driving a verification run.

Per-target failures (unbound claims, failed pods, timeouts) are not errors:
they are recorded as outcomes in the run report.
"""


class VerificationError(Exception):
    """Base class for fatal verification errors"""


class ConfigError(VerificationError):
    """Configuration file could not be loaded"""


class NotLoggedIn(VerificationError):
    """No usable cluster credentials"""


class ClusterQueryError(VerificationError):
    """A cluster API call failed for reasons other than an expected not-found"""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class ClassNotFound(VerificationError):
    def __init__(self, name, available=()):
        super().__init__(f"StorageClass '{name}' not found")
        self.name = name
        self.available = list(available)


class NoDefaultClass(VerificationError):
    def __init__(self, available=()):
        super().__init__("No default StorageClass found")
        self.available = list(available)


class AmbiguousDefaultClass(VerificationError):
    def __init__(self, candidates):
        super().__init__(
            f"Found {len(candidates)} default StorageClasses: {', '.join(candidates)}"
        )
        self.candidates = list(candidates)


class NoSchedulableNodes(VerificationError):
    def __init__(self):
        super().__init__("No schedulable nodes found")


class RunAborted(VerificationError):
    """The operator declined to continue"""
