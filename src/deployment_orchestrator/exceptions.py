"""Custom exception classes for deployment-orchestrator library."""

from typing import Iterable, Optional


class DeploymentError(Exception):
    """Base exception for deployment-related errors."""

    pass


class ConfigurationError(DeploymentError, ValueError):
    """Raised when a network table or environment value is malformed."""

    pass


class UnknownNetwork(DeploymentError, ValueError):
    """Raised when a network name or chain id is not in the network table."""

    pass


class DefinitionError(DeploymentError, ValueError):
    """Raised when a declarative node definition cannot be parsed."""

    pass


class DuplicateNode(DeploymentError, ValueError):
    """Raised when two node definitions share a name."""

    pass


class UnresolvedReference(DeploymentError, ValueError):
    """Raised when a node references a node (or output field) that does not exist."""

    def __init__(self, message: str, node: str = "", missing: str = ""):
        super().__init__(message)
        self.node = node
        self.missing = missing


class CyclicDependency(DeploymentError, ValueError):
    """Raised when the dependency relation between nodes contains a cycle."""

    def __init__(self, message: str, nodes: Iterable[str] = ()):
        super().__init__(message)
        self.nodes = sorted(nodes)


class MissingParameter(DeploymentError, KeyError):
    """Raised when a node needs a configuration parameter the network lacks."""

    def __init__(self, message: str, node: str = "", parameter: str = ""):
        super().__init__(message)
        self.node = node
        self.parameter = parameter

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return str(self.args[0]) if self.args else ""


class SubmissionError(DeploymentError, RuntimeError):
    """Raised when the chain client fails to submit a deployment transaction."""

    pass


class ConfirmationTimeout(DeploymentError, TimeoutError):
    """Raised when a transaction does not reach its confirmation depth in time."""

    pass


class CallError(DeploymentError, RuntimeError):
    """Raised when a post-deploy call transaction fails."""

    pass


class RpcError(SubmissionError):
    """Raised when a JSON-RPC endpoint returns an error or is unreachable."""

    pass


class VerificationError(DeploymentError, RuntimeError):
    """Raised when a block explorer rejects or fails a verification request."""

    pass


class DuplicateRecord(DeploymentError, ValueError):
    """Raised when a registry record already exists for (network, node)."""

    pass


class DefectiveRecordError(DeploymentError, ValueError):
    """Raised when a registry record file is missing required fields."""

    pass


class InvalidRecordKey(DeploymentError, ValueError):
    """Raised when a network or node name cannot be used as a registry path."""

    pass


class RegistryError(DeploymentError, OSError):
    """Raised when the registry storage cannot be read or written."""

    pass


class ConcurrentDeploymentConflict(DeploymentError, RuntimeError):
    """Raised when another run recorded the same node first."""

    def __init__(self, message: str, node: str = "", report: Optional[object] = None):
        super().__init__(message)
        self.node = node
        self.report = report
