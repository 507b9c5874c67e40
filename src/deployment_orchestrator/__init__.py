"""
deployment-orchestrator: idempotent, deterministic deployment of interdependent on-chain artifacts
"""

from importlib.metadata import PackageNotFoundError, version

from .chain import DryRunChainClient, RetryingChainClient
from .config import ConfigResolver, resolve
from .definitions import load_node_definitions, parse_node_definitions
from .deployments import run_deployment
from .exceptions import (
    CallError,
    ConcurrentDeploymentConflict,
    ConfigurationError,
    ConfirmationTimeout,
    CyclicDependency,
    DefinitionError,
    DeploymentError,
    DuplicateNode,
    DuplicateRecord,
    MissingParameter,
    SubmissionError,
    UnknownNetwork,
    UnresolvedReference,
    VerificationError,
)
from .graph import DeploymentGraph, build_graph
from .orchestrator import Orchestrator
from .registry import FileRegistry, InMemoryRegistry
from .rpc import JsonRpcChainClient
from .types import (
    DeploymentRecord,
    DeploymentReport,
    DeployNode,
    LiteralArg,
    NetworkConfig,
    NodeOutputRef,
    NodeStatus,
    ParameterRef,
    PostDeployCall,
)
from .verification import ExplorerVerifier, VerificationQueue

try:
    __version__ = version("deployment-orchestrator")
except PackageNotFoundError:
    __version__ = None

__all__ = [
    "run_deployment",
    "Orchestrator",
    "ConfigResolver",
    "resolve",
    "build_graph",
    "DeploymentGraph",
    "load_node_definitions",
    "parse_node_definitions",
    "FileRegistry",
    "InMemoryRegistry",
    "DryRunChainClient",
    "RetryingChainClient",
    "JsonRpcChainClient",
    "ExplorerVerifier",
    "VerificationQueue",
    "NetworkConfig",
    "DeployNode",
    "LiteralArg",
    "ParameterRef",
    "NodeOutputRef",
    "PostDeployCall",
    "DeploymentRecord",
    "DeploymentReport",
    "NodeStatus",
    "DeploymentError",
    "ConfigurationError",
    "UnknownNetwork",
    "DefinitionError",
    "DuplicateNode",
    "UnresolvedReference",
    "CyclicDependency",
    "MissingParameter",
    "SubmissionError",
    "ConfirmationTimeout",
    "CallError",
    "VerificationError",
    "DuplicateRecord",
    "ConcurrentDeploymentConflict",
]
