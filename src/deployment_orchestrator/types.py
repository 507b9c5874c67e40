"""Data types and dataclasses for deployment-orchestrator library."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .constants import DEFAULT_CONFIRMATIONS


@dataclass(frozen=True)
class NetworkConfig:
    """Immutable parameter set for one target network."""

    # Required fields
    network_id: int  # Chain id, e.g. 421614
    name: str  # Network name, e.g. "arbitrumSepolia"
    deployment_salt: str  # 32-byte hex salt for deterministic deployment
    parameters: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    # Optional fields
    confirmations: int = DEFAULT_CONFIRMATIONS
    local: bool = False  # Sandbox networks skip verification
    chain_name: Optional[str] = None
    block_explorer_url: Optional[str] = None
    explorer_api_url: Optional[str] = None
    rpc_url_env: Optional[str] = None


@dataclass(frozen=True)
class LiteralArg:
    """Argument passed through unchanged."""

    value: Any


@dataclass(frozen=True)
class ParameterRef:
    """Argument read from NetworkConfig.parameters."""

    key: str


@dataclass(frozen=True)
class NodeOutputRef:
    """Argument read from another node's DeploymentRecord."""

    node: str
    field: str = "address"


ArgumentSpec = Union[LiteralArg, ParameterRef, NodeOutputRef]


@dataclass(frozen=True)
class PostDeployCall:
    """Transaction sent to a freshly deployed artifact before it is recorded."""

    method: str
    argument_specs: Tuple[ArgumentSpec, ...] = ()


@dataclass(frozen=True)
class DeployNode:
    """A named deployable unit."""

    name: str
    artifact_kind: str
    argument_specs: Tuple[ArgumentSpec, ...] = ()
    calls: Tuple[PostDeployCall, ...] = ()
    tags: Tuple[str, ...] = ()
    confirmations: Optional[int] = None  # Overrides NetworkConfig.confirmations

    def all_specs(self) -> List[ArgumentSpec]:
        """Constructor and post-deploy call specs, in declaration order."""
        specs = list(self.argument_specs)
        for call in self.calls:
            specs.extend(call.argument_specs)
        return specs

    @property
    def depends_on(self) -> Tuple[str, ...]:
        """Names of nodes referenced by any argument spec, first mention first."""
        seen: Dict[str, None] = {}
        for spec in self.all_specs():
            if isinstance(spec, NodeOutputRef):
                seen.setdefault(spec.node, None)
        return tuple(seen)


@dataclass(frozen=True)
class DeploymentReceipt:
    """What the chain client reports after a confirmed deployment."""

    address: str
    transaction_hash: str
    confirmed_at_block: int


@dataclass(frozen=True)
class DeploymentRecord:
    """Persisted result of a successful deployment."""

    # Required fields
    node_name: str
    network: str
    address: str
    arguments: List[Any]  # Resolved constructor arguments
    transaction_hash: str
    confirmed_at_block: int
    timestamp: int  # Unix timestamp of the record

    # Optional fields
    artifact_kind: Optional[str] = None
    calls: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NodeStatus(Enum):
    """
    Outcome of one node in a run.

    Value strings are what operators see in the rendered report.
    """

    DEPLOYED = "deployed"
    SKIPPED_PRESENT = "skipped-already-present"
    FAILED = "failed"
    SKIPPED_DEPENDENCY_FAILED = "skipped-dependency-failed"
    NOT_STARTED = "not-started"


@dataclass
class NodeOutcome:
    """Per-node entry of a DeploymentReport."""

    name: str
    status: NodeStatus
    record: Optional[DeploymentRecord] = None
    error: Optional[Exception] = None
    blocked_by: Optional[str] = None  # Failed prerequisite for skipped dependents
    verification_queued: bool = False

    @property
    def address(self) -> Optional[str]:
        return self.record.address if self.record is not None else None

    @property
    def reason(self) -> Optional[str]:
        if self.status is NodeStatus.SKIPPED_DEPENDENCY_FAILED:
            return f"prerequisite '{self.blocked_by}' failed"
        if self.error is not None:
            return f"{type(self.error).__name__}: {self.error}"
        return None


@dataclass
class DeploymentReport:
    """Externally observable result of an orchestration run."""

    network: str
    outcomes: Dict[str, NodeOutcome] = field(default_factory=dict)

    def status(self, name: str) -> NodeStatus:
        return self.outcomes[name].status

    def by_status(self, status: NodeStatus) -> List[str]:
        return [name for name, o in self.outcomes.items() if o.status is status]

    def addresses(self) -> Dict[str, str]:
        """Addresses of every node that has a record (deployed or already present)."""
        return {
            name: o.record.address
            for name, o in self.outcomes.items()
            if o.record is not None
        }

    @property
    def ok(self) -> bool:
        return all(
            o.status in (NodeStatus.DEPLOYED, NodeStatus.SKIPPED_PRESENT)
            for o in self.outcomes.values()
        )

    def render(self) -> List[str]:
        """One human-readable line per node, in run order."""
        lines = []
        for name, outcome in self.outcomes.items():
            line = f"{name}: {outcome.status.value}"
            if outcome.address:
                line += f" at {outcome.address}"
            if outcome.reason:
                line += f" ({outcome.reason})"
            lines.append(line)
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network,
            "nodes": {
                name: {
                    "status": o.status.value,
                    "address": o.address,
                    "reason": o.reason,
                    "verification_queued": o.verification_queued,
                }
                for name, o in self.outcomes.items()
            },
        }
