"""Deployment orchestration for deployment-orchestrator library."""

import heapq
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from .chain import ChainClient
from .config import thaw
from .exceptions import (
    ConcurrentDeploymentConflict,
    DeploymentError,
    DuplicateRecord,
    MissingParameter,
    UnresolvedReference,
)
from .graph import DeploymentGraph
from .registry import DeploymentRegistry
from .types import (
    ArgumentSpec,
    DeploymentRecord,
    DeploymentReport,
    DeployNode,
    LiteralArg,
    NetworkConfig,
    NodeOutcome,
    NodeOutputRef,
    NodeStatus,
    ParameterRef,
)
from .verification import VerificationQueue

logger = logging.getLogger(__name__)

_MISSING = object()


def _lookup_parameter(parameters: Mapping[str, Any], key: str) -> Any:
    # Exact key first, then a dotted path into nested mappings ("feeHandler.vault")
    if key in parameters:
        return parameters[key]
    value: Any = parameters
    for part in key.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def resolve_arguments(
    node_name: str,
    specs: Sequence[ArgumentSpec],
    network: NetworkConfig,
    outputs: Mapping[str, DeploymentRecord],
) -> List[Any]:
    """
    Turn argument specs into literal values.

    Args:
        node_name: Node the arguments belong to (for error messages)
        specs: Argument specs in order
        network: Network whose parameters fill ParameterRef specs
        outputs: Records of already deployed nodes, by node name

    Returns:
        Resolved values, same order as specs

    Raises:
        MissingParameter: If a ParameterRef names a key the network lacks
        UnresolvedReference: If a NodeOutputRef names a node with no record
    """
    values: List[Any] = []
    for spec in specs:
        if isinstance(spec, LiteralArg):
            values.append(spec.value)
        elif isinstance(spec, ParameterRef):
            value = _lookup_parameter(network.parameters, spec.key)
            if value is _MISSING:
                raise MissingParameter(
                    f"Node '{node_name}' needs parameter '{spec.key}' "
                    f"which network '{network.name}' does not define",
                    node=node_name,
                    parameter=spec.key,
                )
            values.append(thaw(value))
        elif isinstance(spec, NodeOutputRef):
            record = outputs.get(spec.node)
            if record is None:
                raise UnresolvedReference(
                    f"Node '{node_name}' needs '{spec.node}' which has no deployment record",
                    node=node_name,
                    missing=spec.node,
                )
            values.append(getattr(record, spec.field))
        else:
            raise TypeError(f"Unknown argument spec {spec!r}")
    return values


class Orchestrator:
    """Walks a DeploymentGraph, deploying what the registry does not already hold."""

    def __init__(
        self,
        chain_client: ChainClient,
        registry: DeploymentRegistry,
        verification: Optional[VerificationQueue] = None,
        max_workers: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the orchestrator.

        Args:
            chain_client: Submits deployments and post-deploy calls
            registry: Checkpoint store consulted before and written after each deployment
            verification: Queue for explorer verification; None disables it
            max_workers: Upper bound on nodes deployed at the same time
            clock: Source of record timestamps
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.chain_client = chain_client
        self.registry = registry
        self.verification = verification
        self.max_workers = max_workers
        self._clock = clock

    def _outputs_for(
        self,
        node: DeployNode,
        network: NetworkConfig,
        records: Mapping[str, DeploymentRecord],
    ) -> Dict[str, DeploymentRecord]:
        outputs: Dict[str, DeploymentRecord] = {}
        for dep in node.depends_on:
            record = records.get(dep)
            if record is None:
                record = self.registry.lookup(network.name, dep)
            if record is not None:
                outputs[dep] = record
        return outputs

    def _process_node(
        self,
        node: DeployNode,
        network: NetworkConfig,
        outputs: Mapping[str, DeploymentRecord],
    ) -> NodeOutcome:
        try:
            existing = self.registry.lookup(network.name, node.name)
            if existing is not None:
                logger.info(
                    "%s already deployed on %s at %s, skipping",
                    node.name,
                    network.name,
                    existing.address,
                )
                return NodeOutcome(node.name, NodeStatus.SKIPPED_PRESENT, record=existing)

            # Every argument, calls included, resolves before anything is submitted
            args = resolve_arguments(node.name, node.argument_specs, network, outputs)
            call_args = [
                resolve_arguments(node.name, call.argument_specs, network, outputs)
                for call in node.calls
            ]
            logger.debug("Resolved arguments for %s: %r", node.name, args)

            confirmations = node.confirmations or network.confirmations
            receipt = self.chain_client.deploy(
                node.artifact_kind, args, network.deployment_salt, confirmations
            )

            calls = []
            for call, resolved in zip(node.calls, call_args):
                tx_hash = self.chain_client.call(receipt.address, call.method, resolved)
                calls.append({"method": call.method, "args": resolved, "transaction_hash": tx_hash})

            record = DeploymentRecord(
                node_name=node.name,
                network=network.name,
                address=receipt.address,
                arguments=args,
                transaction_hash=receipt.transaction_hash,
                confirmed_at_block=receipt.confirmed_at_block,
                timestamp=int(self._clock()),
                artifact_kind=node.artifact_kind,
                calls=calls,
            )
            try:
                self.registry.record(network.name, node.name, record)
            except DuplicateRecord as e:
                raise ConcurrentDeploymentConflict(
                    f"Another run recorded '{node.name}' on '{network.name}' first",
                    node=node.name,
                ) from e

        except DeploymentError as e:
            logger.error("Deploying %s on %s failed: %s", node.name, network.name, e)
            return NodeOutcome(node.name, NodeStatus.FAILED, error=e)
        except Exception as e:
            # Adapters may raise anything; it fails this node, not the run
            logger.exception("Unexpected error deploying %s on %s", node.name, network.name)
            return NodeOutcome(node.name, NodeStatus.FAILED, error=e)

        logger.info("Deployed %s on %s at %s", node.name, network.name, record.address)

        queued = False
        if not network.local and self.verification is not None:
            self.verification.submit(record)
            queued = True

        return NodeOutcome(
            node.name, NodeStatus.DEPLOYED, record=record, verification_queued=queued
        )

    def run(
        self,
        graph: DeploymentGraph,
        network: NetworkConfig,
        cancel_event: Optional[threading.Event] = None,
    ) -> DeploymentReport:
        """
        Deploy every node of the graph on a network.

        A node starts only after each prerequisite's record is stored. When a
        node fails, its transitive dependents are skipped; unrelated nodes
        still run. Setting cancel_event stops new nodes from starting while
        running ones finish.

        Args:
            graph: Nodes to deploy
            network: Target network
            cancel_event: Operator cancellation signal

        Returns:
            DeploymentReport with one outcome per node, in graph order

        Raises:
            ConcurrentDeploymentConflict: If another run recorded a node first;
                the exception's report holds the partial outcome
        """
        position = {name: i for i, name in enumerate(graph.order)}
        waiting: Dict[str, Set[str]] = {
            name: set(graph.dependencies(name)) for name in graph.order
        }
        ready = [(position[name], name) for name in graph.order if not waiting[name]]
        heapq.heapify(ready)

        outcomes: Dict[str, NodeOutcome] = {}
        records: Dict[str, DeploymentRecord] = {}
        running: Dict[Future, str] = {}
        conflict: Optional[ConcurrentDeploymentConflict] = None

        logger.info("Deploying %d nodes on %s", len(graph), network.name)

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="deploy"
        ) as executor:
            while ready or running:
                stopping = conflict is not None or (
                    cancel_event is not None and cancel_event.is_set()
                )
                while ready and not stopping and len(running) < self.max_workers:
                    _, name = heapq.heappop(ready)
                    node = graph.node(name)
                    outputs = self._outputs_for(node, network, records)
                    running[executor.submit(self._process_node, node, network, outputs)] = name

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: position[running[f]]):
                    name = running.pop(future)
                    outcome = future.result()
                    outcomes[name] = outcome

                    if outcome.record is not None:
                        records[name] = outcome.record
                        for dependent in graph.dependents(name):
                            waiting[dependent].discard(name)
                            if not waiting[dependent] and dependent not in outcomes:
                                heapq.heappush(ready, (position[dependent], dependent))
                        continue

                    if isinstance(outcome.error, ConcurrentDeploymentConflict) and conflict is None:
                        conflict = outcome.error
                    for dependent in graph.transitive_dependents(name):
                        if dependent not in outcomes:
                            outcomes[dependent] = NodeOutcome(
                                dependent,
                                NodeStatus.SKIPPED_DEPENDENCY_FAILED,
                                blocked_by=name,
                            )
                            logger.warning(
                                "Skipping %s: prerequisite %s failed", dependent, name
                            )

        report = DeploymentReport(network=network.name)
        for name in graph.order:
            report.outcomes[name] = outcomes.get(name) or NodeOutcome(
                name, NodeStatus.NOT_STARTED
            )

        logger.info(
            "Run on %s finished: %d deployed, %d already present, %d failed, "
            "%d skipped, %d not started",
            network.name,
            len(report.by_status(NodeStatus.DEPLOYED)),
            len(report.by_status(NodeStatus.SKIPPED_PRESENT)),
            len(report.by_status(NodeStatus.FAILED)),
            len(report.by_status(NodeStatus.SKIPPED_DEPENDENCY_FAILED)),
            len(report.by_status(NodeStatus.NOT_STARTED)),
        )

        if conflict is not None:
            conflict.report = report
            raise conflict

        return report
