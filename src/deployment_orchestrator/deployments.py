"""Main API for deployment-orchestrator library."""

import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from .chain import ChainClient, DryRunChainClient, RetryingChainClient
from .config import ConfigResolver, get_resolver
from .definitions import load_node_definitions, parse_node_definitions
from .graph import build_graph
from .orchestrator import Orchestrator
from .registry import DeploymentRegistry, FileRegistry, InMemoryRegistry
from .types import DeploymentReport, DeployNode, NetworkConfig
from .verification import VerificationQueue, Verifier

logger = logging.getLogger(__name__)

NodeDefinitions = Union[str, Path, Sequence[Union[Mapping[str, Any], DeployNode]]]


def run_deployment(
    definitions: NodeDefinitions,
    network: Union[str, NetworkConfig],
    chain_client: Optional[ChainClient] = None,
    registry: Optional[DeploymentRegistry] = None,
    verifier: Optional[Verifier] = None,
    tags: Optional[Iterable[str]] = None,
    dry_run: bool = False,
    max_workers: int = 1,
    cancel_event: Optional[threading.Event] = None,
    resolver: Optional[ConfigResolver] = None,
    wait_for_verification: bool = False,
    max_attempts: int = 3,
    retry_backoff: float = 2.0,
) -> DeploymentReport:
    """
    Deploy a set of node definitions on a network.

    Network resolution and graph construction happen before any chain
    interaction, so configuration errors abort with nothing submitted.

    Args:
        definitions: Path to a JSON/YAML definitions file, or node definitions
        network: Network name (resolved with resolver) or a NetworkConfig
        chain_client: Client used for real runs; required unless dry_run
        registry: Checkpoint store (defaults to FileRegistry at ./deployments)
        verifier: Explorer verifier; None disables verification
        tags: Deploy only nodes carrying one of these tags, plus their dependencies
        dry_run: Simulate against an in-memory copy of the registry, no verification
        max_workers: Upper bound on concurrently deploying nodes
        cancel_event: Operator cancellation signal
        resolver: Network resolver (defaults to the process-wide one)
        wait_for_verification: Block until queued verifications finish
        max_attempts: Attempts per deployment before a node fails; the
            chain client is wrapped in a RetryingChainClient unless it is one
        retry_backoff: Delay before the first retry, doubled on each retry

    Returns:
        DeploymentReport

    Raises:
        UnknownNetwork: If the network name is not configured
        DefinitionError: If the definitions cannot be parsed
        DuplicateNode, UnresolvedReference, CyclicDependency: If the graph is invalid
        ConcurrentDeploymentConflict: If another run recorded a node first
        ValueError: If no chain client is given for a real run
    """
    if isinstance(network, str):
        network = (resolver or get_resolver()).resolve(network)

    if isinstance(definitions, (str, Path)):
        nodes = load_node_definitions(definitions)
    else:
        nodes = parse_node_definitions(definitions)

    graph = build_graph(nodes)
    if tags is not None:
        graph = graph.select(tags)
        logger.info("Tag selection leaves %d nodes: %s", len(graph), ", ".join(graph.order))

    if registry is None:
        registry = FileRegistry()

    if dry_run:
        orchestrator = Orchestrator(
            DryRunChainClient(),
            InMemoryRegistry(registry.records(network.name)),
            max_workers=max_workers,
        )
        return orchestrator.run(graph, network, cancel_event)

    if chain_client is None:
        raise ValueError("chain_client is required unless dry_run is set")
    if not isinstance(chain_client, RetryingChainClient):
        chain_client = RetryingChainClient(
            chain_client, max_attempts=max_attempts, backoff=retry_backoff
        )

    verification = VerificationQueue(verifier) if verifier is not None else None
    try:
        orchestrator = Orchestrator(
            chain_client, registry, verification=verification, max_workers=max_workers
        )
        return orchestrator.run(graph, network, cancel_event)
    finally:
        if verification is not None:
            if wait_for_verification:
                verification.join()
            verification.shutdown(wait=wait_for_verification)
