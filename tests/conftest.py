"""Shared pytest fixtures for deployment-orchestrator tests."""

import threading
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Tuple

import pytest

from deployment_orchestrator.chain import DryRunChainClient
from deployment_orchestrator.config import ConfigResolver, load_network_table
from deployment_orchestrator.definitions import load_node_definitions
from deployment_orchestrator.exceptions import CallError, SubmissionError
from deployment_orchestrator.registry import FileRegistry
from deployment_orchestrator.types import DeploymentReceipt, DeployNode, NetworkConfig


class RecordingChainClient:
    """Dry-run chain client that records requests and can fail or block on demand."""

    def __init__(
        self,
        fail_kinds: Iterable[str] = (),
        fail_calls: Iterable[str] = (),
        before_deploy: Optional[Callable[[str], None]] = None,
    ):
        self._inner = DryRunChainClient()
        self._lock = threading.Lock()
        self.fail_kinds = set(fail_kinds)
        self.fail_calls = set(fail_calls)
        self.before_deploy = before_deploy
        self.deploy_requests: List[Tuple[str, List[Any], str, int]] = []
        self.call_requests: List[Tuple[str, str, List[Any]]] = []

    @property
    def deployed_kinds(self) -> List[str]:
        return [request[0] for request in self.deploy_requests]

    def deploy(
        self, artifact_kind: str, args: List[Any], salt: str, confirmations: int
    ) -> DeploymentReceipt:
        with self._lock:
            self.deploy_requests.append((artifact_kind, list(args), salt, confirmations))
        if self.before_deploy is not None:
            self.before_deploy(artifact_kind)
        if artifact_kind in self.fail_kinds:
            raise SubmissionError(f"{artifact_kind} reverted")
        return self._inner.deploy(artifact_kind, args, salt, confirmations)

    def call(self, address: str, method: str, args: List[Any]) -> str:
        with self._lock:
            self.call_requests.append((address, method, list(args)))
        if method in self.fail_calls:
            raise CallError(f"{method} reverted")
        return self._inner.call(address, method, args)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the path to the fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def networks_file(fixtures_dir: Path) -> Path:
    """Return path to the sample network table."""
    return fixtures_dir / "networks.yaml"


@pytest.fixture
def resolver(networks_file: Path) -> ConfigResolver:
    """Resolver over the sample network table."""
    return ConfigResolver(load_network_table(networks_file))


@pytest.fixture
def testnet(resolver: ConfigResolver) -> NetworkConfig:
    """Non-local network carrying the scenario parameters."""
    return resolver.resolve("testnet")


@pytest.fixture
def devnet(resolver: ConfigResolver) -> NetworkConfig:
    """Local sandbox network."""
    return resolver.resolve("devnet")


@pytest.fixture
def scenario_nodes(fixtures_dir: Path) -> List[DeployNode]:
    """Oracle, FeeController (needs Oracle) and FeeHandler."""
    return load_node_definitions(fixtures_dir / "scenario_nodes.yaml")


@pytest.fixture
def registry(tmp_path: Path) -> FileRegistry:
    """Empty file registry in a temporary directory."""
    return FileRegistry(tmp_path / "deployments")


@pytest.fixture
def chain_client() -> RecordingChainClient:
    """Chain client that succeeds and records every request."""
    return RecordingChainClient()


@pytest.fixture
def make_chain_client() -> Callable[..., RecordingChainClient]:
    """Factory for chain clients that fail or block on chosen artifacts."""
    return RecordingChainClient
