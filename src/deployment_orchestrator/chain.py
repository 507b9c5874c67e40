"""Chain client interface and helpers for deployment-orchestrator library."""

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, List, Protocol, Tuple

from .exceptions import ConfirmationTimeout, SubmissionError
from .types import DeploymentReceipt

logger = logging.getLogger(__name__)


class ChainClient(Protocol):
    """Submits deployments and calls; implementations live outside the orchestrator."""

    def deploy(
        self, artifact_kind: str, args: List[Any], salt: str, confirmations: int
    ) -> DeploymentReceipt:
        """
        Deploy an artifact deterministically and wait for confirmations.

        Raises:
            SubmissionError: If the transaction cannot be submitted
            ConfirmationTimeout: If the confirmation depth is not reached in time
        """
        ...

    def call(self, address: str, method: str, args: List[Any]) -> str:
        """
        Send a transaction to a deployed artifact.

        Returns:
            Transaction hash

        Raises:
            CallError: If the call fails
        """
        ...


class RetryingChainClient:
    """
    Wraps a ChainClient with bounded exponential-backoff retries.

    SubmissionError and ConfirmationTimeout are retried; every other error
    (including CallError) passes straight through.
    """

    RETRYABLE: Tuple[type, ...] = (SubmissionError, ConfirmationTimeout)

    def __init__(
        self,
        inner: ChainClient,
        max_attempts: int = 3,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            inner: Client doing the actual work
            max_attempts: Total attempts per operation, at least 1
            backoff: Delay before the second attempt, doubled on each retry
            sleep: Sleep function, injectable for tests
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.inner = inner
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep

    def deploy(
        self, artifact_kind: str, args: List[Any], salt: str, confirmations: int
    ) -> DeploymentReceipt:
        delay = self.backoff
        attempt = 1
        while True:
            try:
                return self.inner.deploy(artifact_kind, args, salt, confirmations)
            except self.RETRYABLE as e:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Deploying %s failed after %d attempts: %s",
                        artifact_kind,
                        attempt,
                        e,
                    )
                    raise
                logger.warning(
                    "Deploying %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    artifact_kind,
                    attempt,
                    self.max_attempts,
                    delay,
                    e,
                )
            self._sleep(delay)
            delay *= 2
            attempt += 1

    def call(self, address: str, method: str, args: List[Any]) -> str:
        return self.inner.call(address, method, args)


def deterministic_address(artifact_kind: str, args: List[Any], salt: str) -> str:
    """
    Derive a stable pseudo-address from (artifact kind, arguments, salt).

    Args:
        artifact_kind: Artifact being deployed
        args: Resolved constructor arguments (JSON-serializable)
        salt: Deployment salt

    Returns:
        0x-prefixed 40 hex character address
    """
    payload = json.dumps([artifact_kind, args, salt], sort_keys=True, default=str)
    digest = hashlib.sha256(payload.encode()).hexdigest()
    return "0x" + digest[-40:]


class DryRunChainClient:
    """
    Chain client that submits nothing.

    Addresses come from deterministic_address(), so a dry run resolves
    dependent arguments the same way every time.
    """

    def __init__(self, start_block: int = 1):
        self._block = start_block
        self._lock = threading.Lock()
        self.deployments: List[Tuple[str, List[Any]]] = []
        self.calls: List[Tuple[str, str, List[Any]]] = []

    def deploy(
        self, artifact_kind: str, args: List[Any], salt: str, confirmations: int
    ) -> DeploymentReceipt:
        address = deterministic_address(artifact_kind, args, salt)
        with self._lock:
            self.deployments.append((artifact_kind, list(args)))
            self._block += confirmations
            block = self._block
        tx_hash = "0x" + hashlib.sha256(f"deploy:{address}".encode()).hexdigest()
        logger.debug("Dry run: %s would deploy at %s", artifact_kind, address)
        return DeploymentReceipt(
            address=address, transaction_hash=tx_hash, confirmed_at_block=block
        )

    def call(self, address: str, method: str, args: List[Any]) -> str:
        with self._lock:
            self.calls.append((address, method, list(args)))
            index = len(self.calls)
        payload = f"call:{address}:{method}:{index}"
        return "0x" + hashlib.sha256(payload.encode()).hexdigest()
