"""JSON-RPC chain client for deployment-orchestrator library."""

import itertools
import logging
import os
import time
from typing import Any, Callable, Dict, List, Protocol

import requests
from web3 import Web3

from .constants import DETERMINISTIC_DEPLOYMENT_PROXY
from .exceptions import (
    CallError,
    ConfigurationError,
    ConfirmationTimeout,
    RpcError,
    SubmissionError,
)
from .types import DeploymentReceipt, NetworkConfig

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)

EMPTY_CODE = ("0x", "0x0", "")


def rpc_request(rpc_url: str, method: str, params: List[Any], timeout: int = 30) -> Any:
    """
    Make a single JSON-RPC call.

    Args:
        rpc_url: RPC endpoint URL
        method: RPC method, e.g. "eth_blockNumber"
        params: Positional parameters
        timeout: HTTP timeout in seconds

    Returns:
        The "result" member of the response

    Raises:
        RpcError: On HTTP errors, RPC errors or network failures
    """
    try:
        response = requests.post(
            rpc_url,
            json={
                "jsonrpc": "2.0",
                "method": method,
                "params": params,
                "id": next(_request_ids),
            },
            timeout=timeout,
        )

        # Check for HTTP errors
        if response.status_code != 200:
            raise RpcError(f"RPC request {method} failed with status {response.status_code}")

        result = response.json()

        # Check for RPC errors
        if "error" in result:
            raise RpcError(f"RPC error in {method}: {result['error']}")

        return result.get("result")

    except requests.RequestException as e:
        raise RpcError(f"Network error during RPC call {method}: {e}") from e
    except ValueError as e:
        # Body was not JSON
        raise RpcError(f"Malformed RPC response to {method}: {e}") from e


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def create2_address(deployer: str, salt: str, initcode: str) -> str:
    """
    Address a CREATE2 deployment lands at.

    keccak256(0xff ++ deployer ++ salt ++ keccak256(initcode)), last 20 bytes.

    Args:
        deployer: Contract executing CREATE2 (the deterministic deployment proxy)
        salt: 32-byte salt, 0x-prefixed hex
        initcode: Creation bytecode with constructor arguments, 0x-prefixed hex

    Returns:
        Lowercase 0x-prefixed address
    """
    salt_bytes = bytes.fromhex(_strip_0x(salt).rjust(64, "0"))
    if len(salt_bytes) != 32:
        raise ValueError(f"Salt must be 32 bytes: {salt}")
    preimage = (
        b"\xff"
        + bytes.fromhex(_strip_0x(deployer))
        + salt_bytes
        + bytes(Web3.keccak(hexstr=initcode))
    )
    return "0x" + bytes(Web3.keccak(preimage))[12:].hex()


class TransactionEncoder(Protocol):
    """Builds transaction payloads; needs compiled artifacts, so it stays external."""

    def encode_deployment(self, artifact_kind: str, args: List[Any]) -> str:
        """Creation bytecode with ABI-encoded constructor arguments, 0x-prefixed."""
        ...

    def encode_call(self, method: str, args: List[Any]) -> str:
        """Calldata for a method call, 0x-prefixed."""
        ...


class JsonRpcChainClient:
    """
    ChainClient over a node's JSON-RPC API.

    Deployments go through the deterministic deployment proxy, so the
    address depends only on salt and creation code. Transactions are sent
    with eth_sendTransaction, i.e. the node holds the sender account
    (hardhat, anvil, or a signing proxy in front of a remote node).
    """

    def __init__(
        self,
        rpc_url: str,
        sender: str,
        encoder: TransactionEncoder,
        poll_interval: float = 2.0,
        confirmation_timeout: float = 300.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rpc_url = rpc_url
        self.sender = sender
        self.encoder = encoder
        self.poll_interval = poll_interval
        self.confirmation_timeout = confirmation_timeout
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_network(
        cls, network: NetworkConfig, sender: str, encoder: TransactionEncoder, **kwargs: Any
    ) -> "JsonRpcChainClient":
        """
        Build a client whose RPC URL comes from the network's rpc_url_env variable.

        Raises:
            ConfigurationError: If the network names no variable or it is unset
        """
        if not network.rpc_url_env:
            raise ConfigurationError(f"Network '{network.name}' has no rpc_url_env")
        rpc_url = os.environ.get(network.rpc_url_env)
        if not rpc_url:
            raise ConfigurationError(
                f"RPC URL required: set ${network.rpc_url_env} for network '{network.name}'"
            )
        return cls(rpc_url, sender, encoder, **kwargs)

    def _rpc(self, method: str, *params: Any) -> Any:
        return rpc_request(self.rpc_url, method, list(params))

    def block_number(self) -> int:
        return int(self._rpc("eth_blockNumber"), 16)

    def predict_address(self, salt: str, initcode: str) -> str:
        """Where the proxy's CREATE2 puts salt + initcode, computed locally."""
        return create2_address(DETERMINISTIC_DEPLOYMENT_PROXY, salt, initcode)

    def _proxy_tx(self, salt: str, initcode: str) -> Dict[str, str]:
        return {
            "from": self.sender,
            "to": DETERMINISTIC_DEPLOYMENT_PROXY,
            "data": "0x" + _strip_0x(salt).rjust(64, "0") + _strip_0x(initcode),
        }

    def wait_for_confirmations(self, tx_hash: str, confirmations: int) -> int:
        """
        Poll until tx_hash is mined and buried under enough blocks.

        Args:
            tx_hash: Transaction hash
            confirmations: Required depth; 1 means "mined"

        Returns:
            Block number at which the depth was reached

        Raises:
            SubmissionError: If the transaction reverted
            ConfirmationTimeout: If the depth is not reached in time
        """
        deadline = self._clock() + self.confirmation_timeout
        while True:
            receipt = self._rpc("eth_getTransactionReceipt", tx_hash)
            if receipt and receipt.get("blockNumber"):
                if receipt.get("status") == "0x0":
                    raise SubmissionError(f"Transaction {tx_hash} reverted")
                mined_at = int(receipt["blockNumber"], 16)
                target = mined_at + confirmations - 1
                current = self.block_number()
                logger.debug(
                    "Transaction %s mined at %d, head %d, target %d",
                    tx_hash,
                    mined_at,
                    current,
                    target,
                )
                if current >= target:
                    return target

            if self._clock() >= deadline:
                raise ConfirmationTimeout(
                    f"Transaction {tx_hash} not confirmed {confirmations} deep "
                    f"within {self.confirmation_timeout:.0f}s"
                )
            self._sleep(self.poll_interval)

    def wait_for_block(self, target: int) -> int:
        """
        Poll until the chain head reaches target.

        Raises:
            ConfirmationTimeout: If the head does not get there in time
        """
        deadline = self._clock() + self.confirmation_timeout
        while True:
            current = self.block_number()
            if current >= target:
                return target
            if self._clock() >= deadline:
                raise ConfirmationTimeout(
                    f"Head stuck at {current}, below block {target}, "
                    f"after {self.confirmation_timeout:.0f}s"
                )
            self._sleep(self.poll_interval)

    def deploy(
        self, artifact_kind: str, args: List[Any], salt: str, confirmations: int
    ) -> DeploymentReceipt:
        initcode = self.encoder.encode_deployment(artifact_kind, args)
        address = self.predict_address(salt, initcode)

        # Already on chain (earlier run, or a submission that outlived its timeout)
        code = self._rpc("eth_getCode", address, "latest")
        if code not in EMPTY_CODE:
            logger.info("%s already has code at %s, not resubmitting", artifact_kind, address)
            # Mined at or before the head seen now, so depth is reached one
            # confirmation window later
            seen_at = self.block_number()
            return DeploymentReceipt(
                address=address,
                transaction_hash="",
                confirmed_at_block=self.wait_for_block(seen_at + confirmations - 1),
            )

        tx_hash = self._rpc("eth_sendTransaction", self._proxy_tx(salt, initcode))
        logger.info("Submitted %s deployment in %s", artifact_kind, tx_hash)
        confirmed_at = self.wait_for_confirmations(tx_hash, confirmations)

        return DeploymentReceipt(
            address=address, transaction_hash=tx_hash, confirmed_at_block=confirmed_at
        )

    def call(self, address: str, method: str, args: List[Any]) -> str:
        tx = {
            "from": self.sender,
            "to": address,
            "data": self.encoder.encode_call(method, args),
        }
        try:
            tx_hash = self._rpc("eth_sendTransaction", tx)
            self.wait_for_confirmations(tx_hash, 1)
        except (SubmissionError, ConfirmationTimeout) as e:
            raise CallError(f"Call {method} on {address} failed: {e}") from e
        return tx_hash
