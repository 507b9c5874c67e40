"""Deployment registry (checkpoint store) for deployment-orchestrator library."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from .exceptions import (
    DefectiveRecordError,
    DuplicateRecord,
    InvalidRecordKey,
    RegistryError,
)
from .paths import get_default_registry_dir, get_record_path, is_safe_path_component
from .types import DeploymentRecord

logger = logging.getLogger(__name__)


class DeploymentRegistry(Protocol):
    """Durable (network, node name) -> DeploymentRecord mapping."""

    def lookup(self, network: str, node_name: str) -> Optional[DeploymentRecord]:
        ...

    def record(
        self,
        network: str,
        node_name: str,
        record: DeploymentRecord,
        force: bool = False,
    ) -> None:
        ...

    def forget(self, network: str, node_name: str) -> bool:
        ...

    def records(self, network: str) -> List[DeploymentRecord]:
        ...


def _check_key(network: str, node_name: str) -> None:
    for part in (network, node_name):
        if not isinstance(part, str) or not is_safe_path_component(part):
            raise InvalidRecordKey(f"Invalid registry key component: {part!r}")


def record_to_json(record: DeploymentRecord) -> Dict[str, Any]:
    """
    Serialize a record in hardhat-deploy's deployment file shape.

    Args:
        record: Deployment record

    Returns:
        JSON-ready dict with address, transactionHash, args, receipt.blockNumber
    """
    return {
        "address": record.address,
        "transactionHash": record.transaction_hash,
        "args": record.arguments,
        "receipt": {
            "blockNumber": record.confirmed_at_block,
            "transactionHash": record.transaction_hash,
        },
        "nodeName": record.node_name,
        "network": record.network,
        "artifactKind": record.artifact_kind,
        "timestamp": record.timestamp,
        "calls": record.calls,
    }


def record_from_json(data: Dict[str, Any], network: str, node_name: str) -> DeploymentRecord:
    """
    Parse a record file's content.

    Also accepts plain hardhat-deploy files, which carry no nodeName,
    network or timestamp.

    Args:
        data: Parsed JSON content
        network: Network the file was found under
        node_name: Node name from the filename

    Returns:
        DeploymentRecord

    Raises:
        DefectiveRecordError: If address, transaction hash or block number is missing
    """
    # Try to get block number from receipt first, fall back to top-level
    block_number = None
    if "receipt" in data and "blockNumber" in data["receipt"]:
        block_number = data["receipt"]["blockNumber"]
    elif "blockNumber" in data:
        block_number = data["blockNumber"]

    if block_number is None or "address" not in data or "transactionHash" not in data:
        raise DefectiveRecordError(
            f"Record for '{node_name}' on '{network}' is missing address, "
            "transactionHash or block number"
        )

    return DeploymentRecord(
        node_name=data.get("nodeName", node_name),
        network=data.get("network", network),
        address=data["address"],
        arguments=data.get("args", []),
        transaction_hash=data["transactionHash"],
        confirmed_at_block=block_number,
        timestamp=data.get("timestamp", 0),
        artifact_kind=data.get("artifactKind"),
        calls=data.get("calls", []),
    )


class FileRegistry:
    """
    Registry stored as one JSON file per record.

    Layout follows hardhat-deploy: {root}/{network}/{node_name}.json.
    A write-once record is published by hard-linking a fully written temp
    file into place; the link fails if the target exists, so two processes
    racing on the same key cannot both succeed.
    """

    def __init__(self, root: Optional[Union[Path, str]] = None):
        """
        Initialize the registry.

        Args:
            root: Registry directory (defaults to ./deployments or $DEPLOY_REGISTRY_DIR)
        """
        self.root = Path(root).absolute() if root is not None else get_default_registry_dir()

    def _path(self, network: str, node_name: str) -> Path:
        _check_key(network, node_name)
        return get_record_path(network, node_name, self.root)

    def lookup(self, network: str, node_name: str) -> Optional[DeploymentRecord]:
        """
        Read the record for a node, if any.

        Raises:
            DefectiveRecordError: If the file exists but is unusable
            RegistryError: If the file cannot be read
        """
        path = self._path(network, node_name)
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise DefectiveRecordError(f"Corrupted record file {path}: {e}") from e
        except OSError as e:
            raise RegistryError(f"Cannot read record file {path}: {e}") from e

        return record_from_json(data, network, node_name)

    def record(
        self,
        network: str,
        node_name: str,
        record: DeploymentRecord,
        force: bool = False,
    ) -> None:
        """
        Persist a record, once per (network, node_name).

        Args:
            network: Network name
            node_name: Deploy node name
            record: Record to store
            force: Replace an existing record instead of failing

        Raises:
            DuplicateRecord: If a record exists and force is False
            RegistryError: If the file cannot be written
        """
        path = self._path(network, node_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{node_name}.", suffix=".tmp"
            )
        except OSError as e:
            raise RegistryError(f"Cannot write record for '{node_name}' on '{network}': {e}") from e

        try:
            with os.fdopen(fd, "w") as f:
                json.dump(record_to_json(record), f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            if force:
                os.replace(tmp_name, path)
                logger.info("Replaced record for %s on %s", node_name, network)
                return

            os.link(tmp_name, path)
        except FileExistsError:
            raise DuplicateRecord(
                f"Record for '{node_name}' on '{network}' already exists"
            ) from None
        except OSError as e:
            raise RegistryError(f"Cannot write record for '{node_name}' on '{network}': {e}") from e
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def forget(self, network: str, node_name: str) -> bool:
        """
        Delete a record so the node is deployed again on the next run.

        Returns:
            True if a record was deleted, False if there was none
        """
        path = self._path(network, node_name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Forgot record for %s on %s", node_name, network)
        return True

    def records(self, network: str) -> List[DeploymentRecord]:
        """All records stored for a network, sorted by node name."""
        network_dir = self.root / network
        if not network_dir.is_dir():
            return []
        result = []
        for record_file in sorted(network_dir.glob("*.json")):
            record = self.lookup(network, record_file.stem)
            if record is not None:
                result.append(record)
        return result


class InMemoryRegistry:
    """Process-local registry, used for dry runs and tests."""

    def __init__(self, seed: Iterable[DeploymentRecord] = ()):
        self._records: Dict[Tuple[str, str], DeploymentRecord] = {}
        self._lock = threading.Lock()
        for record in seed:
            self._records[(record.network, record.node_name)] = record

    def lookup(self, network: str, node_name: str) -> Optional[DeploymentRecord]:
        with self._lock:
            return self._records.get((network, node_name))

    def record(
        self,
        network: str,
        node_name: str,
        record: DeploymentRecord,
        force: bool = False,
    ) -> None:
        with self._lock:
            key = (network, node_name)
            if key in self._records and not force:
                raise DuplicateRecord(
                    f"Record for '{node_name}' on '{network}' already exists"
                )
            self._records[key] = record

    def forget(self, network: str, node_name: str) -> bool:
        with self._lock:
            return self._records.pop((network, node_name), None) is not None

    def records(self, network: str) -> List[DeploymentRecord]:
        with self._lock:
            return [
                record
                for (net, name), record in sorted(self._records.items())
                if net == network
            ]
