"""Network configuration resolution for deployment-orchestrator library."""

import json
import logging
import os
import re
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .constants import (
    DEFAULT_CONFIRMATIONS,
    DEFAULT_DEPLOYMENT_SALT,
    LOCAL_NETWORKS,
    NETWORK_CONFIG,
    NETWORKS_FILE_ENV,
)
from .exceptions import ConfigurationError, UnknownNetwork
from .types import NetworkConfig

logger = logging.getLogger(__name__)

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _expand_str(value: str) -> str:
    def replacer(match: re.Match) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ConfigurationError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def expand_env(value: Any) -> Any:
    """
    Recursively expand ${VAR} and ${VAR:-default} in string values.

    Args:
        value: Scalar, list or mapping loaded from a network file

    Returns:
        Same structure with environment references substituted

    Raises:
        ConfigurationError: If a referenced variable is unset and has no default
    """
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    return value


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Convert frozen parameter values back to plain dicts and lists."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


def network_config_from_dict(name: str, data: Mapping[str, Any]) -> NetworkConfig:
    """
    Build a NetworkConfig from one entry of a network table.

    Args:
        name: Network name (table key)
        data: Entry with at least chain_id; parameters, deployment_salt,
              confirmations, local, chain_name, block_explorer_url,
              explorer_api_url and rpc_url_env are optional

    Returns:
        Immutable NetworkConfig

    Raises:
        ConfigurationError: If chain_id is missing or a field has the wrong type
    """
    if "chain_id" not in data:
        raise ConfigurationError(f"Network '{name}' is missing chain_id")

    try:
        chain_id = int(data["chain_id"])
        confirmations = int(data.get("confirmations", DEFAULT_CONFIRMATIONS))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Network '{name}' has a malformed number: {e}") from e

    if confirmations < 1:
        raise ConfigurationError(
            f"Network '{name}' confirmations must be at least 1, got {confirmations}"
        )

    parameters = data.get("parameters") or {}
    if not isinstance(parameters, Mapping):
        raise ConfigurationError(f"Network '{name}' parameters must be a mapping")

    return NetworkConfig(
        network_id=chain_id,
        name=name,
        deployment_salt=data.get("deployment_salt", DEFAULT_DEPLOYMENT_SALT),
        parameters=_freeze(dict(parameters)),
        confirmations=confirmations,
        local=bool(data.get("local", name in LOCAL_NETWORKS)),
        chain_name=data.get("chain_name"),
        block_explorer_url=data.get("block_explorer_url"),
        explorer_api_url=data.get("explorer_api_url"),
        rpc_url_env=data.get("rpc_url_env"),
    )


def load_network_table(file_path: Union[Path, str]) -> Dict[str, Dict[str, Any]]:
    """
    Load a network table from a JSON or YAML file.

    The file holds a mapping of network name to entry, optionally nested
    under a top-level "networks" key. Environment references are expanded.

    Args:
        file_path: Path to .json, .yaml or .yml file

    Returns:
        Dictionary mapping network name -> raw entry

    Raises:
        ConfigurationError: If the file cannot be parsed or has the wrong shape
    """
    path = Path(file_path)
    try:
        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read network table {path}: {e}") from e

    if isinstance(data, dict) and "networks" in data:
        data = data["networks"]
    if not isinstance(data, dict):
        raise ConfigurationError(f"Network table {path} must be a mapping of networks")

    return {name: expand_env(entry) for name, entry in data.items()}


class ConfigResolver:
    """Maps network names (and chain ids) to NetworkConfig values."""

    def __init__(self, table: Optional[Mapping[str, Mapping[str, Any]]] = None):
        """
        Initialize the resolver.

        Args:
            table: Network name -> raw entry. Defaults to the built-in table.

        Raises:
            ConfigurationError: If any entry is malformed
        """
        if table is None:
            table = NETWORK_CONFIG
        self._configs: Dict[str, NetworkConfig] = {
            name: network_config_from_dict(name, entry) for name, entry in table.items()
        }

    def networks(self) -> List[str]:
        return list(self._configs)

    def resolve(self, network_name: str) -> NetworkConfig:
        """
        Look up a network by exact name.

        Args:
            network_name: Network name, e.g. "arbitrumSepolia"

        Returns:
            NetworkConfig for the network

        Raises:
            UnknownNetwork: If the name is not in the table
        """
        try:
            return self._configs[network_name]
        except KeyError:
            raise UnknownNetwork(
                f"Network '{network_name}' is not configured "
                f"(known: {', '.join(sorted(self._configs)) or 'none'})"
            ) from None

    def resolve_chain_id(self, chain_id: int) -> NetworkConfig:
        """
        Look up a network by chain id.

        The first table entry wins when several share a chain id.

        Raises:
            UnknownNetwork: If no entry has the chain id
        """
        for config in self._configs.values():
            if config.network_id == chain_id:
                return config
        raise UnknownNetwork(f"No network configured for chain id {chain_id}")


_default_resolver: Optional[ConfigResolver] = None
_default_lock = threading.Lock()


def get_resolver() -> ConfigResolver:
    """
    Get the process-wide resolver, building it on first use.

    The built-in table is merged with the file named by $DEPLOY_NETWORKS_FILE
    (file entries win). The result is never rebuilt.
    """
    global _default_resolver
    with _default_lock:
        if _default_resolver is None:
            table: Dict[str, Any] = dict(NETWORK_CONFIG)
            networks_file = os.environ.get(NETWORKS_FILE_ENV)
            if networks_file:
                logger.info("Loading network table from %s", networks_file)
                table.update(load_network_table(networks_file))
            _default_resolver = ConfigResolver(table)
        return _default_resolver


def resolve(network_name: str) -> NetworkConfig:
    """Resolve a network name with the process-wide resolver."""
    return get_resolver().resolve(network_name)
