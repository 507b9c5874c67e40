"""Path management utilities for deployment-orchestrator library."""

import os
from pathlib import Path
from typing import Optional, Union

from .constants import REGISTRY_DIR_ENV


def get_default_registry_dir() -> Path:
    """
    Get default registry directory.

    Returns:
        $DEPLOY_REGISTRY_DIR if set, otherwise ./deployments
    """
    override = os.environ.get(REGISTRY_DIR_ENV)
    if override:
        return Path(override).absolute()
    return Path.cwd() / "deployments"


def get_record_path(
    network: str, node_name: str, registry_root: Optional[Union[Path, str]] = None
) -> Path:
    """
    Get the record file path for one node on one network.

    Args:
        network: Network name
        node_name: Deploy node name
        registry_root: Custom registry directory (defaults to get_default_registry_dir())

    Returns:
        Path to {registry_root}/{network}/{node_name}.json
    """
    if registry_root is None:
        registry_root = get_default_registry_dir()
    else:
        registry_root = Path(registry_root).absolute()

    return registry_root / network / f"{node_name}.json"


def is_safe_path_component(name: str) -> bool:
    """
    Check that a network or node name can be used as one path component.

    Rejects empty names, names starting with "." and names containing a
    path separator.
    """
    return bool(name) and not name.startswith(".") and "/" not in name and "\\" not in name
