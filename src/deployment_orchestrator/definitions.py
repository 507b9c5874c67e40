"""Declarative node-definition parsers for deployment-orchestrator library."""

import json
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Union

import yaml

from .exceptions import DefinitionError
from .paths import is_safe_path_component
from .types import (
    ArgumentSpec,
    DeployNode,
    LiteralArg,
    NodeOutputRef,
    ParameterRef,
    PostDeployCall,
)

# Shorthand prefix for node references in string form: "$PriceOracle.address"
REF_PREFIX = "$"


def parse_argument_spec(raw: Any) -> ArgumentSpec:
    """
    Parse one argument from its declarative form.

    Accepted forms:
    - {"param": "maxFeeLimits"}: configuration parameter
    - {"ref": "PriceOracle", "field": "address"}: output of another node
    - {"literal": value}: literal, for values that would otherwise be
      read as one of the other forms
    - "$PriceOracle" or "$PriceOracle.address": node reference shorthand
    - anything else: literal

    Args:
        raw: Argument as loaded from YAML/JSON or written in Python

    Returns:
        LiteralArg, ParameterRef or NodeOutputRef

    Raises:
        DefinitionError: If a dict form is malformed
    """
    if isinstance(raw, (LiteralArg, ParameterRef, NodeOutputRef)):
        return raw

    if isinstance(raw, str) and raw.startswith(REF_PREFIX) and len(raw) > 1:
        node, _, output_field = raw[len(REF_PREFIX):].partition(".")
        return NodeOutputRef(node=node, field=output_field or "address")

    if isinstance(raw, Mapping) and len(raw) >= 1:
        keys = set(raw)
        if keys == {"literal"}:
            return LiteralArg(raw["literal"])
        if keys == {"param"}:
            if not isinstance(raw["param"], str):
                raise DefinitionError(f"Parameter reference must be a string: {raw!r}")
            return ParameterRef(raw["param"])
        if "ref" in keys and keys <= {"ref", "field"}:
            if not isinstance(raw["ref"], str):
                raise DefinitionError(f"Node reference must be a string: {raw!r}")
            return NodeOutputRef(node=raw["ref"], field=raw.get("field", "address"))
        if keys & {"literal", "param", "ref"}:
            raise DefinitionError(f"Malformed argument spec: {raw!r}")

    return LiteralArg(raw)


def _parse_calls(name: str, raw_calls: Any) -> tuple:
    if raw_calls is None:
        return ()
    if not isinstance(raw_calls, list):
        raise DefinitionError(f"Node '{name}': calls must be a list")

    calls = []
    for raw_call in raw_calls:
        if not isinstance(raw_call, Mapping) or "method" not in raw_call:
            raise DefinitionError(f"Node '{name}': each call needs a method: {raw_call!r}")
        calls.append(
            PostDeployCall(
                method=raw_call["method"],
                argument_specs=tuple(
                    parse_argument_spec(a) for a in raw_call.get("args") or []
                ),
            )
        )
    return tuple(calls)


def parse_node_definition(raw: Mapping[str, Any]) -> DeployNode:
    """
    Parse a {name, artifact_kind, args, calls, tags, confirmations} mapping.

    Args:
        raw: Node definition; only name is required and artifact_kind
             defaults to the name

    Returns:
        DeployNode

    Raises:
        DefinitionError: If required keys are missing or have the wrong type
    """
    if not isinstance(raw, Mapping):
        raise DefinitionError(f"Node definition must be a mapping: {raw!r}")

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise DefinitionError(f"Node definition needs a non-empty name: {raw!r}")
    if not is_safe_path_component(name):
        raise DefinitionError(
            f"Node name '{name}' must not start with '.' or contain a path separator"
        )

    raw_args = raw.get("args") or []
    if not isinstance(raw_args, list):
        raise DefinitionError(f"Node '{name}': args must be a list")

    tags = raw.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]

    confirmations = raw.get("confirmations")
    if confirmations is not None:
        if not isinstance(confirmations, int) or confirmations < 1:
            raise DefinitionError(
                f"Node '{name}': confirmations must be a positive integer"
            )

    return DeployNode(
        name=name,
        artifact_kind=raw.get("artifact_kind") or name,
        argument_specs=tuple(parse_argument_spec(a) for a in raw_args),
        calls=_parse_calls(name, raw.get("calls")),
        tags=tuple(tags),
        confirmations=confirmations,
    )


def parse_node_definitions(
    raw_nodes: Iterable[Union[Mapping[str, Any], DeployNode]],
) -> List[DeployNode]:
    """Parse a sequence of node definitions, keeping declaration order."""
    return [
        node if isinstance(node, DeployNode) else parse_node_definition(node)
        for node in raw_nodes
    ]


def load_node_definitions(file_path: Union[Path, str]) -> List[DeployNode]:
    """
    Load node definitions from a JSON or YAML file.

    The file holds either a list of node definitions or a mapping with a
    "nodes" list.

    Args:
        file_path: Path to .json, .yaml or .yml file

    Returns:
        List of DeployNode in file order

    Raises:
        DefinitionError: If the file cannot be parsed or has the wrong shape
    """
    path = Path(file_path)
    try:
        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise DefinitionError(f"Cannot read node definitions {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("nodes")
    if not isinstance(data, list):
        raise DefinitionError(f"Node definitions in {path} must be a list")

    return parse_node_definitions(data)
