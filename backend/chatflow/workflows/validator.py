# /chatflow/workflows/validator.py

"""
Load-time validation of flow definitions.

The check functions are deterministic and side-effect free: each inspects a
parsed FlowDefinition and returns a ValidationResult. `load_flow_definition`
runs all of them and raises a single FlowConfigurationError listing every
problem, so a broken flow never reaches a live conversation.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from pydantic import ValidationError

from chatflow.errors import FlowConfigurationError
from chatflow.models.flow import (
    ERROR_EXIT_NODE,
    ActionNode,
    ExitNode,
    FlowDefinition,
    TriggerNode,
    node_references,
)
from chatflow.workflows.actions import ActionRegistry, default_registry


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


_VALID: ValidationResult = {"is_valid": True, "error_code": None, "message": None}


def _invalid(error_code: str, message: str) -> ValidationResult:
    return {"is_valid": False, "error_code": error_code, "message": message}


def validate_error_exit(definition: FlowDefinition) -> ValidationResult:
    """The fallback terminal node must exist and must be an exit node."""
    node = definition.get(ERROR_EXIT_NODE)
    if node is None:
        return _invalid("MISSING_ERROR_EXIT", f"Node '{ERROR_EXIT_NODE}' is required")
    if not isinstance(node, ExitNode):
        return _invalid("INVALID_ERROR_EXIT", f"Node '{ERROR_EXIT_NODE}' must be an exit node, got '{node.type}'")
    return _VALID


def validate_node_references(definition: FlowDefinition) -> ValidationResult:
    """Every outgoing edge must point at a defined node."""
    dangling = []
    for node_id, node in definition.nodes.items():
        for field, target in node_references(node):
            if target not in definition.nodes:
                dangling.append(f"{node_id}.{field} -> '{target}'")

    if dangling:
        return _invalid("DANGLING_REFERENCE", f"Unknown node references: {', '.join(dangling)}")
    return _VALID


def validate_trigger_targets(definition: FlowDefinition) -> ValidationResult:
    """Triggers are entry points only; no edge may lead back into one."""
    reentries = []
    for node_id, node in definition.nodes.items():
        for field, target in node_references(node):
            if isinstance(definition.get(target), TriggerNode):
                reentries.append(f"{node_id}.{field} -> '{target}'")

    if reentries:
        return _invalid("TRIGGER_REENTRY", f"References to trigger nodes are not allowed: {', '.join(reentries)}")
    return _VALID


def validate_escalation_targets(definition: FlowDefinition) -> ValidationResult:
    """An action's human branch ends the flow with that node's reason, so it must be an exit."""
    bad = []
    for node_id, node in definition.nodes.items():
        if not isinstance(node, ActionNode):
            continue
        target = definition.get(node.next.human)
        if target is not None and not isinstance(target, ExitNode):
            bad.append(f"{node_id}.next.human -> '{node.next.human}' ({target.type})")

    if bad:
        return _invalid("HUMAN_NOT_EXIT", f"Escalation targets must be exit nodes: {', '.join(bad)}")
    return _VALID


def validate_trigger_phrases(definition: FlowDefinition) -> ValidationResult:
    empty = [node_id for node_id, node in definition.triggers() if not node.match_phrases]
    if empty:
        return _invalid("EMPTY_TRIGGER", f"Triggers without match phrases: {', '.join(empty)}")
    return _VALID


def validate_action_functions(definition: FlowDefinition, registry: ActionRegistry) -> ValidationResult:
    """Every action node must name a registered action."""
    missing = [name for name in definition.action_functions() if name not in registry]
    if missing:
        return _invalid(
            "UNKNOWN_ACTION",
            f"Action functions not registered: {', '.join(missing)}. Registered: {registry.names()}"
        )
    return _VALID


def validate_flow_definition(definition: FlowDefinition, registry: Optional[ActionRegistry] = None) -> List[ValidationResult]:
    """Runs every check and returns only the failures."""
    results = [
        validate_error_exit(definition),
        validate_node_references(definition),
        validate_trigger_targets(definition),
        validate_escalation_targets(definition),
        validate_trigger_phrases(definition),
    ]
    if registry is not None:
        results.append(validate_action_functions(definition, registry))
    return [r for r in results if not r["is_valid"]]


def load_flow_definition(data: Dict[str, Any], registry: Optional[ActionRegistry] = None) -> FlowDefinition:
    """
    Parse and validate a raw flow document.

    Args:
        data: Mapping with a "nodes" key, as found in definitions.py or a JSON file
        registry: When given, action function names are checked against it

    Returns:
        The validated FlowDefinition

    Raises:
        FlowConfigurationError: listing every problem found
    """
    try:
        definition = FlowDefinition.model_validate(data)
    except ValidationError as e:
        problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise FlowConfigurationError(problems) from e

    failures = validate_flow_definition(definition, registry)
    if failures:
        raise FlowConfigurationError([f["message"] for f in failures])
    return definition


def load_flow_definition_file(path: str, registry: Optional[ActionRegistry] = None) -> FlowDefinition:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise FlowConfigurationError([f"Could not read flow file '{path}': {e}"]) from e
    return load_flow_definition(data, registry)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line check for a JSON flow file. Returns the process exit code."""
    parser = argparse.ArgumentParser(description="Validate a chat flow definition file.")
    parser.add_argument("path", help="Path to the JSON flow definition")
    parser.add_argument(
        "--skip-actions", action="store_true",
        help="Do not check action names against the built-in action registry"
    )
    args = parser.parse_args(argv)

    registry = None if args.skip_actions else default_registry()
    try:
        definition = load_flow_definition_file(args.path, registry)
    except FlowConfigurationError as e:
        print(f"Flow definition '{args.path}' is invalid:", file=sys.stderr)
        for problem in e.problems:
            print(f"  - {problem}", file=sys.stderr)
        return 1

    triggers = [node_id for node_id, _ in definition.triggers()]
    print(f"Flow definition '{args.path}' is valid: {len(definition.nodes)} nodes, triggers: {', '.join(triggers) or 'none'}")
    return 0
