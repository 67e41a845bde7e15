from graphlib import CycleError, TopologicalSorter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from stepwise.models.schemas.workflows import WorkflowStepCreate
from stepwise.utils.validation import ValidationResult, validate_with


def find_cycle(graph: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """Return the nodes of one dependency cycle in ``graph``, or None when it is acyclic."""
    try:
        TopologicalSorter({node: list(deps) for node, deps in graph.items()}).prepare()
    except CycleError as e:
        return [str(node) for node in e.args[1]]
    return None


def check_unique_orders(steps: Sequence[WorkflowStepCreate]) -> Iterable[str]:
    seen = set()
    for step in steps:
        if step.order in seen:
            yield f"Step order {step.order} is used more than once"
        seen.add(step.order)


def check_dependency_references(steps: Sequence[WorkflowStepCreate]) -> Iterable[str]:
    orders = {step.order for step in steps}
    for step in steps:
        for dep in step.dependencies:
            if dep == step.order:
                yield f"Step {step.order} cannot depend on itself"
            elif dep not in orders:
                yield f"Step {step.order} depends on unknown step {dep}"


def check_acyclic(steps: Sequence[WorkflowStepCreate]) -> Iterable[str]:
    graph = {str(step.order): [str(dep) for dep in step.dependencies] for step in steps}
    cycle = find_cycle(graph)
    if cycle:
        yield f"Step dependencies form a cycle: {' -> '.join(cycle)}"


def validate_step_payloads(steps: Sequence[WorkflowStepCreate]) -> ValidationResult:
    return validate_with(steps, check_unique_orders, check_dependency_references, check_acyclic)


def check_step_graph(graph: Dict[str, List[str]]) -> Iterable[str]:
    """Checks an id-keyed dependency graph of persisted steps."""
    for node, deps in graph.items():
        for dep in deps:
            if dep == node:
                yield f"Step {node} cannot depend on itself"
            elif dep not in graph:
                yield f"Step {node} depends on a step outside this workflow: {dep}"
    cycle = find_cycle({node: [d for d in deps if d in graph and d != node] for node, deps in graph.items()})
    if cycle:
        yield f"Step dependencies form a cycle: {' -> '.join(cycle)}"
