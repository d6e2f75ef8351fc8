"""Operation ordering.

Creates and updates run in dependency order, deletes in the reverse order of
the dependencies recorded when the resources were provisioned, and every
delete waits for all creates and updates (a barrier), so a replacement exists
before the thing it replaces goes away.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import DependencyViolation
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.operations import (
    BarrierOperation,
    CreateOperation,
    DeleteOperation,
    UpdateOperation,
)
from stack_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Iterable

    from stack_provisioner.core.state import State
    from stack_provisioner.engine.operations import Operation
    from stack_provisioner.engine.types import Plan

logger = logging.getLogger(__name__)

BARRIER_KEY = "__engine__.apply_barrier"


def deletion_order(state: State, names: Iterable[str]) -> list[str]:
    """Order *names* so dependents are deleted before their dependencies."""
    delete_set = set(names)
    deps = {n: [d for d in state.resources[n].dependencies if d in delete_set] for n in delete_set}
    return DependencyGraph(delete_set, deps).reverse_topological_order()


def plan_violations(plan: Plan) -> list[str]:
    """Ordering problems in *plan*, as messages (empty when the plan is sound)."""
    violations: list[str] = []
    deleted = {c.name for c in plan.changes if c.action == Action.DELETE}
    surviving = {c.name: c for c in plan.changes if c.action != Action.DELETE}
    position = {c.name: i for i, c in enumerate(plan.changes)}

    seen_delete = False
    for i, c in enumerate(plan.changes):
        if c.action == Action.DELETE:
            seen_delete = True
            for dep in c.depends_on:
                # A delete must come before the deletes of its dependencies.
                if dep in deleted and position[dep] < i:
                    violations.append(f"'{dep}' is deleted before its dependent '{c.name}'")
            continue

        if c.action in (Action.CREATE, Action.UPDATE) and seen_delete:
            violations.append(f"{c.action.value} '{c.name}' is scheduled after a delete")

        for dep in c.depends_on:
            if dep in deleted:
                violations.append(f"'{dep}' is deleted but '{c.name}' still depends on it")
            elif c.action == Action.NOOP:
                continue
            elif dep not in surviving:
                violations.append(f"'{c.name}' depends on '{dep}' which is not in the plan")
            elif surviving[dep].action != Action.NOOP and position[dep] > i:
                violations.append(f"'{c.name}' is scheduled before its dependency '{dep}'")
    return violations


def verify_plan_order(plan: Plan) -> None:
    """Raise ``DependencyViolation`` unless *plan* respects every dependency."""
    violations = plan_violations(plan)
    if violations:
        raise DependencyViolation(violations)


def build_operations(plan: Plan, state: State) -> dict[str, Operation]:
    """Turn plan changes into an operation graph keyed by resource id."""
    ops: dict[str, Operation] = {}
    create_update_set: set[str] = set()
    delete_set: set[str] = set()

    for c in plan.changes:
        op: Operation
        match c.action:
            case Action.NOOP:
                continue
            case Action.CREATE:
                op = CreateOperation(key=c.name, change=c)
                create_update_set.add(c.name)
            case Action.UPDATE:
                prior = state.resources.get(c.name)
                if prior is None:
                    raise ValueError(f"Missing state for update operation: {c.name}")
                op = UpdateOperation(key=c.name, change=c, prior=prior.model_copy(deep=True))
                create_update_set.add(c.name)
            case Action.DELETE:
                prior = state.resources.get(c.name)
                if prior is None:
                    raise ValueError(f"Missing state for delete operation: {c.name}")
                op = DeleteOperation(key=c.name, change=c, prior=prior.model_copy(deep=True))
                delete_set.add(c.name)
            case _:
                raise ValueError(f"Unknown action: {c.action}")

        if op.key in ops:
            raise ValueError(f"Duplicate operation key in plan: {op.key}")
        ops[op.key] = op

    # create/update: dependencies must run before dependents
    for name in create_update_set:
        op = ops[name]
        assert op.change is not None
        op.deps.extend(sorted(d for d in op.change.depends_on if d in create_update_set))

    # deletes: dependents must be deleted before dependencies (invert edges)
    for name in delete_set:
        for dep in state.resources[name].dependencies:
            if dep in delete_set:
                ops[dep].deps.append(name)

    if create_update_set and delete_set:
        if BARRIER_KEY in ops:
            raise ValueError(f"Barrier operation key conflicts with plan: {BARRIER_KEY}")
        ops[BARRIER_KEY] = BarrierOperation(key=BARRIER_KEY, deps=sorted(create_update_set))
        for name in delete_set:
            ops[name].deps.append(BARRIER_KEY)

    logger.debug(
        "Built %d operation(s): %d create/update, %d delete",
        len(ops),
        len(create_update_set),
        len(delete_set),
    )
    return ops


def operation_order(ops: dict[str, Operation]) -> list[str]:
    """A deterministic sequential order of *ops* (lexicographic tie-break)."""
    return DependencyGraph(ops.keys(), {k: op.deps for k, op in ops.items()}).topological_order()
