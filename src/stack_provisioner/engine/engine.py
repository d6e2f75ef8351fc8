"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from stack_provisioner import __version__
from stack_provisioner.core.state import State, compute_attributes_hash, compute_state_digest
from stack_provisioner.engine.diff import diff_attributes
from stack_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    DuplicateResourceError,
    EngineError,
    StalePlanError,
    StateStackMismatchError,
    UnresolvedReferenceError,
    ValidationError,
)
from stack_provisioner.engine.executor import PlanExecutor, ProgressCallback
from stack_provisioner.engine.graph import build_dependency_graph
from stack_provisioner.engine.handlers import EngineContext, PlanContext
from stack_provisioner.engine.lock import StateLock
from stack_provisioner.engine.operations import Runtime
from stack_provisioner.engine.resolver import MISSING, AttributeTable, lookup_path
from stack_provisioner.engine.scheduler import build_operations, deletion_order, verify_plan_order
from stack_provisioner.engine.types import (
    Action,
    ApplyOptions,
    ApplyResult,
    DriftEntry,
    DriverPhase,
    Plan,
    PlanMetadata,
    ResourceChange,
    RunReport,
)
from stack_provisioner.engine.variables import resolve_variables, stack_variables
from stack_provisioner.network import addressing, rules
from stack_provisioner.resources.markers import collect_compare_strategies
from stack_provisioner.resources.network import NetworkResource
from stack_provisioner.resources.references import has_references, substitute

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from stack_provisioner.config.schema import StackSettings
    from stack_provisioner.core import CloudProvider
    from stack_provisioner.engine.registry import ResourceTypeRegistry
    from stack_provisioner.resources.base import Resource
    from stack_provisioner.resources.references import Reference


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(resources: Sequence[Resource]) -> str:
    items = [
        {
            "name": r.name,
            "resource_type": r.resource_type,
            "desired": r.model_dump(mode="json", exclude_none=True),
        }
        for r in resources
    ]
    items.sort(key=lambda x: x["name"])
    return _sha256_hex(_canonical_json(items))


def compute_outputs(state: State) -> dict[str, Any]:
    """Flat ``"<id>.<attribute>"`` table of every resolved attribute.

    Declared properties, engine-derived attributes (subnet layouts, ingress)
    and provider-generated outputs are all included. Tainted resources are
    left out since their attributes are not trustworthy.
    """
    outputs: dict[str, Any] = {}
    for name, inst in sorted(state.resources.items()):
        if inst.tainted:
            continue
        for attr, value in sorted(inst.attributes.items()):
            outputs[f"{name}.{attr}"] = value
    return outputs


def detect_drift(recorded: State, observed: State) -> list[DriftEntry]:
    """Compare recorded state with freshly read state."""
    entries: list[DriftEntry] = []
    for name, before in sorted(recorded.resources.items()):
        after = observed.resources.get(name)
        if after is None:
            entries.append(DriftEntry(name=name, resource_type=before.resource_type, missing=True))
            continue
        if after.attributes != before.attributes:
            keys = sorted(set(before.attributes) | set(after.attributes))
            diff = {
                k: {"from": before.attributes.get(k), "to": after.attributes.get(k)}
                for k in keys
                if before.attributes.get(k) != after.attributes.get(k)
            }
            entries.append(DriftEntry(name=name, resource_type=before.resource_type, diff=diff))
    return entries


class StackEngine:
    """Terraform-like plan/apply engine for a stack of cloud resources."""

    def __init__(
        self,
        *,
        provider: CloudProvider,
        settings: StackSettings,
        state_path: Path,
        registry: ResourceTypeRegistry,
        options: ApplyOptions | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._state_path = state_path
        self._registry = registry
        self._options = options or ApplyOptions()
        self._lock_timeout = lock_timeout

    @property
    def stack(self) -> str:
        return self._settings.stack_name

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def options(self) -> ApplyOptions:
        return self._options

    def _ctx(self) -> EngineContext:
        return EngineContext(provider=self._provider, settings=self._settings)

    def _lock(self) -> StateLock:
        return StateLock(self._state_path, timeout=self._lock_timeout)

    def _load_state(self) -> State:
        state = State.load_or_create(self._state_path, stack=self.stack)
        if state.stack != self.stack:
            raise StateStackMismatchError(self.stack, state.stack)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> State:
        if self._state_path.exists():
            return self._load_state()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return State(
            stack=self.stack,
            lineage=plan.metadata.state_lineage,
            serial=plan.metadata.state_serial,
        )

    def _save_state(self, state: State) -> None:
        state.outputs = compute_outputs(state)
        state.serial += 1
        state.save(self._state_path)

    # --- refresh / drift ---------------------------------------------------

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from provider")
        changed = False
        ctx = self._ctx()

        for name, inst in list(state.resources.items()):
            handler = self._registry.get(inst.resource_type).handler
            attrs = handler.read(ctx, inst)
            if attrs is None:
                logger.info("%s no longer exists", inst.address)
                del state.resources[name]
                changed = True
                continue

            new_hash = compute_attributes_hash(attrs)
            if attrs != inst.attributes or new_hash != inst.attributes_hash:
                inst.attributes = attrs
                inst.attributes_hash = new_hash
                inst.updated_at = datetime.now(UTC)
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from the provider. Returns (pre_refresh, post_refresh)."""
        with self._lock():
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                self._save_state(state)
            return snapshot, state

    def drift(self) -> list[DriftEntry]:
        """Report differences between state and the provider without changing anything."""
        before, after = self.refresh(persist=False)
        entries = detect_drift(before, after)
        if entries:
            logger.warning("Drift detected on %d resource(s)", len(entries))
        return entries

    def reconcile(self) -> list[DriftEntry]:
        """Re-read provisioned resources after an apply; discrepancies are drift."""
        return self.drift()

    def outputs(self) -> dict[str, Any]:
        state = self._load_state()
        return compute_outputs(state)

    # --- planning ----------------------------------------------------------

    def _index(self, resources: Sequence[Resource]) -> dict[str, Resource]:
        desired: dict[str, Resource] = {}
        for r in resources:
            if r.name in desired:
                raise DuplicateResourceError(r.name)
            self._registry.get(r.resource_type)
            desired[r.name] = r
        return desired

    def _validate(
        self, desired_by_name: dict[str, Resource], state: State, extra: list[str]
    ) -> None:
        ctx = self._ctx()
        errors: list[str] = []
        for r in desired_by_name.values():
            reg = self._registry.get(r.resource_type)
            errors.extend(reg.handler.validate(ctx, r))
        plan_ctx = PlanContext(desired_by_name, state)
        for r in desired_by_name.values():
            reg = self._registry.get(r.resource_type)
            errors.extend(reg.handler.validate_plan(ctx, r, plan_ctx))
        errors.extend(extra)
        if errors:
            raise ValidationError(errors)

    def _assemble_network(
        self,
        resources: Sequence[Resource],
        ingress: dict[str, list[rules.SecurityRule]],
    ) -> dict[str, dict[str, Any]]:
        """Attributes the engine computes: subnet layouts and ingress rules."""
        derived: dict[str, dict[str, Any]] = {}
        for r in resources:
            if isinstance(r, NetworkResource):
                zones = addressing.zone_names(self._settings.region, r.zones)
                allocations = addressing.allocate_subnets(
                    r.cidr, zones, r.tiers, subnet_prefix=r.subnet_prefix
                )
                derived[r.name] = {"subnets": addressing.subnets_by_tier(allocations)}
            elif r.accepts_ingress:
                derived[r.name] = {
                    "ingress": [rule.model_dump() for rule in ingress.get(r.name, [])]
                }
        return derived

    @staticmethod
    def _plan_time_lookup(
        state: State, pending: dict[str, ResourceChange]
    ) -> Callable[[Reference], Any]:
        """Resolve what is known at plan time; keep tokens for the rest.

        Attributes of resources this plan creates are only known after apply.
        For updates, declared properties are known from the planned values.
        """

        def lookup(ref: Reference) -> Any:
            change = pending.get(ref.resource_id)
            if change is not None:
                if change.action == Action.UPDATE and change.planned is not None:
                    value = lookup_path(change.planned, ref.attribute)
                    if value is not MISSING and not has_references(value):
                        return value
                return ref.token
            inst = state.resources.get(ref.resource_id)
            if inst is None:
                raise UnresolvedReferenceError(
                    ref.resource_id, ref.attribute, "resource is not provisioned"
                )
            value = lookup_path(inst.attributes, ref.attribute)
            if value is MISSING:
                raise UnresolvedReferenceError(ref.resource_id, ref.attribute, "attribute not found")
            return value

        return lookup

    def _classify_change(
        self,
        resource: Resource,
        state: State,
        planned: dict[str, Any],
    ) -> ResourceChange:
        """Classify a single resource as CREATE, UPDATE, or NOOP."""
        desired_dump = resource.model_dump(mode="json", exclude_none=True)
        deps = resource.dependency_ids()
        unknown = has_references(planned)

        prior_inst = state.resources.get(resource.name)
        if prior_inst is None or prior_inst.tainted:
            reason = "tainted" if prior_inst is not None else None
            logger.debug("Classified %s as create", resource.address)
            return ResourceChange(
                name=resource.name,
                resource_type=resource.resource_type,
                action=Action.CREATE,
                desired=desired_dump,
                prior=None if prior_inst is None else dict(prior_inst.attributes),
                planned=planned,
                depends_on=deps,
                reason=reason,
            )

        prior = dict(prior_inst.attributes)
        diff = diff_attributes(planned, prior, collect_compare_strategies(resource))
        action = Action.UPDATE if diff else Action.NOOP
        logger.debug("Classified %s as %s", resource.address, action.value)
        return ResourceChange(
            name=resource.name,
            resource_type=resource.resource_type,
            action=action,
            desired=desired_dump,
            prior=prior,
            planned=planned,
            diff=diff or None,
            depends_on=deps,
            reason="inputs known after apply" if unknown and diff else None,
        )

    def _plan_deletes(self, state: State, names: set[str]) -> list[ResourceChange]:
        """Plan delete changes for the given ids in reverse dependency order."""
        changes: list[ResourceChange] = []
        for name in deletion_order(state, names):
            inst = state.resources[name]
            self._registry.get(inst.resource_type)  # fail early if unknown
            changes.append(
                ResourceChange(
                    name=name,
                    resource_type=inst.resource_type,
                    action=Action.DELETE,
                    prior=dict(inst.attributes),
                    depends_on=sorted(inst.dependencies),
                )
            )
        return changes

    def _plan_changes(
        self, desired_by_name: dict[str, Resource], state: State
    ) -> list[ResourceChange]:
        resources = [desired_by_name[n] for n in sorted(desired_by_name)]
        graph = build_dependency_graph(resources)
        graph.check_acyclic()

        ingress, rule_errors = rules.derive_security_rules(resources)
        self._validate(
            desired_by_name, state, [*rule_errors, *rules.validate_placement(resources)]
        )

        order = graph.topological_order()
        derived = self._assemble_network(resources, ingress)
        variables = stack_variables(self._settings)

        pending: dict[str, ResourceChange] = {}
        lookup = self._plan_time_lookup(state, pending)
        changes: list[ResourceChange] = []
        for name in order:
            r = desired_by_name[name]
            planned = resolve_variables({**r.properties(), **derived.get(name, {})}, variables)
            planned = substitute(planned, lookup)
            change = self._classify_change(r, state, planned)
            if change.action in (Action.CREATE, Action.UPDATE):
                pending[name] = change
            changes.append(change)

        changes.extend(self._plan_deletes(state, set(state.resources) - set(desired_by_name)))
        return changes

    def plan(
        self, resources: Sequence[Resource], *, destroy: bool = False, refresh: bool = True
    ) -> Plan:
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        # Only lock when refresh may write state.
        lock_cm = self._lock() if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh and self._refresh_state_in_place(state):
                self._save_state(state)

            desired_by_name = self._index(resources)
            if destroy:
                changes = self._plan_deletes(state, set(state.resources))
            else:
                changes = self._plan_changes(desired_by_name, state)

            metadata = PlanMetadata(
                stack=self.stack,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest([] if destroy else resources),
                engine_version=__version__,
            )

        plan = Plan(metadata=metadata, changes=changes)
        verify_plan_order(plan)
        logger.info("Plan: %s", ", ".join(f"{n} {a}" for a, n in plan.summary().items()))
        return plan

    # --- apply -------------------------------------------------------------

    def _seed_table(self, plan: Plan, state: State) -> AttributeTable:
        """Attributes of resources this apply will not touch."""
        touched = {c.name for c in plan.changes if c.action in (Action.CREATE, Action.UPDATE)}
        table = AttributeTable()
        for name, inst in state.resources.items():
            if name not in touched and not inst.tainted:
                table.publish(name, inst.attributes)
        return table

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ApplyResult:
        with self._lock():
            if plan.metadata.stack != self.stack:
                raise StateStackMismatchError(self.stack, plan.metadata.stack)
            state = self._load_state_for_apply(plan)

            # Stale plan detection
            if state.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if state.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if compute_state_digest(state) != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            verify_plan_order(plan)
            ops = build_operations(plan, state)
            runtime = Runtime(
                ctx=self._ctx(),
                registry=self._registry,
                table=self._seed_table(plan, state),
                options=self._options,
                cancel_event=cancel_event or threading.Event(),
            )
            logger.info(
                "Applying %d operations (max_workers=%d)", len(ops), self._options.max_workers
            )

            executor = PlanExecutor(
                ops, runtime, state, persist=lambda: self._save_state(state), progress=progress
            )
            outcomes = executor.run()
            result = ApplyResult(applied=executor.applied, outcomes=outcomes)

            if executor.canceled:
                raise ApplyCanceled(result)
            if result.failures():
                raise ApplyError(result)
            return result

    # --- orchestration -----------------------------------------------------

    def run(
        self,
        resources: Sequence[Resource],
        *,
        destroy: bool = False,
        refresh: bool = True,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunReport:
        """Drive one pass: planning, executing, reconciling, settled.

        Engine errors end the pass in the ``failed`` phase; ``failed_phase``
        tells where.
        """
        logger.info("Driver phase: %s", DriverPhase.PLANNING.value)
        try:
            plan = self.plan(resources, destroy=destroy, refresh=refresh)
        except EngineError as exc:
            logger.error("Planning failed: %s", exc)
            return RunReport(
                phase=DriverPhase.FAILED, failed_phase=DriverPhase.PLANNING, error=str(exc)
            )

        logger.info("Driver phase: %s", DriverPhase.EXECUTING.value)
        try:
            result = self.apply(plan, progress=progress, cancel_event=cancel_event)
        except (ApplyError, ApplyCanceled) as exc:
            logger.error("Apply failed: %s", exc)
            return RunReport(
                phase=DriverPhase.FAILED,
                failed_phase=DriverPhase.EXECUTING,
                plan=plan,
                result=exc.result,
                error=str(exc),
            )
        except EngineError as exc:
            logger.error("Apply failed: %s", exc)
            return RunReport(
                phase=DriverPhase.FAILED,
                failed_phase=DriverPhase.EXECUTING,
                plan=plan,
                error=str(exc),
            )

        logger.info("Driver phase: %s", DriverPhase.RECONCILING.value)
        try:
            drift = self.reconcile()
        except EngineError as exc:
            logger.error("Reconciliation failed: %s", exc)
            return RunReport(
                phase=DriverPhase.FAILED,
                failed_phase=DriverPhase.RECONCILING,
                plan=plan,
                result=result,
                error=str(exc),
            )

        logger.info("Driver phase: %s", DriverPhase.SETTLED.value)
        return RunReport(
            phase=DriverPhase.SETTLED,
            plan=plan,
            result=result,
            drift=drift,
            outputs=self.outputs(),
        )
