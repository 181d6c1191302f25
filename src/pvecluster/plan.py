"""
Explicit dependency graph of declared resources.

Nodes of the graph are resource declarations, edges are "depends on"
relations. Engines realise declarations in topological order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pvecluster.errors import PlanValidationError, ResourceDeclarationError
from pvecluster.models import ResourceKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingRef:
    """Reference to a declared resource that has not been realised yet."""

    name: str
    kind: ResourceKind


def iter_refs(value: Any) -> Iterator[PendingRef]:
    """Yield every PendingRef nested in dicts, lists and tuples of *value*."""
    if isinstance(value, PendingRef):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)


def substitute_refs(value: Any, resolved_ids: Dict[str, str]) -> Any:
    """Return a copy of *value* with every PendingRef replaced by its resolved id."""
    if isinstance(value, PendingRef):
        return resolved_ids[value.name]
    if isinstance(value, dict):
        return {key: substitute_refs(item, resolved_ids) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_refs(item, resolved_ids) for item in value]
    if isinstance(value, tuple):
        return tuple(substitute_refs(item, resolved_ids) for item in value)
    return value


@dataclass(frozen=True)
class ResourceSpec:
    """Arguments for one resource, as handed to an engine."""

    name: str
    kind: ResourceKind
    args: Dict[str, Any] = field(default_factory=dict, hash=False)
    node_name: Optional[str] = None


@dataclass(frozen=True)
class ResourceDeclaration:
    """A resource spec together with its explicit dependencies."""

    spec: ResourceSpec
    depends_on: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def kind(self) -> ResourceKind:
        return self.spec.kind


class ProvisioningPlan:
    """Ordered collection of declarations forming a DAG."""

    def __init__(self) -> None:
        self._declarations: Dict[str, ResourceDeclaration] = {}

    @classmethod
    def from_declarations(cls, declarations: List[ResourceDeclaration]) -> "ProvisioningPlan":
        """Build a plan from prepared declarations without ordering checks."""
        plan = cls()
        for decl in declarations:
            if decl.name in plan._declarations:
                raise PlanValidationError(f"duplicate resource name {decl.name!r}")
            plan._declarations[decl.name] = decl
        return plan

    def add(self, spec: ResourceSpec, dependencies: Tuple[PendingRef, ...] = ()) -> PendingRef:
        """Declare *spec* depending on *dependencies*.

        Raises:
            ResourceDeclarationError: If a resource with the same name exists
                or a dependency was never declared
        """
        if spec.name in self._declarations:
            raise ResourceDeclarationError(
                f"resource {spec.name!r} is already declared", node_name=spec.node_name
            )
        for dep in dependencies:
            if dep.name not in self._declarations:
                raise ResourceDeclarationError(
                    f"resource {spec.name!r} depends on undeclared resource {dep.name!r}", node_name=spec.node_name
                )
        implicit = {ref.name for ref in iter_refs(spec.args)} - {dep.name for dep in dependencies}
        if implicit:
            raise ResourceDeclarationError(
                f"resource {spec.name!r} references {sorted(implicit)} without depending on them",
                node_name=spec.node_name,
            )
        self._declarations[spec.name] = ResourceDeclaration(spec, tuple(dep.name for dep in dependencies))
        logger.debug(f"Declared {spec.kind.value} {spec.name!r} depends_on={[d.name for d in dependencies]}")
        return PendingRef(spec.name, spec.kind)

    def __contains__(self, name: object) -> bool:
        return name in self._declarations

    def __len__(self) -> int:
        return len(self._declarations)

    def __iter__(self) -> Iterator[ResourceDeclaration]:
        return iter(self._declarations.values())

    def get(self, name: str) -> ResourceDeclaration:
        return self._declarations[name]

    def of_kind(self, *kinds: ResourceKind) -> List[ResourceDeclaration]:
        return [decl for decl in self if decl.kind in kinds]

    def compute_resources(self) -> List[ResourceDeclaration]:
        return [decl for decl in self if decl.kind.is_compute]

    def topological_order(self) -> List[ResourceDeclaration]:
        """Return declarations so that every dependency precedes its dependents.

        Ties keep declaration order.

        Raises:
            PlanValidationError: If the graph contains a cycle or an unknown dependency
        """
        remaining: Dict[str, int] = {}
        dependents: Dict[str, List[str]] = {name: [] for name in self._declarations}
        for decl in self:
            for dep in decl.depends_on:
                if dep not in self._declarations:
                    raise PlanValidationError(f"{decl.name!r} depends on unknown resource {dep!r}")
                dependents[dep].append(decl.name)
            remaining[decl.name] = len(set(decl.depends_on))

        ready = [name for name, count in remaining.items() if count == 0]
        order: List[ResourceDeclaration] = []
        while ready:
            name = ready.pop(0)
            order.append(self._declarations[name])
            for dependent in dict.fromkeys(dependents[name]):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)

        if len(order) != len(self._declarations):
            stuck = sorted(name for name, count in remaining.items() if count > 0)
            raise PlanValidationError(f"dependency cycle between: {', '.join(stuck)}")
        return order

    def validate(self) -> None:
        """Check the graph invariants.

        * no cycles and no unknown dependencies
        * every compute resource has at least one dependency
        * no compute resource depends on another compute resource
        """
        self.topological_order()
        for decl in self.compute_resources():
            if not decl.depends_on:
                raise PlanValidationError(
                    f"compute resource {decl.name!r} has no dependencies", node_name=decl.spec.node_name
                )
            for dep in decl.depends_on:
                if self._declarations[dep].kind.is_compute:
                    raise PlanValidationError(
                        f"compute resource {decl.name!r} depends on compute resource {dep!r}",
                        node_name=decl.spec.node_name,
                    )
