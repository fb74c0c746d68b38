from collections import OrderedDict
from typing import Dict, List, Sequence

from chainplan.components import Component, DeploymentStep, WiringEdge
from chainplan.errors import CycleError, DeploymentConfigError, UnknownComponentError


class DependencyGraph:
    """
    Directed graph over components. An edge B -> A exists when A links
    library B or references B's address in its arguments.
    """

    def __init__(self, components: Sequence[Component]):
        self.components: Dict[str, Component] = OrderedDict()
        for component in components:
            if component.name in self.components:
                raise DeploymentConfigError(f"Duplicate component '{component.name}'.")
            self.components[component.name] = component

        self.dependencies: Dict[str, List[str]] = OrderedDict()
        self.dependents: Dict[str, List[str]] = OrderedDict((name, []) for name in self.components)
        for name, component in self.components.items():
            for dependency in component.dependencies:
                if dependency not in self.components:
                    raise UnknownComponentError(dependency, referenced_by=name)
                if dependency == name:
                    raise CycleError([name, name])
                self.dependents[dependency].append(name)
            self.dependencies[name] = component.dependencies

    def order(self) -> List[str]:
        """Kahn's algorithm; ties are broken by declaration order."""
        position = {name: index for index, name in enumerate(self.components)}
        in_degree = {name: len(deps) for name, deps in self.dependencies.items()}
        ready = [name for name in self.components if in_degree[name] == 0]

        ordered = list()
        while ready:
            ready.sort(key=position.get)
            current = ready.pop(0)
            ordered.append(current)
            for dependent in self.dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)

        if len(ordered) != len(self.components):
            remaining = [name for name in self.components if name not in ordered]
            raise CycleError(self._find_cycle(remaining))
        return ordered

    def _find_cycle(self, candidates: List[str]) -> List[str]:
        """Returns one cycle among the unordered components, closed on its first node."""
        visiting, visited = list(), set()

        def visit(name):
            if name in visiting:
                return visiting[visiting.index(name) :] + [name]
            if name in visited:
                return None
            visiting.append(name)
            for dependency in self.dependencies[name]:
                cycle = visit(dependency)
                if cycle:
                    return cycle
            visiting.pop()
            visited.add(name)
            return None

        for candidate in candidates:
            cycle = visit(candidate)
            if cycle:
                # report in deployment direction (producer -> consumer)
                return list(reversed(cycle))
        return candidates  # unreachable for a well-formed graph

    def validate_wiring(self, wiring_edges: Sequence[WiringEdge]) -> None:
        for edge in wiring_edges:
            for name in (edge.source, edge.target):
                if name not in self.components:
                    raise UnknownComponentError(name, referenced_by=str(edge))


def build(components: Sequence[Component], wiring_edges: Sequence[WiringEdge] = ()) -> List[DeploymentStep]:
    """Validates the declared components and wiring and returns steps in deployment order."""
    graph = DependencyGraph(components)
    graph.validate_wiring(wiring_edges)
    return [DeploymentStep(graph.components[name]) for name in graph.order()]
