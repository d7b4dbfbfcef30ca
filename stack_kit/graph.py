"""
graph
-----

선언된 노드들로부터 의존성 그래프를 만든다.

- 속성 bag 안에서 발견된 Deferred 마다 (소유 노드 -> source 노드) 간선을 추가
- depends_on 으로 명시한 간선도 같은 방식으로 추가
- AccessRule 은 두 endpoint 에 의존하는 binding 간선으로 붙는다.
  (endpoint 사이의 생성 순서는 강제하지 않는다)

그래프는 항상 전체 선언으로부터 새로 만들며, realize 도중에 수정하지 않는다.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .access import AccessRule
from .errors import DuplicateIdentityError, SelfDependencyError, UnknownNodeError
from .logging_utils import get_logger
from .resources import ResourceNode, Stack


logger = get_logger(__name__)


class DependencyGraph:
    """
    A -> B 간선은 "A 가 B 에 의존한다(B 가 먼저 생성되어야 한다)" 를 뜻한다.
    """

    def __init__(
        self,
        nodes: Mapping[str, ResourceNode],
        dependencies: Mapping[str, Tuple[str, ...]],
        rules: Tuple[AccessRule, ...] = (),
    ) -> None:
        self.nodes: Dict[str, ResourceNode] = dict(nodes)
        self._deps: Dict[str, Tuple[str, ...]] = dict(dependencies)
        reverse: Dict[str, List[str]] = {name: [] for name in self.nodes}
        for name in self.nodes:
            for dep in self._deps.get(name, ()):
                reverse[dep].append(name)
        self._dependents: Dict[str, Tuple[str, ...]] = {k: tuple(v) for k, v in reverse.items()}
        self.rules = rules

    @classmethod
    def from_stack(cls, stack: Stack) -> "DependencyGraph":
        return build_graph(stack.nodes, stack.rules)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def names(self) -> Tuple[str, ...]:
        """선언 순서대로의 노드 이름."""
        return tuple(self.nodes)

    def dependencies_of(self, name: str) -> Tuple[str, ...]:
        return self._deps.get(name, ())

    def dependents_of(self, name: str) -> Tuple[str, ...]:
        return self._dependents.get(name, ())

    def edges(self) -> List[Tuple[str, str]]:
        return [(name, dep) for name in self.nodes for dep in self._deps.get(name, ())]

    def downstream_of(self, names: Iterable[str]) -> Set[str]:
        """주어진 노드들에 (직/간접적으로) 의존하는 노드 이름 집합."""
        seen: Set[str] = set()
        stack = list(names)
        while stack:
            for dependent in self.dependents_of(stack.pop()):
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        return seen


def build_graph(
    nodes: Iterable[ResourceNode],
    rules: Iterable[AccessRule] = (),
) -> DependencyGraph:
    ordered: Dict[str, ResourceNode] = {}
    for node in sorted(nodes, key=lambda n: n.index):
        if node.name in ordered:
            raise DuplicateIdentityError(node.name)
        ordered[node.name] = node

    def index_of(name: str) -> int:
        return ordered[name].index

    dependencies: Dict[str, Tuple[str, ...]] = {}
    for name, node in ordered.items():
        found: List[str] = [ref.source for ref in node.properties.iter_refs()]
        found.extend(node.depends_on)

        deps: Set[str] = set()
        for source in found:
            if source == name:
                raise SelfDependencyError(name)
            if source not in ordered:
                raise UnknownNodeError(name, source)
            deps.add(source)

        # 선언 순서로 정렬해 두어야 plan 결과가 실행마다 같다.
        dependencies[name] = tuple(sorted(deps, key=index_of))
        if deps:
            logger.debug("의존성: %s -> %s", name, ", ".join(dependencies[name]))

    checked: List[AccessRule] = []
    for rule in rules:
        if rule.source == rule.target:
            raise SelfDependencyError(rule.source)
        for endpoint in (rule.source, rule.target):
            if endpoint not in ordered:
                raise UnknownNodeError(str(rule), endpoint)
        if rule not in checked:
            checked.append(rule)

    return DependencyGraph(ordered, dependencies, tuple(checked))
