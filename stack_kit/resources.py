"""
resources
---------

리소스 노드와 스택(선언 컨텍스트).

스택 객체를 선언 호출마다 명시적으로 넘겨서 노드를 모은다.
전역 레지스트리는 사용하지 않는다.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .access import AccessRule, Port
from .errors import AlreadyRealizedError, DuplicateIdentityError, NotRealizedError
from .logging_utils import get_logger
from .values import Deferred, MapValue, to_value


logger = get_logger(__name__)


class ResourceNode:
    """
    선언된 인프라 단위.

    출력(outputs)은 realize 이후에 한 번만 게시(publish)되며,
    게시가 끝나기 전에는 어떤 스레드도 값을 볼 수 없다.
    """

    def __init__(
        self,
        kind: str,
        name: str,
        properties: MapValue,
        depends_on: Tuple[str, ...] = (),
        index: int = 0,
    ) -> None:
        self.kind = kind
        self.name = name
        self.properties = properties
        self.depends_on = depends_on
        self.index = index
        self._lock = threading.Lock()
        self._outputs: Optional[Mapping[str, Any]] = None

    def __repr__(self) -> str:
        return f"ResourceNode({self.kind!r}, {self.name!r})"

    def attr(self, output: str) -> Deferred:
        """이 노드의 출력 값을 가리키는 Deferred 를 돌려준다."""
        return Deferred(self.name, output)

    @property
    def realized(self) -> bool:
        with self._lock:
            return self._outputs is not None

    @property
    def outputs(self) -> Mapping[str, Any]:
        with self._lock:
            if self._outputs is None:
                raise NotRealizedError(self.name)
            return self._outputs

    def publish(self, outputs: Mapping[str, Any]) -> Mapping[str, Any]:
        with self._lock:
            if self._outputs is not None:
                raise AlreadyRealizedError(self.name)
            self._outputs = MappingProxyType(dict(outputs))
            return self._outputs


NodeRef = Union[ResourceNode, str]


def node_name(node: NodeRef) -> str:
    return node.name if isinstance(node, ResourceNode) else node


class Stack:
    """
    리소스 노드와 접근 규칙을 선언 순서대로 모으는 컨테이너.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._nodes: Dict[str, ResourceNode] = {}
        self._rules: List[AccessRule] = []

    def declare(
        self,
        kind: str,
        name: str,
        properties: Optional[Mapping[str, Any]] = None,
        *,
        depends_on: Iterable[NodeRef] = (),
    ) -> ResourceNode:
        if name in self._nodes:
            raise DuplicateIdentityError(name)

        bag: MapValue = to_value(dict(properties or {}))  # type: ignore[assignment]
        node = ResourceNode(
            kind,
            name,
            bag,
            depends_on=tuple(node_name(d) for d in depends_on),
            index=len(self._nodes),
        )
        self._nodes[name] = node
        logger.debug("리소스 선언: %s (%s)", name, kind)
        return node

    def allow(
        self,
        source: NodeRef,
        target: NodeRef,
        port: Optional[Port] = None,
        *,
        description: str = "",
        source_output: str = "security_group_id",
        target_output: str = "security_group_id",
    ) -> AccessRule:
        """
        source 에서 target 으로의 네트워크 접근을 허용하는 규칙을 선언한다.
        (값을 만들지 않는 부수효과 전용 간선)
        """
        rule = AccessRule(
            source=node_name(source),
            target=node_name(target),
            port=port or Port.all_traffic(),
            description=description,
            source_output=source_output,
            target_output=target_output,
        )
        if rule not in self._rules:
            self._rules.append(rule)
        return rule

    @property
    def nodes(self) -> Tuple[ResourceNode, ...]:
        return tuple(self._nodes.values())

    @property
    def rules(self) -> Tuple[AccessRule, ...]:
        return tuple(self._rules)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, name: NodeRef) -> ResourceNode:
        return self._nodes[node_name(name)]

    def properties_of(self, node: NodeRef) -> MapValue:
        return self.get(node).properties

    def outputs_of(self, node: NodeRef) -> Mapping[str, Any]:
        return self.get(node).outputs
