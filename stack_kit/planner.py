"""
planner
-------

의존성 그래프로부터 생성 순서를 계산한다.

3색 DFS(미방문/진행중/완료)를 사용하며, 진행중인 노드를 다시 만나면
순환으로 보고 CyclicDependencyError 를 발생시킨다.
서로 순서 제약이 없는 노드들은 선언 순서를 유지한다.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterator, List, Tuple

from .errors import CyclicDependencyError
from .graph import DependencyGraph
from .logging_utils import get_logger


logger = get_logger(__name__)


class _Mark(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


def plan(graph: DependencyGraph) -> Tuple[str, ...]:
    """
    모든 간선 A -> B 에 대해 B 가 A 보다 앞에 오는 노드 이름 순서를 돌려준다.
    순환이 있으면 부분 결과 없이 예외를 발생시킨다.
    """
    marks: Dict[str, _Mark] = {name: _Mark.UNVISITED for name in graph.names}
    order: List[str] = []
    path: List[str] = []

    # 깊은 체인에서도 재귀 한도에 걸리지 않도록 명시적인 스택으로 순회한다.
    for root in graph.names:
        if marks[root] is not _Mark.UNVISITED:
            continue
        marks[root] = _Mark.IN_PROGRESS
        path.append(root)
        stack: List[Tuple[str, Iterator[str]]] = [(root, iter(graph.dependencies_of(root)))]
        while stack:
            name, deps = stack[-1]
            for dep in deps:
                if marks[dep] is _Mark.IN_PROGRESS:
                    start = path.index(dep)
                    raise CyclicDependencyError(path[start:] + [dep])
                if marks[dep] is _Mark.UNVISITED:
                    marks[dep] = _Mark.IN_PROGRESS
                    path.append(dep)
                    stack.append((dep, iter(graph.dependencies_of(dep))))
                    break
            else:
                stack.pop()
                path.pop()
                marks[name] = _Mark.DONE
                order.append(name)

    logger.debug("생성 순서: %s", " -> ".join(order))
    return tuple(order)


def layers(graph: DependencyGraph) -> List[Tuple[str, ...]]:
    """
    plan 순서를 동시에 생성 가능한 단계(layer)로 묶는다.
    각 노드는 의존하는 노드들 중 가장 깊은 단계의 다음 단계에 속한다.
    """
    depth: Dict[str, int] = {}
    for name in plan(graph):
        deps = graph.dependencies_of(name)
        depth[name] = 1 + max((depth[d] for d in deps), default=-1)

    result: List[List[str]] = []
    for name, d in depth.items():
        while len(result) <= d:
            result.append([])
        result[d].append(name)
    return [tuple(group) for group in result]
