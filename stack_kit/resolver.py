"""
resolver
--------

planner 가 정한 순서대로 노드를 생성(realize)하면서
속성 bag 안의 Deferred 값을 실제 출력 값으로 치환하고,
최종 DeploymentPlan 을 만든다.

- 노드는 의존하는 모든 노드가 출력을 게시한 뒤에만 realize 된다.
- max_workers > 1 이면 서로 의존 관계가 없는 노드를 병렬로 생성한다.
- 실패한 노드에 의존하는 노드는 시작하지 않으며, 이미 생성된 노드는 되돌리지 않는다.
- AccessRule 은 두 endpoint 가 모두 생성되는 즉시 bind 된다.
"""

from __future__ import annotations

import json
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .access import AccessRule, AccessRuleBinder, BoundRule
from .errors import (
    AlreadyRealizedError,
    MissingOutputError,
    OutputTransformError,
    RealizationFailedError,
    UnresolvedDependencyError,
)
from .graph import DependencyGraph
from .logging_utils import get_logger
from .realizers import Realizer
from .values import Lookup


logger = get_logger(__name__)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class PlannedNode:
    name: str
    kind: str
    properties: Mapping[str, Any]
    depends_on: Tuple[str, ...]
    outputs: Mapping[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "depends_on": list(self.depends_on),
            "properties": _thaw(self.properties),
            "outputs": _thaw(self.outputs),
        }


@dataclass(frozen=True)
class DeploymentPlan:
    """
    모든 placeholder 가 치환된 최종 배포 계획.
    생성 순서대로의 노드 명세와 적용된 접근 규칙 목록을 가진다.
    """

    stack: str
    nodes: Tuple[PlannedNode, ...]
    rules: Tuple[BoundRule, ...]

    @property
    def order(self) -> Tuple[str, ...]:
        return tuple(n.name for n in self.nodes)

    def node(self, name: str) -> PlannedNode:
        for planned in self.nodes:
            if planned.name == name:
                return planned
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack": self.stack,
            "nodes": [n.to_dict() for n in self.nodes],
            "access_rules": [r.to_dict() for r in self.rules],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


class Resolver:
    def __init__(
        self,
        graph: DependencyGraph,
        realizer: Realizer,
        *,
        binder: Optional[AccessRuleBinder] = None,
        max_workers: int = 1,
        keep_going: bool = False,
        stack_name: str = "",
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers 는 1 이상이어야 합니다: {max_workers}")
        self.graph = graph
        self.realizer = realizer
        self.binder = binder or AccessRuleBinder(lambda name: graph.nodes[name].outputs)
        self.max_workers = max_workers
        self.keep_going = keep_going
        self.stack_name = stack_name

        self._planned: Dict[str, PlannedNode] = {}
        self._bound: Dict[AccessRule, BoundRule] = {}
        self._failures: Dict[str, BaseException] = {}
        self._failure_names: Dict[str, Tuple[str, ...]] = {}
        self._blocked: Set[str] = set()
        self._lock = threading.Lock()

        # 노드별로 다른 리소스(또는 접근 규칙)가 참조하는 출력 이름
        self._required: Dict[str, Set[str]] = {name: set() for name in graph.names}
        for node in graph.nodes.values():
            for ref in node.properties.iter_refs():
                self._required[ref.source].add(ref.output)
        for rule in graph.rules:
            self._required[rule.source].add(rule.source_output)
            self._required[rule.target].add(rule.target_output)

    # -----------------------------
    # 노드 단위 처리
    # -----------------------------
    def _lookup_for(self, owner: str) -> Lookup:
        def lookup(source: str, output: str) -> Any:
            node = self.graph.nodes[source]
            if not node.realized:
                raise UnresolvedDependencyError(owner, source, output)
            outputs = node.outputs
            if output not in outputs:
                raise UnresolvedDependencyError(owner, source, output)
            return outputs[output]

        return lookup

    def _realize_one(self, name: str) -> PlannedNode:
        node = self.graph.nodes[name]
        deps = self.graph.dependencies_of(name)
        for dep in deps:
            if not self.graph.nodes[dep].realized:
                raise UnresolvedDependencyError(name, dep)

        try:
            properties = node.properties.resolve(self._lookup_for(name))
        except OutputTransformError as e:
            raise RealizationFailedError(name, e) from e

        logger.info("리소스 생성 시작: %s (%s)", name, node.kind)
        try:
            outputs = self.realizer(node.kind, properties, name=name)
        except Exception as e:  # noqa: BLE001
            raise RealizationFailedError(name, e) from e

        if not isinstance(outputs, Mapping):
            raise RealizationFailedError(
                name,
                TypeError(f"realize 결과는 mapping 이어야 합니다: {type(outputs).__name__}"),
            )
        missing = sorted(self._required[name] - set(outputs))
        if missing:
            error = MissingOutputError(name, missing)
            raise RealizationFailedError(name, error) from error

        published = node.publish(outputs)
        logger.info("리소스 생성 완료: %s", name)

        return PlannedNode(
            name=name,
            kind=node.kind,
            properties=_freeze(properties),
            depends_on=deps,
            outputs=_freeze(published),
        )

    def _bind_ready(self, name: str) -> None:
        """name 이 endpoint 인 규칙 중 양쪽이 모두 생성된 것을 적용한다."""
        for rule in self.graph.rules:
            if name not in (rule.source, rule.target):
                continue
            if not (self.graph.nodes[rule.source].realized and self.graph.nodes[rule.target].realized):
                continue
            with self._lock:
                if rule in self._bound:
                    continue
            try:
                bound = self.binder.bind(rule)
            except Exception as e:  # noqa: BLE001
                logger.error("접근 규칙 적용 실패: %s: %s", rule, e)
                key = str(rule)
                if key not in self._failures:
                    self._failures[key] = e
                    self._failure_names[key] = (rule.source, rule.target)
                continue
            with self._lock:
                self._bound[rule] = bound

    def _record_failure(self, error: RealizationFailedError) -> None:
        logger.error("리소스 생성 실패: %s: %s", error.name, error.cause)
        self._failures[error.name] = error.cause
        self._failure_names[error.name] = (error.name,)
        downstream = self.graph.downstream_of([error.name])
        if downstream:
            logger.warning(
                "%s 에 의존하는 리소스는 생성하지 않습니다: %s",
                error.name,
                ", ".join(sorted(downstream)),
            )
        self._blocked |= downstream

    def _can_start(self, name: str) -> bool:
        if name in self._blocked:
            return False
        return self.keep_going or not self._failures

    # -----------------------------
    # 실행
    # -----------------------------
    def resolve(self, order: Sequence[str]) -> DeploymentPlan:
        already = [n for n in order if self.graph.nodes[n].realized]
        if already:
            raise AlreadyRealizedError(already[0])

        if self.max_workers == 1:
            skipped = self._run_sequential(order)
        else:
            skipped = self._run_concurrent(order)

        if self._failures:
            first_name, first_cause = next(iter(self._failures.items()))
            names: List[str] = []
            for key in self._failures:
                for n in self._failure_names[key]:
                    if n not in names:
                        names.append(n)
            raise RealizationFailedError(
                first_name,
                first_cause,
                failures=self._failures,
                realized=[n for n in order if n in self._planned],
                skipped=skipped,
                names=names,
            ) from first_cause

        rules = tuple(self._bound[r] for r in self.graph.rules if r in self._bound)
        return DeploymentPlan(
            stack=self.stack_name,
            nodes=tuple(self._planned[n] for n in order),
            rules=rules,
        )

    def _run_sequential(self, order: Sequence[str]) -> List[str]:
        skipped: List[str] = []
        for name in order:
            if not self._can_start(name):
                skipped.append(name)
                continue
            try:
                self._planned[name] = self._realize_one(name)
            except RealizationFailedError as e:
                self._record_failure(e)
                continue
            self._bind_ready(name)
        return skipped

    def _run_concurrent(self, order: Sequence[str]) -> List[str]:
        position = {name: i for i, name in enumerate(order)}
        started: Set[str] = set()
        in_flight: Dict[Future, str] = {}

        def ready(name: str) -> bool:
            return all(dep in self._planned for dep in self.graph.dependencies_of(name))

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="realize") as pool:

            def submit_ready() -> None:
                for name in order:
                    if name in started or not self._can_start(name) or not ready(name):
                        continue
                    started.add(name)
                    in_flight[pool.submit(self._realize_one, name)] = name

            submit_ready()
            while in_flight:
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: position[in_flight[f]]):
                    name = in_flight.pop(future)
                    try:
                        self._planned[name] = future.result()
                    except RealizationFailedError as e:
                        self._record_failure(e)
                        continue
                    self._bind_ready(name)
                submit_ready()

        return [name for name in order if name not in started]
