"""
access
------

리소스 간 네트워크 접근 규칙(AccessRule)과 이를 적용하는 binder.

규칙은 값을 만들지 않는다. 두 endpoint 가 모두 생성된 뒤에
target 의 보안 그룹에 source 의 보안 그룹을 허용하는 권한을 추가한다.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Set

from .logging_utils import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Port:
    protocol: str
    from_port: int
    to_port: int

    @classmethod
    def all_traffic(cls) -> "Port":
        return cls("-1", 0, 65535)

    @classmethod
    def tcp(cls, port: int) -> "Port":
        return cls("tcp", port, port)

    @classmethod
    def tcp_range(cls, from_port: int, to_port: int) -> "Port":
        if from_port > to_port:
            raise ValueError(f"잘못된 포트 범위입니다: {from_port}-{to_port}")
        return cls("tcp", from_port, to_port)

    def __str__(self) -> str:
        if self.protocol == "-1":
            return "all traffic"
        if self.from_port == self.to_port:
            return f"{self.protocol}/{self.from_port}"
        return f"{self.protocol}/{self.from_port}-{self.to_port}"


@dataclass(frozen=True)
class AccessRule:
    source: str
    target: str
    port: Port
    description: str = field(default="", compare=False)
    source_output: str = "security_group_id"
    target_output: str = "security_group_id"

    def __str__(self) -> str:
        return f"{self.source} -> {self.target} ({self.port})"


@dataclass(frozen=True)
class Permission:
    """target 보안 그룹에 붙는 ingress 권한 한 건."""

    source_group: str
    protocol: str
    from_port: int
    to_port: int
    description: str = field(default="", compare=False)


@dataclass(frozen=True)
class BoundRule:
    source: str
    target: str
    source_group: str
    target_group: str
    protocol: str
    from_port: int
    to_port: int
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SecurityState:
    """보안 그룹별 ingress 권한 집합. (동시 접근 안전)"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ingress: Dict[str, Set[Permission]] = {}

    def add(self, target_group: str, permission: Permission) -> bool:
        """새 권한이면 추가하고 True, 이미 있으면 False."""
        with self._lock:
            current = self._ingress.setdefault(target_group, set())
            if permission in current:
                return False
            current.add(permission)
            return True

    def discard(self, target_group: str, permission: Permission) -> None:
        with self._lock:
            self._ingress.get(target_group, set()).discard(permission)

    def permissions_for(self, target_group: str) -> FrozenSet[Permission]:
        with self._lock:
            return frozenset(self._ingress.get(target_group, ()))

    def snapshot(self) -> Dict[str, FrozenSet[Permission]]:
        with self._lock:
            return {k: frozenset(v) for k, v in self._ingress.items()}


class AccessRuleBinder:
    """
    AccessRule 을 실제 보안 설정에 반영한다.

    같은 규칙을 여러 번 bind 해도 권한 상태는 한 번 적용한 것과 같다.
    authorize 훅(외부 provider 호출 등)은 새로 추가되는 권한에 대해서만 호출된다.
    """

    def __init__(
        self,
        outputs_of: Callable[[str], Mapping[str, Any]],
        *,
        state: Optional[SecurityState] = None,
        authorize: Optional[Callable[[str, Permission], None]] = None,
    ) -> None:
        self._outputs_of = outputs_of
        self.state = state or SecurityState()
        self._authorize = authorize

    def bind(self, rule: AccessRule) -> BoundRule:
        # endpoint 가 아직 생성되지 않았다면 NotRealizedError 가 그대로 전파된다.
        source_group = self._outputs_of(rule.source)[rule.source_output]
        target_group = self._outputs_of(rule.target)[rule.target_output]

        permission = Permission(
            source_group=source_group,
            protocol=rule.port.protocol,
            from_port=rule.port.from_port,
            to_port=rule.port.to_port,
            description=rule.description,
        )
        if self.state.add(target_group, permission):
            logger.info("접근 규칙 적용: %s (%s <- %s)", rule, target_group, source_group)
            if self._authorize is not None:
                try:
                    self._authorize(target_group, permission)
                except Exception:
                    self.state.discard(target_group, permission)
                    raise
        else:
            logger.debug("이미 적용된 접근 규칙입니다: %s", rule)

        return BoundRule(
            source=rule.source,
            target=rule.target,
            source_group=source_group,
            target_group=target_group,
            protocol=permission.protocol,
            from_port=permission.from_port,
            to_port=permission.to_port,
            description=rule.description,
        )
