"""
realizers
---------

realize 협력자(collaborator) 인터페이스와 기본 구현.

Resolver 는 노드마다 한 번, 모든 placeholder 가 치환된 속성으로
`realize(kind, properties, name=...)` 를 호출하고 출력 매핑을 받는다.
실제 provider API 호출은 이 모듈의 범위 밖이며,
DryRunRealizer 는 이름에서 결정적으로 유도한 가짜 출력을 만든다.
"""

from __future__ import annotations

import hashlib
from typing import Any, Callable, Dict, Mapping, Optional

from .logging_utils import get_logger


logger = get_logger(__name__)


# (kind, resolved_properties, name=...) -> outputs
Realizer = Callable[..., Mapping[str, Any]]


def _short_id(name: str) -> str:
    return hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]


class DryRunRealizer:
    """
    아무 리소스도 만들지 않고, 리소스 종류별로 그럴듯한 출력을 돌려준다.
    같은 이름이면 항상 같은 출력이 나온다.
    """

    def __init__(self, domain: str = "internal") -> None:
        self.domain = domain

    def __call__(self, kind: str, properties: Mapping[str, Any], *, name: str) -> Dict[str, Any]:
        short = _short_id(name)
        host = f"{name.lower()}-{short}.{self.domain}"
        outputs: Dict[str, Any] = {"id": f"{kind}-{short}"}

        if kind == "network":
            outputs["vpc_id"] = f"vpc-{short}"
            outputs["private_subnet_ids"] = [f"subnet-{short}-private-{i}" for i in (1, 2)]
            outputs["public_subnet_ids"] = [f"subnet-{short}-public-{i}" for i in (1, 2)]
        elif kind == "database_cluster":
            port = int(properties.get("port", 5432))
            outputs["endpoint_address"] = host
            outputs["endpoint_port"] = port
            outputs["socket_address"] = f"{host}:{port}"
            outputs["security_group_id"] = f"sg-{short}"
        elif kind == "security_group":
            outputs["security_group_id"] = f"sg-{short}"
        elif kind == "cache_subnet_group":
            outputs["ref"] = name.lower()
        elif kind == "cache_cluster":
            outputs["redis_endpoint_address"] = host
            outputs["redis_endpoint_port"] = int(properties.get("port", 6379))
        elif kind == "container_cluster":
            outputs["cluster_arn"] = f"arn:dryrun:ecs:cluster/{name}"
        elif kind == "task_definition":
            outputs["task_definition_arn"] = f"arn:dryrun:ecs:task-definition/{name}:1"
        elif kind == "load_balanced_service":
            outputs["service_arn"] = f"arn:dryrun:ecs:service/{name}"
            outputs["security_group_id"] = f"sg-{short}"
            outputs["load_balancer_dns"] = f"{name.lower()}-{short}.elb.{self.domain}"
            outputs["target_group_arn"] = f"arn:dryrun:elb:targetgroup/{name}"

        logger.info("(dry-run) %s 생성: %s", kind, name)
        return outputs


class KindRouter:
    """
    리소스 종류별로 다른 realize 협력자를 사용하도록 분기한다.
    (예: secret 은 Secret Manager, 나머지는 dry-run)
    """

    def __init__(
        self,
        routes: Optional[Mapping[str, Realizer]] = None,
        *,
        fallback: Optional[Realizer] = None,
    ) -> None:
        self._routes: Dict[str, Realizer] = dict(routes or {})
        self._fallback = fallback

    def register(self, kind: str, realizer: Realizer) -> None:
        self._routes[kind] = realizer

    def __call__(self, kind: str, properties: Mapping[str, Any], *, name: str) -> Mapping[str, Any]:
        realizer = self._routes.get(kind, self._fallback)
        if realizer is None:
            raise LookupError(f"{name}: '{kind}' 리소스를 처리할 realizer 가 없습니다.")
        return realizer(kind, properties, name=name)
