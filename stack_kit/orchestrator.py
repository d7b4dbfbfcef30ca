from __future__ import annotations

from typing import List, Optional, Tuple

from .config import StackConfig
from .errors import RealizationFailedError
from .gcp_secrets import LocalSecretRealizer, SecretManagerRealizer
from .graph import DependencyGraph, build_graph
from .logging_utils import get_logger
from .planner import layers, plan
from .realizers import DryRunRealizer, KindRouter, Realizer
from .resolver import DeploymentPlan, Resolver
from .resources import Stack
from . import botpress


logger = get_logger(__name__)


def build_realizer(cfg: StackConfig) -> Realizer:
    """
    설정에 맞는 realize 협력자를 만든다.
    secret 만 별도 백엔드로 보내고, 나머지 리소스는 dry-run 으로 처리한다.
    """
    if cfg.secret_backend == "gcp":
        secret_realizer: Realizer = SecretManagerRealizer(
            cfg.gcp_project_id or "",
            secret_prefix=cfg.secret_prefix,
        )
    else:
        secret_realizer = LocalSecretRealizer()

    return KindRouter({"secret": secret_realizer}, fallback=DryRunRealizer())


def prepare(cfg: StackConfig) -> Tuple[Stack, DependencyGraph, Tuple[str, ...]]:
    """
    스택 선언 -> 그래프 구성 -> 순환 검사/생성 순서 계산.
    구조적인 오류는 여기서 모두 드러나며, 어떤 리소스도 건드리지 않는다.
    """
    stack = botpress.define_stack(cfg.parameters(), name=cfg.stack_name)
    graph = build_graph(stack.nodes, stack.rules)
    order = plan(graph)
    logger.info("리소스 %d 개, 접근 규칙 %d 개", len(graph), len(graph.rules))
    return stack, graph, order


def plan_all(cfg: StackConfig, show_properties: bool = False) -> str:
    """
    생성 순서와 의존성, 접근 규칙을 요약 텍스트로 리턴한다.
    실제 realize 는 하지 않는다.
    """
    stack, graph, order = prepare(cfg)

    lines: List[str] = []
    lines.append("# Deploy plan")
    lines.append(f"- stack: {stack.name}")
    lines.append(f"- secret backend: {cfg.secret_backend}")
    lines.append("")

    lines.append("## Creation order")
    for i, name in enumerate(order, start=1):
        node = graph.nodes[name]
        deps = graph.dependencies_of(name)
        after = f" (after: {', '.join(deps)})" if deps else ""
        lines.append(f"{i}. {name} [{node.kind}]{after}")
    lines.append("")

    lines.append("## Parallel layers")
    for i, group in enumerate(layers(graph), start=1):
        lines.append(f"- layer {i}: {', '.join(group)}")
    lines.append("")

    lines.append("## Access rules")
    if graph.rules:
        for rule in graph.rules:
            lines.append(f"- {rule}")
    else:
        lines.append("- (none)")

    if show_properties:
        lines.append("")
        lines.append("## Properties")
        for name in order:
            lines.append(f"### {name}")
            for key, value in graph.nodes[name].properties.describe().items():
                lines.append(f"- {key}: {value}")

    return "\n".join(lines)


def deploy(cfg: StackConfig, realizer: Optional[Realizer] = None) -> DeploymentPlan:
    _, graph, order = prepare(cfg)
    resolver = Resolver(
        graph,
        realizer or build_realizer(cfg),
        max_workers=cfg.max_workers,
        keep_going=cfg.keep_going,
        stack_name=cfg.stack_name,
    )
    return resolver.resolve(order)


def apply_all(
    cfg: StackConfig,
    realizer: Optional[Realizer] = None,
) -> tuple[str, Optional[DeploymentPlan]]:
    """
    스택 전체를 realize 한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        deployment: 성공 시 DeploymentPlan, 실패 리소스가 있으면 None
    """
    realized: List[str] = []
    skipped: List[str] = []
    failed: List[str] = []
    rules: List[str] = []
    deployment: Optional[DeploymentPlan] = None

    try:
        deployment = deploy(cfg, realizer)
    except RealizationFailedError as e:
        logger.error("배포 실패: %s", e)
        realized = list(e.realized)
        skipped = list(e.skipped)
        failed = [f"{name}: {cause}" for name, cause in e.failures.items()]
    else:
        realized = list(deployment.order)
        rules = [
            f"{r.source} -> {r.target} ({r.target_group} <- {r.source_group})"
            for r in deployment.rules
        ]

    lines: List[str] = []
    lines.append("# Deploy summary")
    lines.append(f"- stack: {cfg.stack_name}")

    for title, items in (
        ("Realized resources", realized),
        ("Skipped resources", skipped),
        ("Failed resources", failed),
        ("Access rules", rules),
    ):
        lines.append("")
        lines.append(f"## {title}")
        if items:
            for item in items:
                lines.append(f"- {item}")
        else:
            lines.append("- (none)")

    summary = "\n".join(lines)
    return summary, deployment
