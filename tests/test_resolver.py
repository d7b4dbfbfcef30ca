import threading
import time
from typing import Any, Dict, List, Mapping

import pytest

from stack_kit.access import AccessRuleBinder, Port
from stack_kit.errors import (
    AlreadyRealizedError,
    MissingOutputError,
    NotRealizedError,
    OutputTransformError,
    RealizationFailedError,
    UnresolvedDependencyError,
)
from stack_kit.graph import DependencyGraph
from stack_kit.planner import plan
from stack_kit.resolver import Resolver
from stack_kit.resources import Stack
from stack_kit.values import Deferred, fmt


class RecordingRealizer:
    """
    realize 호출을 기록하고, 호출 시점에 의존 노드들이 모두 출력을 게시했는지 확인한다.
    """

    def __init__(self, graph: DependencyGraph, outputs: Dict[str, Mapping[str, Any]]) -> None:
        self.graph = graph
        self.outputs = outputs
        self.calls: List[str] = []
        self.received: Dict[str, Mapping[str, Any]] = {}
        self.violations: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, kind: str, properties: Mapping[str, Any], *, name: str) -> Mapping[str, Any]:
        for dep in self.graph.dependencies_of(name):
            if not self.graph.nodes[dep].realized:
                self.violations.append(f"{name} before {dep}")
        with self._lock:
            self.calls.append(name)
            self.received[name] = properties
        return self.outputs.get(name, {})


def _scenario():
    stack = Stack("test")
    network = stack.declare("network", "Network", {"cidr": "10.0.0.0/16"})
    database = stack.declare(
        "database_cluster",
        "Database",
        {"vpc_id": network.attr("vpc_id"), "subnet_ids": network.attr("private_subnet_ids")},
    )
    cache = stack.declare("cache_cluster", "Cache", {"vpc_id": network.attr("vpc_id")})
    service = stack.declare(
        "load_balanced_service",
        "Service",
        {
            "environment": {
                "DATABASE_URL": fmt("postgres://admin@{}/app", database.attr("socket_address")),
                "REDIS_URL": fmt(
                    "redis://{}:{}",
                    cache.attr("redis_endpoint_address"),
                    cache.attr("redis_endpoint_port"),
                ),
            },
        },
    )
    stack.allow(service, database, Port.all_traffic())

    outputs = {
        "Network": {"vpc_id": "vpc-1", "private_subnet_ids": ["subnet-a", "subnet-b"]},
        "Database": {"socket_address": "db.internal:5432", "security_group_id": "sg-db"},
        "Cache": {"redis_endpoint_address": "cache.internal", "redis_endpoint_port": 6379},
        "Service": {"security_group_id": "sg-svc"},
    }
    graph = DependencyGraph.from_stack(stack)
    return stack, graph, outputs


def test_resolve_substitutes_published_endpoints_verbatim() -> None:
    stack, graph, outputs = _scenario()
    realizer = RecordingRealizer(graph, outputs)

    deployment = Resolver(graph, realizer, stack_name="test").resolve(plan(graph))

    env = deployment.node("Service").properties["environment"]
    assert env["DATABASE_URL"] == "postgres://admin@db.internal:5432/app"
    assert env["REDIS_URL"] == "redis://cache.internal:6379"
    assert deployment.order[0] == "Network"
    assert deployment.order[-1] == "Service"
    assert realizer.violations == []
    assert stack.outputs_of("Database")["socket_address"] == "db.internal:5432"


def test_resolve_passes_exact_published_object() -> None:
    _, graph, outputs = _scenario()
    realizer = RecordingRealizer(graph, outputs)

    Resolver(graph, realizer).resolve(plan(graph))

    assert realizer.received["Database"]["subnet_ids"] is outputs["Network"]["private_subnet_ids"]


def test_outputs_before_realization_fail_fast() -> None:
    stack, _, _ = _scenario()

    with pytest.raises(NotRealizedError) as excinfo:
        stack.outputs_of("Database")

    assert excinfo.value.names == ("Database",)


def test_node_is_realized_at_most_once() -> None:
    _, graph, outputs = _scenario()
    order = plan(graph)
    Resolver(graph, RecordingRealizer(graph, outputs)).resolve(order)

    realizer = RecordingRealizer(graph, outputs)
    with pytest.raises(AlreadyRealizedError):
        Resolver(graph, realizer).resolve(order)
    assert realizer.calls == []


def test_out_of_order_resolution_is_an_internal_error() -> None:
    _, graph, outputs = _scenario()

    with pytest.raises(UnresolvedDependencyError) as excinfo:
        Resolver(graph, RecordingRealizer(graph, outputs)).resolve(["Database", "Network"])

    assert "Database" in excinfo.value.names


def test_access_rule_is_bound_after_both_endpoints() -> None:
    _, graph, outputs = _scenario()

    deployment = Resolver(graph, RecordingRealizer(graph, outputs)).resolve(plan(graph))

    assert len(deployment.rules) == 1
    rule = deployment.rules[0]
    assert (rule.source, rule.target) == ("Service", "Database")
    assert (rule.source_group, rule.target_group) == ("sg-svc", "sg-db")
    assert rule.protocol == "-1"


def test_failure_halts_dependents_and_keeps_realized_nodes() -> None:
    _, graph, outputs = _scenario()
    realizer = RecordingRealizer(graph, outputs)

    def failing(kind: str, properties: Mapping[str, Any], *, name: str) -> Mapping[str, Any]:
        if name == "Cache":
            raise RuntimeError("quota exceeded")
        return realizer(kind, properties, name=name)

    with pytest.raises(RealizationFailedError) as excinfo:
        Resolver(graph, failing, keep_going=True).resolve(plan(graph))

    error = excinfo.value
    assert error.name == "Cache"
    assert isinstance(error.cause, RuntimeError)
    assert error.__cause__ is error.cause
    assert "Service" in error.skipped
    assert "Service" not in realizer.calls
    # 이미 생성된 노드는 되돌리지 않는다.
    assert graph.nodes["Network"].realized
    assert graph.nodes["Database"].realized
    assert set(error.realized) == {"Network", "Database"}


def test_failure_stops_scheduling_without_keep_going() -> None:
    stack = Stack("test")
    stack.declare("bucket", "First")
    stack.declare("bucket", "Second")
    graph = DependencyGraph.from_stack(stack)
    calls: List[str] = []

    def failing(kind: str, properties: Mapping[str, Any], *, name: str) -> Mapping[str, Any]:
        calls.append(name)
        raise RuntimeError("boom")

    with pytest.raises(RealizationFailedError) as excinfo:
        Resolver(graph, failing).resolve(plan(graph))

    assert calls == ["First"]
    assert excinfo.value.skipped == ("Second",)


def _secret_scenario(secret_string: Any):
    stack = Stack("test")
    secret = stack.declare("secret", "DbSecret")
    stack.declare(
        "database_cluster",
        "Database",
        {"password": secret.attr("secret_string").json_key("password")},
    )
    stack.declare("service", "Service", {"db": Deferred("Database", "endpoint")})
    graph = DependencyGraph.from_stack(stack)
    outputs = {
        "DbSecret": {"secret_string": secret_string},
        "Database": {"endpoint": "db.internal"},
    }
    return graph, RecordingRealizer(graph, outputs)


@pytest.mark.parametrize("secret_string", ['{"pass": "x"}', "not json", '["x"]'])
def test_unusable_json_output_fails_the_owner_node(secret_string: str) -> None:
    graph, realizer = _secret_scenario(secret_string)

    with pytest.raises(RealizationFailedError) as excinfo:
        Resolver(graph, realizer, keep_going=True).resolve(plan(graph))

    error = excinfo.value
    assert error.names == ("Database",)
    assert isinstance(error.cause, OutputTransformError)
    assert error.cause.names == ("DbSecret",)
    assert "DbSecret.secret_string" in str(error)
    assert error.realized == ("DbSecret",)
    assert error.skipped == ("Service",)
    assert realizer.calls == ["DbSecret"]


@pytest.mark.parametrize("max_workers", [1, 4])
def test_missing_referenced_output_fails_the_publishing_node(max_workers: int) -> None:
    _, graph, outputs = _scenario()
    outputs = dict(outputs, Cache={"redis_endpoint_address": "cache.internal"})

    with pytest.raises(RealizationFailedError) as excinfo:
        Resolver(
            graph,
            RecordingRealizer(graph, outputs),
            max_workers=max_workers,
            keep_going=True,
        ).resolve(plan(graph))

    error = excinfo.value
    assert error.names == ("Cache",)
    assert isinstance(error.cause, MissingOutputError)
    assert error.cause.missing == ("redis_endpoint_port",)
    assert not graph.nodes["Cache"].realized
    assert set(error.realized) == {"Network", "Database"}
    assert error.skipped == ("Service",)


def test_access_rule_endpoint_output_is_required() -> None:
    _, graph, outputs = _scenario()
    outputs = dict(outputs, Database={"socket_address": "db.internal:5432"})

    with pytest.raises(RealizationFailedError) as excinfo:
        Resolver(graph, RecordingRealizer(graph, outputs), keep_going=True).resolve(plan(graph))

    assert excinfo.value.names == ("Database",)
    assert excinfo.value.cause.missing == ("security_group_id",)


def test_non_mapping_outputs_fail_the_node() -> None:
    stack = Stack("test")
    stack.declare("bucket", "Bucket")
    graph = DependencyGraph.from_stack(stack)

    with pytest.raises(RealizationFailedError) as excinfo:
        Resolver(graph, lambda kind, properties, *, name: None).resolve(plan(graph))

    assert excinfo.value.names == ("Bucket",)
    assert isinstance(excinfo.value.cause, TypeError)


def test_bind_failure_names_rule_endpoints() -> None:
    _, graph, outputs = _scenario()

    def deny(target_group: str, permission: Any) -> None:
        raise PermissionError("not allowed")

    binder = AccessRuleBinder(lambda name: graph.nodes[name].outputs, authorize=deny)

    with pytest.raises(RealizationFailedError) as excinfo:
        Resolver(graph, RecordingRealizer(graph, outputs), binder=binder).resolve(plan(graph))

    error = excinfo.value
    assert error.names == ("Service", "Database")
    assert "Service -> Database" in str(error)
    assert isinstance(error.cause, PermissionError)
    assert binder.state.snapshot() == {"sg-db": frozenset()}


def test_concurrent_resolution_respects_dependencies() -> None:
    _, graph, outputs = _scenario()
    realizer = RecordingRealizer(graph, outputs)
    running: List[str] = []
    overlap: List[bool] = []
    lock = threading.Lock()

    def slow(kind: str, properties: Mapping[str, Any], *, name: str) -> Mapping[str, Any]:
        with lock:
            running.append(name)
            if {"Database", "Cache"} <= set(running):
                overlap.append(True)
        time.sleep(0.05)
        result = realizer(kind, properties, name=name)
        with lock:
            running.remove(name)
        return result

    deployment = Resolver(graph, slow, max_workers=4).resolve(plan(graph))

    assert realizer.violations == []
    assert deployment.order == plan(graph)
    assert overlap, "Database 와 Cache 는 동시에 생성될 수 있어야 한다"
    assert deployment.node("Service").properties["environment"]["REDIS_URL"] == "redis://cache.internal:6379"


def test_deployment_plan_is_serializable() -> None:
    _, graph, outputs = _scenario()

    deployment = Resolver(graph, RecordingRealizer(graph, outputs), stack_name="test").resolve(plan(graph))
    data = deployment.to_dict()

    assert data["stack"] == "test"
    assert [n["name"] for n in data["nodes"]] == list(deployment.order)
    assert data["nodes"][1]["properties"]["subnet_ids"] == ["subnet-a", "subnet-b"]
    assert data["access_rules"][0]["target_group"] == "sg-db"
    assert '"DATABASE_URL": "postgres://admin@db.internal:5432/app"' in deployment.to_json()


def test_deployment_plan_is_immutable() -> None:
    _, graph, outputs = _scenario()

    deployment = Resolver(graph, RecordingRealizer(graph, outputs)).resolve(plan(graph))

    with pytest.raises(TypeError):
        deployment.node("Network").outputs["vpc_id"] = "other"  # type: ignore[index]
