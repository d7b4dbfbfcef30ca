"""
botpress
--------

Botpress 서버 배포용 스택 선언.

VPC, DB secret, Aurora PostgreSQL 클러스터, Redis 캐시, 컨테이너 클러스터,
태스크 정의, 로드밸런서 뒤의 서비스를 선언하고
서비스에서 DB/Redis 로의 접근을 허용한다.
"""

from __future__ import annotations

from typing import Mapping, Optional

from .access import Port
from .config import require_parameters
from .resources import Stack
from .values import fmt, json_embed


REQUIRED_PARAMETERS = ("DOMAIN_NAME", "BP_LICENSE_KEY")

DB_NAME = "botpressdb"
DB_USERNAME = "clusteradmin"
IMAGE = "botpress/server:v12_2_3"
CONTAINER_PORT = 3000

_EMBEDDINGS_URL = "https://nyc3.digitaloceanspaces.com/botpress-public/embeddings"
STARTUP_COMMAND = [
    "/bin/bash",
    "-c",
    'echo "starting container" && mkdir -p /botpress/embeddings'
    f" && wget -P /botpress/embeddings -q -nc {_EMBEDDINGS_URL}/bp.en.100.bin"
    f" && wget -P /botpress/embeddings -q -nc {_EMBEDDINGS_URL}/bp.en.bpe.model"
    " ; ./duckling & ./bp lang --langDir /botpress/embeddings & ./bp",
]


def define_stack(params: Mapping[str, Optional[str]], name: str = "botpress") -> Stack:
    # 리소스를 하나라도 선언하기 전에 필수 파라미터부터 확인한다.
    require_parameters(params, REQUIRED_PARAMETERS)
    domain_name = params["DOMAIN_NAME"]
    license_key = params["BP_LICENSE_KEY"]

    stack = Stack(name)

    vpc = stack.declare("network", "VPC", {"max_azs": 2, "nat_gateways": 1})

    db_secret = stack.declare(
        "secret",
        "DbSecret",
        {
            "generate": {
                "password_length": 30,
                "secret_string_template": "{}",
                "generate_string_key": "password",
                "exclude_characters": '"@/\\',
                "exclude_punctuation": True,
            },
        },
    )
    db_password = db_secret.attr("secret_string").json_key("password")

    database = stack.declare(
        "database_cluster",
        "Database",
        {
            "engine": "aurora-postgresql",
            "removal_policy": "destroy",
            "default_database_name": DB_NAME,
            "instances": 1,
            "master_user": {"username": DB_USERNAME, "password": db_password},
            "instance_props": {
                "instance_type": "t3.medium",
                "vpc_id": vpc.attr("vpc_id"),
                "subnet_ids": vpc.attr("private_subnet_ids"),
            },
            "parameter_group_name": "default.aurora-postgresql10",
        },
    )

    redis_sg = stack.declare(
        "security_group",
        "RedisSecurityGroup",
        {"vpc_id": vpc.attr("vpc_id")},
    )
    cache_subnets = stack.declare(
        "cache_subnet_group",
        "RedisSubnetGroup",
        {"description": "", "subnet_ids": vpc.attr("private_subnet_ids")},
    )
    cache = stack.declare(
        "cache_cluster",
        "RedisCluster",
        {
            "cache_node_type": "cache.m5.large",
            "engine": "redis",
            "num_cache_nodes": 1,
            "vpc_security_group_ids": [redis_sg.attr("security_group_id")],
            "cache_subnet_group_name": cache_subnets.attr("ref"),
        },
    )

    cluster = stack.declare("container_cluster", "EcsCluster", {"vpc_id": vpc.attr("vpc_id")})

    task = stack.declare(
        "task_definition",
        "TaskDefinition",
        {
            "memory_limit_mib": 3072,
            "cpu": 512,
            "containers": [
                {
                    "name": "Botpress",
                    "image": IMAGE,
                    "command": STARTUP_COMMAND,
                    "environment": {
                        "DATABASE_URL": fmt(
                            "postgres://{user}:{password}@{socket}/{db}",
                            user=DB_USERNAME,
                            password=db_password,
                            socket=database.attr("socket_address"),
                            db=DB_NAME,
                        ),
                        "BPFS_STORAGE": "database",
                        "REDIS_URL": fmt(
                            "redis://{}:{}",
                            cache.attr("redis_endpoint_address"),
                            cache.attr("redis_endpoint_port"),
                        ),
                        "PRO_ENABLED": "true",
                        "BP_LICENSE_KEY": license_key,
                        "CLUSTER_ENABLED": "true",
                        "AUTO_MIGRATE": "true",
                        "BP_MODULE_NLU_LANGUAGESOURCES": json_embed(
                            [{"endpoint": "http://localhost:3100"}]
                        ),
                        "BP_MODULE_NLU_DUCKLINGURL": json_embed(
                            [{"endpoint": "http://localhost:8000"}]
                        ),
                        "EXTERNAL_URL": fmt("https://{}", domain_name),
                        "BP_PRODUCTION": "true",
                    },
                    "logging": {
                        "driver": "awslogs",
                        "stream_prefix": "botpress",
                        "retention_days": 7,
                    },
                    "port_mappings": [{"container_port": CONTAINER_PORT}],
                },
            ],
        },
    )

    service = stack.declare(
        "load_balanced_service",
        "EcsPattern",
        {
            "cluster_arn": cluster.attr("cluster_arn"),
            "task_definition_arn": task.attr("task_definition_arn"),
            "subnet_ids": vpc.attr("private_subnet_ids"),
            "desired_count": 2,
            "health_check_grace_period_seconds": 7 * 60,
            "target_group": {
                "health_check": {"path": "/admin/"},
                "attributes": {"stickiness.enabled": "true"},
            },
        },
    )

    stack.allow(service, database, Port.all_traffic(), description="botpress -> database")
    stack.allow(service, redis_sg, Port.all_traffic(), description="botpress -> redis")

    return stack
