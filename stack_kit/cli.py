import sys
from dataclasses import replace
from typing import Optional

import click

from .config import load_env_files, StackConfig
from .errors import StackError
from .logging_utils import setup_logging, get_logger
from .orchestrator import apply_all, plan_all


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-v 가 많을수록 더 자세한 로그)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """선언형 스택을 의존성 순서대로 생성하는 배포 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_config_from_ctx(ctx: click.Context) -> StackConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    cfg = StackConfig.from_env()
    logger.debug("Config loaded: %s", replace(cfg, license_key="***"))
    return cfg


@main.command()
@click.option(
    "-a",
    "--all",
    "show_all",
    is_flag=True,
    help="리소스별 속성(placeholder 포함)을 함께 출력합니다.",
)
@click.pass_context
def plan(ctx: click.Context, show_all: bool) -> None:
    """생성 순서, 의존성, 접근 규칙을 출력 (리소스는 만들지 않음)"""
    try:
        cfg = _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    try:
        report = plan_all(cfg, show_properties=show_all)
    except StackError as e:
        click.echo(f"[ERROR] 스택 구성 오류: {e}", err=True)
        sys.exit(1)

    click.echo(report)


@main.command(name="deploy")
@click.option(
    "-w",
    "--workers",
    "workers",
    type=click.IntRange(min=1),
    default=None,
    help="동시에 생성할 리소스 수. 기본값은 MAX_WORKERS 환경변수(없으면 1).",
)
@click.option(
    "--keep-going",
    "keep_going",
    is_flag=True,
    default=False,
    help="실패한 리소스와 무관한 리소스는 계속 생성합니다.",
)
@click.option(
    "-o",
    "--output",
    "output",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="최종 배포 계획(JSON)을 저장할 파일 경로",
)
@click.pass_context
def deploy(ctx: click.Context, workers: Optional[int], keep_going: bool, output: Optional[str]) -> None:
    """리소스를 의존성 순서대로 생성하고 배포 계획을 만든다"""
    try:
        cfg = _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    if workers is not None:
        cfg = replace(cfg, max_workers=workers)
    if keep_going:
        cfg = replace(cfg, keep_going=True)

    try:
        summary, deployment = apply_all(cfg)
    except StackError as e:
        logger.exception("배포 중 오류 발생")
        click.echo(f"[ERROR] 배포 실패: {e}", err=True)
        sys.exit(1)

    click.echo(summary)

    # 실패한 리소스가 있었다면 전체 명령은 실패(exit 1)로 간주
    if deployment is None:
        sys.exit(1)

    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(deployment.to_json())
        click.echo(f"배포 계획을 저장했습니다: {output}")
