from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from dotenv import load_dotenv

from .errors import MissingConfigurationError


ENV_FILES_DEFAULT_ORDER = [".env", ".env.infra", ".env.secrets"]

SECRET_BACKENDS = ("local", "gcp")


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def require_parameters(params: Mapping[str, Optional[str]], names: Sequence[str]) -> None:
    """
    평면 매핑에 필수 파라미터가 모두 있는지 확인한다.
    빈 문자열도 누락으로 본다.
    """
    missing = [name for name in names if not params.get(name)]
    if missing:
        raise MissingConfigurationError(missing)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} 는 정수여야 합니다: {raw!r}") from None


@dataclass
class StackConfig:
    # 필수
    domain_name: str
    license_key: str

    stack_name: str = "botpress"

    # secret 생성 방식: local | gcp
    secret_backend: str = "local"
    gcp_project_id: Optional[str] = None
    secret_prefix: str = ""

    # 실행 옵션
    max_workers: int = 1
    keep_going: bool = False

    @classmethod
    def from_env(cls) -> "StackConfig":
        required = ["DOMAIN_NAME", "BP_LICENSE_KEY"]
        secret_backend = os.getenv("SECRET_BACKEND", "local").strip().lower()
        if secret_backend == "gcp":
            required.append("GCP_PROJECT_ID")

        # 필수값은 한 번에 모아서 알려준다.
        require_parameters(os.environ, required)

        if secret_backend not in SECRET_BACKENDS:
            raise ValueError(
                f"SECRET_BACKEND 값이 올바르지 않습니다: {secret_backend} "
                f"(허용: {', '.join(SECRET_BACKENDS)})"
            )

        cfg = cls(
            domain_name=os.environ["DOMAIN_NAME"],
            license_key=os.environ["BP_LICENSE_KEY"],
            stack_name=os.getenv("STACK_NAME", "botpress"),
            secret_backend=secret_backend,
            gcp_project_id=os.getenv("GCP_PROJECT_ID"),
            secret_prefix=os.getenv("SECRET_PREFIX", ""),
            max_workers=_get_int("MAX_WORKERS", 1),
            keep_going=_get_bool("KEEP_GOING", False),
        )

        if cfg.max_workers < 1:
            raise ValueError(f"MAX_WORKERS 는 1 이상이어야 합니다: {cfg.max_workers}")

        return cfg

    def parameters(self) -> dict[str, str]:
        """스택 선언에 넘기는 외부 파라미터. (평면 매핑)"""
        return {
            "DOMAIN_NAME": self.domain_name,
            "BP_LICENSE_KEY": self.license_key,
        }
