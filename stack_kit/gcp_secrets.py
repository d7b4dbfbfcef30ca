"""
gcp_secrets
-----------

`secret` 종류 리소스를 realize 하는 협력자.

비밀번호 정책(길이, 제외 문자, 구두점 제외, JSON 템플릿)에 따라 값을 생성하고,
로컬에서만 쓰거나(LocalSecretRealizer) Secret Manager 에 버전으로 저장한다(SecretManagerRealizer).
생성된 값은 다른 리소스에서 Deferred 로 참조한다.
"""

from __future__ import annotations

import json
import secrets
import string
from typing import Any, Dict, Mapping, Optional

from google.api_core.exceptions import NotFound
from google.cloud import secretmanager

from .logging_utils import get_logger


logger = get_logger(__name__)


def generate_secret_string(
    password_length: int = 32,
    *,
    exclude_characters: str = "",
    exclude_punctuation: bool = False,
    secret_string_template: Optional[str] = None,
    generate_string_key: Optional[str] = None,
) -> str:
    """
    정책에 맞는 임의 문자열을 생성한다.

    secret_string_template/generate_string_key 가 주어지면
    템플릿 JSON 의 해당 키에 생성 값을 넣은 JSON 문자열을 돌려준다.
    """
    if password_length <= 0:
        raise ValueError(f"password_length 는 1 이상이어야 합니다: {password_length}")

    alphabet = string.ascii_letters + string.digits
    if not exclude_punctuation:
        alphabet += string.punctuation
    alphabet = "".join(ch for ch in alphabet if ch not in exclude_characters)
    if not alphabet:
        raise ValueError("제외 문자 설정으로 인해 사용할 수 있는 문자가 없습니다.")

    value = "".join(secrets.choice(alphabet) for _ in range(password_length))

    if secret_string_template is None and generate_string_key is None:
        return value
    if secret_string_template is None or generate_string_key is None:
        raise ValueError(
            "secret_string_template 과 generate_string_key 는 함께 지정해야 합니다."
        )

    doc = json.loads(secret_string_template)
    doc[generate_string_key] = value
    return json.dumps(doc)


def _generate_from_properties(properties: Mapping[str, Any]) -> str:
    policy: Dict[str, Any] = dict(properties.get("generate") or {})
    return generate_secret_string(**policy)


class LocalSecretRealizer:
    """값을 생성만 하고 외부에 저장하지 않는다. (dry-run/테스트용)"""

    def __call__(self, kind: str, properties: Mapping[str, Any], *, name: str) -> Dict[str, Any]:
        value = _generate_from_properties(properties)
        logger.info("Secret 생성 (로컬): %s", name)
        return {
            "secret_name": name,
            "secret_string": value,
            "arn": f"local:secret/{name}",
        }


class SecretManagerRealizer:
    """
    생성한 값을 Secret Manager 에 저장한다.
    Secret 이 없으면 만들고, 항상 새 버전을 추가한다.
    """

    def __init__(
        self,
        project_id: str,
        *,
        secret_prefix: str = "",
        client: Optional[Any] = None,
    ) -> None:
        self.project_id = project_id
        self.secret_prefix = secret_prefix
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def __call__(self, kind: str, properties: Mapping[str, Any], *, name: str) -> Dict[str, Any]:
        secret_id = properties.get("secret_id") or name
        if self.secret_prefix:
            secret_id = f"{self.secret_prefix}{secret_id}"

        parent = f"projects/{self.project_id}"
        secret_name = f"{parent}/secrets/{secret_id}"

        # Secret 존재 여부 확인 후 없으면 생성
        try:
            self.client.get_secret(name=secret_name)
            logger.info("기존 Secret 에 새 버전을 추가합니다: %s", secret_name)
        except NotFound:
            logger.info("Secret 이 없어 새로 생성합니다: %s", secret_name)
            self.client.create_secret(
                parent=parent,
                secret_id=secret_id,
                secret={
                    "replication": {"automatic": {}},
                },
            )

        value = _generate_from_properties(properties)
        version = self.client.add_secret_version(
            parent=secret_name,
            payload={"data": value.encode("utf-8")},
        )

        return {
            "secret_name": secret_name,
            "secret_string": value,
            "arn": getattr(version, "name", secret_name),
        }
