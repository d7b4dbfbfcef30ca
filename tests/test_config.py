import pytest

from stack_kit.config import StackConfig, require_parameters
from stack_kit.errors import MissingConfigurationError


def _base_env() -> dict[str, str]:
    return {
        "DOMAIN_NAME": "bot.example.com",
        "BP_LICENSE_KEY": "license-123",
    }


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "DOMAIN_NAME",
        "BP_LICENSE_KEY",
        "SECRET_BACKEND",
        "GCP_PROJECT_ID",
        "MAX_WORKERS",
        "KEEP_GOING",
        "STACK_NAME",
    ):
        monkeypatch.delenv(key, raising=False)


def test_missing_required_env_raises_configuration_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("DOMAIN_NAME", "bot.example.com")

    with pytest.raises(MissingConfigurationError) as excinfo:
        StackConfig.from_env()

    assert "BP_LICENSE_KEY" in str(excinfo.value)
    assert excinfo.value.names == ("BP_LICENSE_KEY",)
    # 설정 오류는 ValueError 로도 잡을 수 있어야 한다.
    assert isinstance(excinfo.value, ValueError)


def test_gcp_secret_backend_requires_project_id(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    for key, value in _base_env().items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("SECRET_BACKEND", "gcp")

    with pytest.raises(MissingConfigurationError) as excinfo:
        StackConfig.from_env()

    assert "GCP_PROJECT_ID" in str(excinfo.value)


def test_from_env_reads_optional_values(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    for key, value in _base_env().items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("MAX_WORKERS", "4")
    monkeypatch.setenv("KEEP_GOING", "yes")

    cfg = StackConfig.from_env()

    assert cfg.domain_name == "bot.example.com"
    assert cfg.secret_backend == "local"
    assert cfg.max_workers == 4
    assert cfg.keep_going is True
    assert cfg.parameters() == _base_env()


def test_invalid_secret_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    for key, value in _base_env().items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("SECRET_BACKEND", "vault")

    with pytest.raises(ValueError) as excinfo:
        StackConfig.from_env()

    assert "SECRET_BACKEND" in str(excinfo.value)


def test_require_parameters_treats_empty_as_missing() -> None:
    with pytest.raises(MissingConfigurationError) as excinfo:
        require_parameters({"DOMAIN_NAME": "", "OTHER": "x"}, ["DOMAIN_NAME", "BP_LICENSE_KEY"])

    assert excinfo.value.names == ("BP_LICENSE_KEY", "DOMAIN_NAME")
