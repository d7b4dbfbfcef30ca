"""
errors
------

스택 선언/그래프/리졸브 단계에서 발생하는 예외 모음.

모든 예외는 StackError 를 상속하며, 문제의 원인이 된 노드 이름을
`names` 속성과 메시지에 함께 남긴다.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence, Tuple


class StackError(Exception):
    """stack_kit 예외의 공통 베이스."""

    def __init__(self, message: str, names: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.names: Tuple[str, ...] = tuple(names)


class DuplicateIdentityError(StackError):
    def __init__(self, name: str) -> None:
        super().__init__(f"이미 선언된 리소스 이름입니다: {name}", [name])


class UnknownNodeError(StackError):
    def __init__(self, owner: str, missing: str) -> None:
        super().__init__(
            f"{owner} 가 선언되지 않은 리소스를 참조합니다: {missing}",
            [owner, missing],
        )


class SelfDependencyError(StackError):
    def __init__(self, name: str) -> None:
        super().__init__(f"리소스가 자기 자신에 의존할 수 없습니다: {name}", [name])


class CyclicDependencyError(StackError):
    def __init__(self, cycle: Sequence[str]) -> None:
        path = " -> ".join(cycle)
        # 마지막 원소는 순환을 닫기 위해 반복된 이름이므로 제외
        super().__init__(f"순환 의존성이 있습니다: {path}", list(cycle)[:-1])
        self.cycle: Tuple[str, ...] = tuple(cycle)


class NotRealizedError(StackError):
    def __init__(self, name: str) -> None:
        super().__init__(f"아직 생성되지 않은 리소스의 출력에 접근했습니다: {name}", [name])


class AlreadyRealizedError(StackError):
    def __init__(self, name: str) -> None:
        super().__init__(f"리소스 출력은 한 번만 설정할 수 있습니다: {name}", [name])


class UnresolvedDependencyError(StackError):
    """
    생성 순서상 이미 준비되어 있어야 할 출력이 없는 경우.
    플래너가 올바르다면 도달할 수 없으므로 내부 일관성 오류로 취급한다.
    """

    def __init__(self, owner: str, source: str, output: Optional[str] = None) -> None:
        target = f"{source}.{output}" if output else source
        super().__init__(
            f"{owner} 를 리졸브하는 중 준비되지 않은 값을 참조했습니다: {target}",
            [owner, source],
        )


class MissingOutputError(StackError, LookupError):
    """realize 협력자가 다른 리소스가 참조하는 출력을 게시하지 않은 경우."""

    def __init__(self, name: str, missing: Iterable[str]) -> None:
        self.missing: Tuple[str, ...] = tuple(missing)
        super().__init__(
            f"{name} 의 realize 결과에 필요한 출력이 없습니다: " + ", ".join(self.missing),
            [name],
        )


class OutputTransformError(StackError, ValueError):
    """게시된 출력에서 json_key 로 값을 꺼내지 못한 경우."""

    def __init__(self, source: str, output: str, key: str, cause: BaseException) -> None:
        super().__init__(
            f"{source}.{output} 에서 '{key}' 값을 꺼낼 수 없습니다: {cause!r}",
            [source],
        )
        self.cause = cause


class MissingConfigurationError(StackError, ValueError):
    def __init__(self, missing: Iterable[str]) -> None:
        names = sorted(set(missing))
        super().__init__("필수 환경변수가 누락되었습니다: " + ", ".join(names), names)


class RealizationFailedError(StackError):
    """
    외부 realize 호출(또는 그 결과의 치환/접근 규칙 적용)이 실패했을 때 발생한다.

    이미 생성된 리소스는 되돌리지 않으며, 어디까지 진행되었는지를
    realized/skipped 로 함께 전달한다.
    failures 의 key 는 실패한 리소스 이름 또는 접근 규칙 텍스트이고,
    names 에는 항상 관련된 리소스 이름만 담긴다.
    """

    def __init__(
        self,
        name: str,
        cause: BaseException,
        *,
        failures: Optional[Mapping[str, BaseException]] = None,
        realized: Sequence[str] = (),
        skipped: Sequence[str] = (),
        names: Optional[Sequence[str]] = None,
    ) -> None:
        self.failures = dict(failures or {name: cause})
        super().__init__(
            f"리소스 생성 실패: {name}: {cause}",
            list(self.failures) if names is None else names,
        )
        self.name = name
        self.cause = cause
        self.realized: Tuple[str, ...] = tuple(realized)
        self.skipped: Tuple[str, ...] = tuple(skipped)
