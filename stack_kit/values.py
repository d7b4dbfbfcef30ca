"""
values
------

리소스 속성 값 모델.

선언 시점에 속성 bag 은 아래 variant 들의 트리로 정규화된다.

- Literal      : 그대로 전달되는 값 (str/int/float/bool/None)
- Deferred     : 다른 리소스의 출력(아직 모르는 값)을 가리키는 placeholder
- Interpolated : 문자열 템플릿에 Deferred 를 끼워 넣은 값 (connection string 등)
- JsonEmbed    : 하위 값을 리졸브한 뒤 JSON 문자열로 직렬화하는 값
- ListValue / MapValue : 중첩 구조

그래프 빌더는 iter_refs() 로 간선을 추론하고,
Resolver 는 resolve(lookup) 으로 구체 값을 만든다.
"""

from __future__ import annotations

import json
import string
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import OutputTransformError


# (source, output) -> 게시된 출력 값
Lookup = Callable[[str, str], Any]

_SCALARS = (str, int, float, bool, type(None))


def _render(value: Any) -> str:
    # 템플릿 안의 bool 은 JSON/JS 표기(true/false)로 쓴다.
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class Value:
    """속성 값 variant 의 공통 베이스."""

    def iter_refs(self) -> Iterator["Deferred"]:
        return iter(())

    def resolve(self, lookup: Lookup) -> Any:
        raise NotImplementedError

    def describe(self) -> Any:
        """리졸브 없이 사람이 읽을 수 있는 형태로 표현한다. (plan 출력용)"""
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Value):
    value: Any

    def resolve(self, lookup: Lookup) -> Any:
        return self.value

    def describe(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Deferred(Value):
    """
    source 리소스의 output 출력을 가리키는 placeholder.

    key 가 지정되면 출력 값을 JSON 문서로 보고 해당 키를 꺼낸다.
    (예: secret 의 secret_string 에서 "password" 선택)
    """

    source: str
    output: str
    key: Optional[str] = None

    def json_key(self, key: str) -> "Deferred":
        return replace(self, key=key)

    def iter_refs(self) -> Iterator["Deferred"]:
        yield self

    def resolve(self, lookup: Lookup) -> Any:
        value = lookup(self.source, self.output)
        if self.key is None:
            return value
        try:
            doc = json.loads(value) if isinstance(value, (str, bytes)) else value
            return doc[self.key]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise OutputTransformError(self.source, self.output, self.key, e) from e

    def describe(self) -> str:
        suffix = f"[{self.key}]" if self.key is not None else ""
        return "${" + f"{self.source}.{self.output}{suffix}" + "}"

    # 플랜 구성 중에 값이 암묵적으로 관찰되는 것을 막는다.
    def __str__(self) -> str:
        raise TypeError(
            f"Deferred 값은 문자열로 변환할 수 없습니다: {self.describe()} "
            "(fmt()/concat() 를 사용하세요)"
        )

    def __format__(self, spec: str) -> str:
        return self.__str__()

    def __bool__(self) -> bool:
        raise TypeError(f"Deferred 값은 참/거짓을 판단할 수 없습니다: {self.describe()}")


@dataclass(frozen=True)
class Interpolated(Value):
    parts: Tuple[Value, ...]

    def iter_refs(self) -> Iterator[Deferred]:
        for part in self.parts:
            yield from part.iter_refs()

    def resolve(self, lookup: Lookup) -> str:
        return "".join(_render(part.resolve(lookup)) for part in self.parts)

    def describe(self) -> str:
        return "".join(str(part.describe()) for part in self.parts)


@dataclass(frozen=True)
class JsonEmbed(Value):
    value: Value

    def iter_refs(self) -> Iterator[Deferred]:
        return self.value.iter_refs()

    def resolve(self, lookup: Lookup) -> str:
        return json.dumps(self.value.resolve(lookup), separators=(",", ":"))

    def describe(self) -> str:
        return json.dumps(self.value.describe(), separators=(",", ":"))


@dataclass(frozen=True)
class ListValue(Value):
    items: Tuple[Value, ...]

    def iter_refs(self) -> Iterator[Deferred]:
        for item in self.items:
            yield from item.iter_refs()

    def resolve(self, lookup: Lookup) -> List[Any]:
        return [item.resolve(lookup) for item in self.items]

    def describe(self) -> List[Any]:
        return [item.describe() for item in self.items]


@dataclass(frozen=True)
class MapValue(Value):
    items: Tuple[Tuple[str, Value], ...]

    def iter_refs(self) -> Iterator[Deferred]:
        for _, item in self.items:
            yield from item.iter_refs()

    def resolve(self, lookup: Lookup) -> Dict[str, Any]:
        return {k: v.resolve(lookup) for k, v in self.items}

    def describe(self) -> Dict[str, Any]:
        return {k: v.describe() for k, v in self.items}

    def get(self, key: str) -> Optional[Value]:
        for k, v in self.items:
            if k == key:
                return v
        return None


def to_value(obj: Any) -> Value:
    """
    파이썬 값(dict/list/tuple/스칼라/Value)을 variant 트리로 변환한다.
    """
    if isinstance(obj, Value):
        return obj
    if isinstance(obj, Mapping):
        items = []
        for k, v in obj.items():
            if not isinstance(k, str):
                raise TypeError(f"속성 키는 문자열이어야 합니다: {k!r}")
            items.append((k, to_value(v)))
        return MapValue(tuple(items))
    if isinstance(obj, (list, tuple)):
        return ListValue(tuple(to_value(v) for v in obj))
    if isinstance(obj, _SCALARS):
        return Literal(obj)
    raise TypeError(f"지원하지 않는 속성 값 타입입니다: {type(obj).__name__}")


def concat(*parts: Any) -> Interpolated:
    """여러 조각(리터럴/Deferred)을 이어 붙인 문자열 값을 만든다."""
    return Interpolated(tuple(to_value(p) for p in parts))


def fmt(template: str, *args: Any, **kwargs: Any) -> Interpolated:
    """
    str.format 과 같은 문법의 템플릿에 값을 끼워 넣는다.

        fmt("redis://{}:{}", cache.attr("address"), cache.attr("port"))

    format spec/변환({:>3}, {!r})은 Deferred 에 적용할 수 없으므로 지원하지 않는다.
    """
    parts: List[Any] = []
    auto_index = 0
    for literal_text, field_name, format_spec, conversion in string.Formatter().parse(template):
        if literal_text:
            parts.append(literal_text)
        if field_name is None:
            continue
        if format_spec or conversion:
            raise ValueError(f"fmt 템플릿에서 format spec/변환은 지원하지 않습니다: {template!r}")
        if field_name == "":
            parts.append(args[auto_index])
            auto_index += 1
        elif field_name.isdigit():
            parts.append(args[int(field_name)])
        else:
            parts.append(kwargs[field_name])
    return concat(*parts)


def json_embed(obj: Any) -> JsonEmbed:
    """obj 를 리졸브한 뒤 JSON 문자열로 넣는다. (환경변수 속 JSON 조각 등)"""
    return JsonEmbed(to_value(obj))
