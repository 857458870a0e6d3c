from __future__ import annotations

from enum import Enum, StrEnum
from functools import lru_cache
from typing import Any, cast, TypeVar

from pydantic import TypeAdapter, ValidationError

from coda.errors import DecodingError

T = TypeVar("T")


class DecodeStrategy(StrEnum):
    # Raw value is a list/dict graph of JSON primitives.
    STRUCTURED = "structured"
    # Raw value is a string produced by JSON.stringify() in the runtime.
    JSON_TEXT = "json_text"
    # Raw value already is the target primitive (str, bool, int, float).
    PRIMITIVE = "primitive"
    # Raw int or str that names one case of an enum.
    ENUM_FROM_PRIMITIVE = "enum_from_primitive"


@lru_cache(maxsize=128)
def _adapter(target: Any) -> TypeAdapter[Any]:
    return TypeAdapter(target)


def _describe(target: Any) -> str:
    return getattr(target, "__name__", None) or str(target)


def decode_response(raw: Any, target: type[T] | Any, strategy: DecodeStrategy) -> T:
    expected = _describe(target)
    match strategy:
        case DecodeStrategy.STRUCTURED:
            if not isinstance(raw, (dict, list)):
                raise DecodingError(expected, strategy, TypeError("invalid JSON object"))
            try:
                return cast(T, _adapter(target).validate_python(raw))
            except ValidationError as exc:
                raise DecodingError(expected, strategy, exc) from exc
        case DecodeStrategy.JSON_TEXT:
            if not isinstance(raw, str):
                raise DecodingError(expected, strategy, TypeError("unexpected type, was expecting str"))
            try:
                return cast(T, _adapter(target).validate_json(raw))
            except ValidationError as exc:
                raise DecodingError(expected, strategy, exc) from exc
        case DecodeStrategy.PRIMITIVE:
            return cast(T, _cast_primitive(raw, target, expected))
        case DecodeStrategy.ENUM_FROM_PRIMITIVE:
            if isinstance(raw, bool) or not isinstance(raw, (int, str)):
                raise DecodingError(expected, strategy, TypeError("unexpected type, was expecting int or str"))
            if not (isinstance(target, type) and issubclass(target, Enum)):
                raise DecodingError(expected, strategy, TypeError("target is not an enum"))
            try:
                return cast(T, _adapter(target).validate_python(raw))
            except ValidationError as exc:
                raise DecodingError(expected, strategy, exc) from exc
    raise DecodingError(expected, str(strategy), ValueError("unknown strategy"))


def _cast_primitive(raw: Any, target: Any, expected: str) -> Any:
    strategy = DecodeStrategy.PRIMITIVE
    if not isinstance(target, type):
        raise DecodingError(expected, strategy, TypeError("type casting needs a concrete type"))
    if target is bool:
        if isinstance(raw, bool):
            return raw
    elif target is int:
        if isinstance(raw, int) and not isinstance(raw, bool):
            return raw
        # JS numbers may arrive as whole floats.
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
    elif target is float:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
    elif isinstance(raw, target):
        return raw
    raise DecodingError(expected, strategy, TypeError(f"failed to cast {type(raw).__name__} to {expected}"))
