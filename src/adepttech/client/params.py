"""
Query-parameter encoding for typed request objects.

`encode_params()` turns a flat request record into the multi-map accepted by
`Instance.get()` (`{"key": ["value", ...]}`).

Supported inputs:
- objects with a `to_query_params()` method (preferred; the type decides its own encoding),
- dataclasses (name override via `field(metadata={"query": "q"})`, skip via `"-"`),
- pydantic models (name override via `serialization_alias` / `alias`, skip via `Field(exclude=True)`).

Value rules: strings are copied verbatim, ints and floats use `str()`, everything else
(bools, None, lists, dicts, nested models, datetimes, ...) becomes a compact JSON fragment.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Iterator, Mapping, Protocol, runtime_checkable

from pydantic import BaseModel
from pydantic_core import PydanticSerializationError, to_json


SKIP_FIELD = "-"
QUERY_METADATA_KEY = "query"


@runtime_checkable
class QueryParamsEncodable(Protocol):
    def to_query_params(self) -> Mapping[str, Any]: ...


def _format_value(key: str, value: Any) -> str:
    if isinstance(value, str):
        return value
    # bool is an int subclass but is encoded as JSON (`true`/`false`).
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    try:
        return to_json(value).decode("utf-8")
    except PydanticSerializationError as exc:
        raise TypeError(
            f"cannot encode query parameter {key!r} of type {type(value).__name__}"
        ) from exc


def _dataclass_fields(obj: Any) -> Iterator[tuple[str, Any]]:
    for field in dataclasses.fields(obj):
        key = field.name
        tag = field.metadata.get(QUERY_METADATA_KEY)
        if tag:
            if tag == SKIP_FIELD:
                continue
            key = tag.split(",", 1)[0] or field.name
        yield key, getattr(obj, field.name)


def _model_fields(obj: BaseModel) -> Iterator[tuple[str, Any]]:
    for name, info in type(obj).model_fields.items():
        if info.exclude:
            continue
        key = info.serialization_alias or info.alias or name
        if key == SKIP_FIELD:
            continue
        yield key, getattr(obj, name)


def _explicit_fields(obj: QueryParamsEncodable) -> Iterator[tuple[str, Any]]:
    for key, value in obj.to_query_params().items():
        if isinstance(value, (list, tuple)):
            for item in value:
                yield key, item
        else:
            yield key, value


def encode_params(obj: Any) -> dict[str, list[str]]:
    """Encode a request record as query parameters.

    Raises:
        TypeError: If `obj` is not a supported record, or a field value cannot be serialized.
    """
    if isinstance(obj, QueryParamsEncodable):
        fields = _explicit_fields(obj)
    elif isinstance(obj, BaseModel):
        fields = _model_fields(obj)
    elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        fields = _dataclass_fields(obj)
    else:
        raise TypeError(f"cannot encode {type(obj).__name__} as query parameters")

    values: dict[str, list[str]] = {}
    for key, value in fields:
        values.setdefault(key, []).append(_format_value(key, value))
    return values
