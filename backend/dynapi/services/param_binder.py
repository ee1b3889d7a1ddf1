"""
Parameter Binder

Maps an endpoint's declared parameters to values found in the request's path
captures, query string or JSON body, coercing each to its declared type.
"""
import json
import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Sequence

from dynapi.core.errors import MissingParameter, TypeMismatch, ValidationError
from dynapi.services.sql_template import BoundArgs

LOCATIONS = ("path", "query", "body")
TYPES = ("string", "number", "boolean")

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")

_TRUE = {"true"}
_FALSE = {"false"}


def parse_json_body(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Parse a request body for body-located parameters.

    An absent or blank body is treated as an empty object; anything that is
    not a JSON object is rejected.
    """
    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("Request body must be valid UTF-8 JSON")
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("Request body must be valid JSON")
    if not isinstance(raw, dict):
        raise ValidationError("Request body must be a JSON object")
    return raw


def _is_absent(location: str, value: Any) -> bool:
    # only an empty path segment stands in for a missing value
    return value is None or (location == "path" and value == "")


def coerce_number(name: str, raw: Any):
    """int for integral input, Decimal for other finite text, floats pass if finite."""
    if isinstance(raw, bool):
        raise TypeMismatch(name, "number")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if not math.isfinite(raw):
            raise TypeMismatch(name, "number")
        return raw
    if isinstance(raw, Decimal):
        if not raw.is_finite():
            raise TypeMismatch(name, "number")
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if _INTEGER_RE.match(text):
            return int(text)
        if _DECIMAL_RE.match(text):
            try:
                value = Decimal(text)
            except InvalidOperation:
                raise TypeMismatch(name, "number")
            if value.is_finite():
                return value
    raise TypeMismatch(name, "number")


def coerce_boolean(name: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise TypeMismatch(name, "boolean")


def coerce(name: str, declared_type: str, raw: Any) -> Any:
    if declared_type == "number":
        return coerce_number(name, raw)
    if declared_type == "boolean":
        return coerce_boolean(name, raw)
    if not isinstance(raw, str):
        raise TypeMismatch(name, "string")
    return raw


def bind(
    params: Sequence[Any],
    path_values: Optional[Mapping[str, Optional[str]]] = None,
    query: Optional[Mapping[str, Any]] = None,
    body: Optional[Mapping[str, Any]] = None,
) -> BoundArgs:
    """
    Bind declared parameters in declaration order.

    ``params`` are ParameterSpec-like objects with ``name``, ``location``,
    ``type`` and ``required``. ``body`` must already be a parsed object when
    any body-located parameter is declared.
    """
    sources = {
        "path": path_values or {},
        "query": query or {},
        "body": body,
    }

    names, values = [], []
    for spec in params:
        source = sources.get(spec.location)
        if spec.location == "body" and not isinstance(source, Mapping):
            raise ValidationError("Request body must be a JSON object")

        raw = source.get(spec.name) if source is not None else None
        if _is_absent(spec.location, raw):
            if spec.required:
                raise MissingParameter(spec.name)
            value = None
        else:
            value = coerce(spec.name, spec.type, raw)

        names.append(spec.name)
        values.append(value)

    return BoundArgs(names=names, values=values)
