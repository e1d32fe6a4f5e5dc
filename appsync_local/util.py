"""
Resolver Utility Namespace.

The `ctx.util` object handed to resolver code. Helpers are side-effect free
except for the two pieces of per-invocation bookkeeping: errors recorded by
append_error() and response headers added through util.http.

Groups:
- ID generation: auto_id, auto_ulid, auto_ksuid
- Errors: error, append_error, unauthorized
- Encoding: base64, url, JavaScript string escaping
- Null/blank defaulting and type inspection
- time: ISO-8601 / epoch / Java-style formatted timestamps
- dynamodb: native value -> attribute value marshalling
- str, math: string and numeric helpers
- transform: JSON serialization and expression builders
- http: response header bookkeeping
- xml: XML -> map / JSON
"""

from __future__ import annotations

import base64
import json
import math as _math
import random
import re
import secrets
import time as _time
import unicodedata
import uuid
import xml.etree.ElementTree as ElementTree
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from urllib.parse import quote, unquote
from zoneinfo import ZoneInfo

from .errors import UserResolverError

_CROCKFORD32 = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_BASE62 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
_KSUID_EPOCH = 1_400_000_000

_AUTH_TYPE_LABELS = {
    "API_KEY": "API Key Authorization",
    "AWS_IAM": "IAM Authorization",
    "AMAZON_COGNITO_USER_POOLS": "User Pool Authorization",
    "OPENID_CONNECT": "Open ID Connect Authorization",
    "AWS_LAMBDA": "Lambda Authorization",
}


# =============================================================================
# Time
# =============================================================================

# Java-style pattern tokens, longest first
_FORMAT_TOKENS = re.compile(r"yyyy|yy|MM|dd|HH|mm|ss|SSS|Z")

_STRPTIME_TOKENS = {
    "yyyy": "%Y",
    "yy": "%y",
    "MM": "%m",
    "dd": "%d",
    "HH": "%H",
    "mm": "%M",
    "ss": "%S",
    "SSS": "%f",
    "Z": "%z",
}


def _zone(tz: str | None) -> timezone | ZoneInfo:
    return ZoneInfo(tz) if tz else timezone.utc


def _format_datetime(dt: datetime, fmt: str) -> str:
    def _token(match: re.Match[str]) -> str:
        token = match.group(0)
        if token == "yyyy":
            return f"{dt.year:04d}"
        if token == "yy":
            return f"{dt.year % 100:02d}"
        if token == "MM":
            return f"{dt.month:02d}"
        if token == "dd":
            return f"{dt.day:02d}"
        if token == "HH":
            return f"{dt.hour:02d}"
        if token == "mm":
            return f"{dt.minute:02d}"
        if token == "ss":
            return f"{dt.second:02d}"
        if token == "SSS":
            return f"{dt.microsecond // 1000:03d}"
        return dt.strftime("%z")

    return _FORMAT_TOKENS.sub(_token, fmt)


def _iso8601(dt: datetime) -> str:
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _from_epoch_ms(epoch: int, tz: timezone | ZoneInfo = timezone.utc) -> datetime:
    seconds, millis = divmod(int(epoch), 1000)
    return datetime.fromtimestamp(seconds, tz=tz) + timedelta(milliseconds=millis)


class TimeUtil:
    """util.time helpers. Timestamps default to UTC."""

    def now_iso8601(self) -> str:
        return _iso8601(datetime.now(timezone.utc))

    def now_epoch_seconds(self) -> int:
        return int(_time.time())

    def now_epoch_milli_seconds(self) -> int:
        return int(_time.time() * 1000)

    def now_formatted(self, fmt: str, tz: str | None = None) -> str:
        return _format_datetime(datetime.now(_zone(tz)), fmt)

    def parse_iso8601_to_epoch_milli_seconds(self, date: str) -> int:
        if date.endswith("Z"):
            date = date[:-1] + "+00:00"
        dt = datetime.fromisoformat(date)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return _epoch_ms(dt)

    def parse_formatted_to_epoch_milli_seconds(
        self,
        date: str,
        fmt: str,
        tz: str | None = None,
    ) -> int:
        pattern = _FORMAT_TOKENS.sub(lambda m: _STRPTIME_TOKENS[m.group(0)], fmt)
        dt = datetime.strptime(date, pattern)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=_zone(tz))
        return _epoch_ms(dt)

    def epoch_milli_seconds_to_seconds(self, epoch: int) -> int:
        return int(epoch // 1000)

    def epoch_milli_seconds_to_iso8601(self, epoch: int) -> str:
        return _iso8601(_from_epoch_ms(epoch))

    def epoch_milli_seconds_to_formatted(self, epoch: int, fmt: str, tz: str | None = None) -> str:
        return _format_datetime(_from_epoch_ms(epoch, _zone(tz)), fmt)


# =============================================================================
# DynamoDB marshalling
# =============================================================================


def _number_str(value: int | float | Decimal) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_attribute_value(value: Any) -> Any:
    """Marshal a native value into the tagged attribute-value encoding."""
    if value is None:
        return {"NULL": True}
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, (int, float, Decimal)):
        return {"N": _number_str(value)}
    if isinstance(value, bytes):
        return {"B": base64.b64encode(value).decode("ascii")}
    if isinstance(value, (set, frozenset)):
        items = list(value)
        if items and all(isinstance(v, str) for v in items):
            return {"SS": items}
        if items and all(isinstance(v, (int, float, Decimal)) for v in items):
            return {"NS": [_number_str(v) for v in items]}
        return {"L": [to_attribute_value(v) for v in items]}
    if isinstance(value, (list, tuple)):
        return {"L": [to_attribute_value(v) for v in value]}
    if isinstance(value, dict):
        return {"M": {k: to_attribute_value(v) for k, v in value.items()}}
    return value


class DynamoDBUtil:
    """util.dynamodb helpers."""

    def to_dynamodb(self, value: Any) -> Any:
        return to_attribute_value(value)

    def to_map_values(self, value: dict[str, Any]) -> dict[str, Any]:
        return {k: to_attribute_value(v) for k, v in value.items()}

    def to_string(self, value: str) -> dict[str, str]:
        return {"S": value}

    def to_string_set(self, values: list[str]) -> dict[str, list[str]]:
        return {"SS": list(values)}

    def to_number(self, value: int | float) -> dict[str, str]:
        return {"N": _number_str(value)}

    def to_number_set(self, values: list[int | float]) -> dict[str, list[str]]:
        return {"NS": [_number_str(v) for v in values]}

    def to_binary(self, value: str) -> dict[str, str]:
        return {"B": value}

    def to_binary_set(self, values: list[str]) -> dict[str, list[str]]:
        return {"BS": list(values)}

    def to_boolean(self, value: bool) -> dict[str, bool]:
        return {"BOOL": value}

    def to_null(self) -> dict[str, bool]:
        return {"NULL": True}

    def to_list(self, values: list[Any]) -> dict[str, list[Any]]:
        return {"L": [to_attribute_value(v) for v in values]}

    def to_map(self, value: dict[str, Any]) -> dict[str, dict[str, Any]]:
        return {"M": {k: to_attribute_value(v) for k, v in value.items()}}

    def to_s3_object(self, key: str, bucket: str, region: str, version: str | None = None) -> dict[str, str]:
        s3: dict[str, str] = {"key": key, "bucket": bucket, "region": region}
        if version is not None:
            s3["version"] = version
        return {"S": json.dumps({"s3": s3}, separators=(",", ":"))}

    def from_s3_object_json(self, s3_string: str) -> dict[str, Any]:
        parsed = json.loads(s3_string)
        return parsed.get("s3", parsed)


# =============================================================================
# Strings and math
# =============================================================================


class StrUtil:
    def to_upper(self, value: str) -> str:
        return value.upper()

    def to_lower(self, value: str) -> str:
        return value.lower()

    def to_replace(self, value: str, substr: str, replacement: str) -> str:
        return value.replace(substr, replacement, 1)

    def normalize(self, value: str, form: str) -> str:
        return unicodedata.normalize(form, value)


class MathUtil:
    def round_num(self, num: float, precision: int = 0) -> float:
        # half-up rounding, not banker's rounding
        factor = 10**precision
        return _math.floor(num * factor + 0.5) / factor

    def min_val(self, nums: list[float]) -> float:
        return min(nums)

    def max_val(self, nums: list[float]) -> float:
        return max(nums)

    def random_double(self) -> float:
        return random.random()

    def random_within_range(self, low: float, high: float) -> float:
        return random.random() * (high - low) + low


# =============================================================================
# Transform / expression builders
# =============================================================================

_COMPARISONS = {
    "eq": "=",
    "ne": "<>",
    "lt": "<",
    "le": "<=",
    "gt": ">",
    "ge": ">=",
}


def build_expression(conditions: dict[str, Any], name_prefix: str = "#f") -> dict[str, Any]:
    """
    Turn a declarative filter/condition object into an expression triple.

    Each field gets a name placeholder; each operand gets a value
    placeholder. Fields are combined with an implicit AND. A plain value
    (not an operator mapping) means equality.

    Example:
        build_expression({"status": {"eq": "OPEN"}, "count": {"between": [1, 5]}})
        -> {"expression": "#f0 = :v0 AND #f1 BETWEEN :v1 AND :v2", ...}
    """
    expressions: list[str] = []
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    counter = 0

    def _value(operand: Any) -> str:
        nonlocal counter
        key = f":v{counter}"
        counter += 1
        values[key] = operand
        return key

    for field_name, condition in conditions.items():
        name_key = f"{name_prefix}{len(names)}"
        names[name_key] = field_name

        if not isinstance(condition, dict):
            expressions.append(f"{name_key} = {_value(condition)}")
            continue

        for op, operand in condition.items():
            if op in _COMPARISONS:
                expressions.append(f"{name_key} {_COMPARISONS[op]} {_value(operand)}")
            elif op == "contains":
                expressions.append(f"contains({name_key}, {_value(operand)})")
            elif op == "notContains":
                expressions.append(f"NOT contains({name_key}, {_value(operand)})")
            elif op == "beginsWith":
                expressions.append(f"begins_with({name_key}, {_value(operand)})")
            elif op == "between":
                if not isinstance(operand, (list, tuple)) or len(operand) != 2:
                    raise UserResolverError(
                        f"'between' on '{field_name}' needs exactly two values"
                    )
                low, high = _value(operand[0]), _value(operand[1])
                expressions.append(f"{name_key} BETWEEN {low} AND {high}")
            elif op == "in":
                if not isinstance(operand, (list, tuple)) or not operand:
                    raise UserResolverError(f"'in' on '{field_name}' needs at least one value")
                keys = ", ".join(_value(v) for v in operand)
                expressions.append(f"{name_key} IN ({keys})")
            elif op == "attributeExists":
                fn = "attribute_exists" if operand else "attribute_not_exists"
                expressions.append(f"{fn}({name_key})")
            elif op == "attributeType":
                expressions.append(f"attribute_type({name_key}, {_value(operand)})")
            else:
                raise UserResolverError(f"Unsupported operator '{op}' on '{field_name}'")

    return {
        "expression": " AND ".join(expressions),
        "expressionNames": names,
        "expressionValues": values,
    }


class TransformUtil:
    def to_json(self, value: Any) -> str:
        return json.dumps(value, separators=(",", ":"), default=str)

    def to_json_pretty(self, value: Any) -> str:
        return json.dumps(value, indent=2, default=str)

    def to_subscription_filter(self, filter_obj: dict[str, Any]) -> dict[str, Any]:
        """Normalize {field: value} shorthand into {field: {"eq": value}}."""
        result: dict[str, Any] = {}
        for key, value in filter_obj.items():
            result[key] = value if isinstance(value, dict) else {"eq": value}
        return result

    def to_dynamodb_filter_expression(self, filter_obj: dict[str, Any]) -> dict[str, Any]:
        return build_expression(filter_obj, name_prefix="#f")

    def to_dynamodb_condition_expression(self, condition: dict[str, Any]) -> dict[str, Any]:
        return build_expression(condition, name_prefix="#c")


# =============================================================================
# HTTP and XML
# =============================================================================


class HttpUtil:
    """util.http helpers. Response headers live for one invocation."""

    def __init__(self) -> None:
        self.response_headers: dict[str, str] = {}

    def copy_headers(self, headers: dict[str, str]) -> dict[str, str]:
        return dict(headers)

    def add_response_header(self, key: str, value: str) -> None:
        self.response_headers[key] = value

    def add_response_headers(self, headers: dict[str, str]) -> None:
        self.response_headers.update(headers)


def _element_to_value(element: ElementTree.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or "").strip()

    mapped: dict[str, Any] = {}
    for child in children:
        value = _element_to_value(child)
        if child.tag in mapped:
            existing = mapped[child.tag]
            if isinstance(existing, list):
                existing.append(value)
            else:
                mapped[child.tag] = [existing, value]
        else:
            mapped[child.tag] = value
    return mapped


class XmlUtil:
    def to_map(self, xml: str) -> dict[str, Any]:
        try:
            root = ElementTree.fromstring(xml)
        except ElementTree.ParseError as e:
            raise UserResolverError(f"Invalid XML: {e}") from e
        return {root.tag: _element_to_value(root)}

    def to_json_string(self, xml: str) -> str:
        return json.dumps(self.to_map(xml), separators=(",", ":"))


# =============================================================================
# IDs
# =============================================================================


def generate_ulid() -> str:
    """26-char ULID: 48-bit millisecond timestamp + 80 random bits, Crockford base32."""
    value = (int(_time.time() * 1000) << 80) | secrets.randbits(80)
    chars = []
    for _ in range(26):
        chars.append(_CROCKFORD32[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def generate_ksuid() -> str:
    """27-char KSUID: 32-bit timestamp + 128 random bits, base62."""
    payload = (int(_time.time()) - _KSUID_EPOCH).to_bytes(4, "big") + secrets.token_bytes(16)
    value = int.from_bytes(payload, "big")
    chars = []
    while value:
        value, rem = divmod(value, 62)
        chars.append(_BASE62[rem])
    return "".join(reversed(chars)).rjust(27, "0")


# =============================================================================
# util
# =============================================================================


class Util:
    """
    The `ctx.util` namespace.

    Args:
        auth_type: Auth method that produced the caller identity, used by
            auth_type(). Defaults to API key authorization.
    """

    def __init__(self, auth_type: str | None = None):
        self._auth_type = auth_type
        self.errors: list[dict[str, Any]] = []

        self.time = TimeUtil()
        self.dynamodb = DynamoDBUtil()
        self.str = StrUtil()
        self.math = MathUtil()
        self.transform = TransformUtil()
        self.http = HttpUtil()
        self.xml = XmlUtil()

    # ==================== Errors ====================

    def error(
        self,
        message: str,
        error_type: str | None = None,
        data: Any = None,
        error_info: dict[str, Any] | None = None,
    ):
        """Abort the current handler with a field error."""
        raise UserResolverError(message, error_type, data, error_info)

    def append_error(
        self,
        message: str,
        error_type: str | None = None,
        data: Any = None,
        error_info: dict[str, Any] | None = None,
    ) -> None:
        """Record an error without aborting the handler."""
        self.errors.append(
            {"message": message, "type": error_type, "data": data, "errorInfo": error_info}
        )

    def unauthorized(self):
        raise UserResolverError("Unauthorized", "Unauthorized")

    # ==================== IDs ====================

    def auto_id(self) -> str:
        return str(uuid.uuid4())

    def auto_ulid(self) -> str:
        return generate_ulid()

    def auto_ksuid(self) -> str:
        return generate_ksuid()

    # ==================== Encoding ====================

    def base64_encode(self, data: str) -> str:
        return base64.b64encode(data.encode("utf-8")).decode("ascii")

    def base64_decode(self, data: str) -> str:
        return base64.b64decode(data).decode("utf-8")

    def url_encode(self, data: str) -> str:
        # matches encodeURIComponent
        return quote(data, safe="-_.!~*'()")

    def url_decode(self, data: str) -> str:
        return unquote(data)

    def escape_javascript(self, data: str) -> str:
        return (
            data.replace("\\", "\\\\")
            .replace("'", "\\'")
            .replace('"', '\\"')
            .replace("\n", "\\n")
            .replace("\r", "\\r")
            .replace("\t", "\\t")
        )

    def matches(self, pattern: str, data: str) -> bool:
        return re.search(pattern, data) is not None

    def auth_type(self) -> str:
        return _AUTH_TYPE_LABELS.get(self._auth_type or "API_KEY", "API Key Authorization")

    # ==================== Null / blank ====================

    def is_null(self, value: Any) -> bool:
        return value is None

    def is_null_or_empty(self, value: Any) -> bool:
        return value is None or value == "" or (isinstance(value, (list, tuple)) and not value)

    def is_null_or_blank(self, value: Any) -> bool:
        return value is None or (isinstance(value, str) and not value.strip())

    def default_if_null(self, value: Any, default: Any) -> Any:
        return default if value is None else value

    def default_if_null_or_empty(self, value: Any, default: Any) -> Any:
        return default if self.is_null_or_empty(value) else value

    def default_if_null_or_blank(self, value: Any, default: Any) -> Any:
        return default if self.is_null_or_blank(value) else value

    # ==================== Types ====================

    def type_of(self, value: Any) -> str:
        if value is None:
            return "Null"
        if isinstance(value, bool):
            return "Boolean"
        if isinstance(value, (list, tuple)):
            return "List"
        if isinstance(value, dict):
            return "Map"
        if isinstance(value, str):
            return "String"
        if isinstance(value, (int, float, Decimal)):
            return "Number"
        return type(value).__name__.capitalize()
