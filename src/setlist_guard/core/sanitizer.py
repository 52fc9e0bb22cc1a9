"""
Log and audit sanitization.

Every caller-influenced string crosses this module before it reaches a log
line, a structlog event or the audit store. The public functions are total
(they never raise) and idempotent: ``f(f(x)) == f(x)``.

- sanitize_message: escape control characters, redact secrets, cap length
- sanitize_user_id: allow-listed character class, capped length
- sanitize_ip_address: validated literal with privacy masking
- sanitize_value: structured data, visited over a closed set of shapes
"""

import dataclasses
import ipaddress
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

PLACEHOLDER = "unknown"
REDACTED = "[REDACTED]"
TRUNCATION_MARKER = "[TRUNCATED]"
MAX_DEPTH_MARKER = "[MAX_DEPTH]"
UNSUPPORTED_MARKER = "[UNSUPPORTED]"

DEFAULT_MAX_MESSAGE_LENGTH = 1000
MAX_USER_ID_LENGTH = 128
MAX_KEY_LENGTH = 64
MAX_COLLECTION_ITEMS = 100
MAX_DEPTH = 4

# C0, DEL, C1, Unicode line/paragraph separators, lone surrogates
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f\u2028\u2029\ud800-\udfff]")
_NAMED_ESCAPES = {"\r": "\\r", "\n": "\\n", "\t": "\\t"}

_USER_ID_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9._@+\-]")

# A redacted value never starts with "[", so markers are never re-redacted.
_VALUE = r"""["']?(?P<value>[^\s"';,}\[][^\s"';,}]*)"""

_BEARER_RE = re.compile(r"(?P<prefix>\bbearer\s+)(?P<value>[A-Za-z0-9._~+/=\-]+)", re.IGNORECASE)
_KEYWORD_RE = re.compile(
    r"(?P<prefix>(?:password|passwd|token|secret|api[_\-]?key|authorization)"
    r"\s*[:=]\s*)" + _VALUE,
    re.IGNORECASE,
)
_EMAIL_RE = re.compile(
    r"(?<![@\w.%+\-])[A-Za-z0-9._%+\-]+@(?P<domain>[A-Za-z0-9.\-]+\.[A-Za-z]{2,})\b"
)
_SSN_RE = re.compile(r"(?<![\d\-])\d{3}-\d{2}-\d{4}(?![\d\-])")
_CARD_RE = re.compile(r"(?<!\d)\d{4}[\- ]?\d{4}[\- ]?\d{4}[\- ]?\d{4}(?!\d)")

_SENSITIVE_FIELDS = (
    "password", "passwd", "token", "secret", "apikey", "api_key", "private_key",
    "authorization", "bearer", "jwt", "sessionid", "session_id", "cookie",
    "csrf", "antiforgery",
)


# ── Strings ─────────────────────────────────────────────────────────


def _escape_control(match: "re.Match") -> str:
    char = match.group(0)
    if char in _NAMED_ESCAPES:
        return _NAMED_ESCAPES[char]
    code = ord(char)
    if code <= 0xFF:
        return f"\\x{code:02x}"
    return f"\\u{code:04x}"


def _coerce_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    try:
        return str(value)
    except Exception:
        return None


def contains_injection(value: Any) -> bool:
    """True when a raw string carries CR/LF, ANSI or other control content."""
    text = _coerce_text(value)
    return bool(text and _CONTROL_RE.search(text))


def redact_sensitive(text: str) -> str:
    """Mask credentials and personal data patterns inside free text."""
    text = _BEARER_RE.sub(lambda m: m.group("prefix") + REDACTED, text)
    text = _KEYWORD_RE.sub(
        lambda m: m.group(0)[: m.start("value") - m.start(0)] + REDACTED, text
    )
    text = _EMAIL_RE.sub(lambda m: REDACTED + "@" + m.group("domain"), text)
    text = _SSN_RE.sub(REDACTED, text)
    text = _CARD_RE.sub(REDACTED, text)
    return text


def _cap(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    keep = max(max_length - len(TRUNCATION_MARKER), 0)
    return text[:keep] + TRUNCATION_MARKER


def sanitize_message(message: Any, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """
    Neutralize a free-text message for logging (CWE-117).

    Control characters are escaped (``\\n``, ``\\x1b`` ...), secrets are
    redacted and the result is capped at ``max_length``. Empty or
    unrepresentable input yields ``PLACEHOLDER``.
    """
    text = _coerce_text(message)
    if not text:
        return PLACEHOLDER

    # Bound the work done on oversized input; the result is capped anyway.
    text = _CONTROL_RE.sub(_escape_control, text[: max_length * 8])
    # Redaction and capping can each expose a new match for the other, so run
    # them to a fixed point. Two rounds settle any realistic input.
    for _ in range(4):
        settled = _cap(redact_sensitive(text), max_length)
        if settled == text:
            break
        text = settled

    if not text.strip():
        return PLACEHOLDER
    return text


def sanitize_user_id(user_id: Any) -> str:
    """Restrict a user id to ``[A-Za-z0-9._@+-]``; anything else becomes ``_``."""
    text = _coerce_text(user_id)
    if not text:
        return PLACEHOLDER
    text = _USER_ID_DISALLOWED_RE.sub("_", text)[:MAX_USER_ID_LENGTH]
    return text or PLACEHOLDER


def sanitize_ip_address(ip_address: Any) -> str:
    """
    Validate and privacy-mask an IP literal.

    IPv4 keeps the first three octets (``203.0.113.45`` -> ``203.0.113.0``).
    IPv6 keeps the /64 network prefix and drops the interface identifier
    (``2001:db8:85a3::8a2e:370:7334`` -> ``2001:db8:85a3::``). An IPv4-mapped
    IPv6 address is masked as the IPv4 address it carries.
    """
    text = _coerce_text(ip_address)
    if not text:
        return PLACEHOLDER

    text = _CONTROL_RE.sub("", text).strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    text = text.split("%", 1)[0]

    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        return PLACEHOLDER

    if address.version == 6 and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    if address.version == 4:
        network = ipaddress.ip_network(f"{address}/24", strict=False)
    else:
        network = ipaddress.ip_network(f"{address}/64", strict=False)
    return str(network.network_address)


def is_sensitive_field(field_name: Any) -> bool:
    """Check if a field/key name indicates sensitive data."""
    if not isinstance(field_name, str) or not field_name:
        return False
    normalized = field_name.lower().replace("-", "_")
    return any(marker in normalized for marker in _SENSITIVE_FIELDS)


# ── Structured values ───────────────────────────────────────────────


class ValueShape(Enum):
    """The closed set of shapes the structured sanitizer understands."""
    NULL = "null"
    PRIMITIVE = "primitive"
    STRING = "string"
    TIMESTAMP = "timestamp"
    ENUM = "enum"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    RECORD = "record"
    UNSUPPORTED = "unsupported"


def classify(value: Any) -> ValueShape:
    if value is None:
        return ValueShape.NULL
    # str-valued enums are also str, so the enum check comes first
    if isinstance(value, Enum):
        return ValueShape.ENUM
    if isinstance(value, (bool, int, float)):
        return ValueShape.PRIMITIVE
    if isinstance(value, str):
        return ValueShape.STRING
    if isinstance(value, (datetime, date)):
        return ValueShape.TIMESTAMP
    if isinstance(value, (list, tuple)):
        return ValueShape.SEQUENCE
    if isinstance(value, Mapping):
        return ValueShape.MAPPING
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return ValueShape.RECORD
    return ValueShape.UNSUPPORTED


def _visit_pairs(pairs, depth: int, max_length: int) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for index, (key, item) in enumerate(pairs):
        if index >= MAX_COLLECTION_ITEMS:
            result[TRUNCATION_MARKER] = TRUNCATION_MARKER
            break
        safe_key = sanitize_message(key, max_length=MAX_KEY_LENGTH)
        if is_sensitive_field(safe_key):
            result[safe_key] = REDACTED
        else:
            result[safe_key] = _visit(item, depth + 1, max_length)
    return result


def _visit(value: Any, depth: int, max_length: int) -> Any:
    shape = classify(value)

    if shape is ValueShape.NULL:
        return None
    if shape is ValueShape.PRIMITIVE:
        return value
    if shape is ValueShape.STRING:
        return sanitize_message(value, max_length=max_length)
    if shape is ValueShape.TIMESTAMP:
        return value.isoformat()
    if shape is ValueShape.ENUM:
        return sanitize_message(value.value, max_length=max_length)
    if shape is ValueShape.UNSUPPORTED:
        return UNSUPPORTED_MARKER

    if depth >= MAX_DEPTH:
        return MAX_DEPTH_MARKER

    if shape is ValueShape.SEQUENCE:
        items = [_visit(item, depth + 1, max_length) for item in value[:MAX_COLLECTION_ITEMS]]
        if len(value) > MAX_COLLECTION_ITEMS:
            items.append(TRUNCATION_MARKER)
        return items
    if shape is ValueShape.MAPPING:
        return _visit_pairs(value.items(), depth, max_length)

    # ValueShape.RECORD
    pairs = ((f.name, getattr(value, f.name)) for f in dataclasses.fields(value))
    return _visit_pairs(pairs, depth, max_length)


def sanitize_value(value: Any, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> Any:
    """
    Sanitize structured data for an audit context.

    Strings go through ``sanitize_message``; maps and dataclass records
    become plain dicts with sanitized keys and sensitive fields redacted;
    lists and tuples become lists. Anything outside the known shapes is
    replaced by ``[UNSUPPORTED]`` rather than introspected.
    """
    try:
        return _visit(value, 0, max_length)
    except Exception:
        return UNSUPPORTED_MARKER


def create_secure_log_entry(
    action: str,
    user_id: Optional[str],
    resource_type: Optional[str],
    resource_id: Optional[str],
    additional_data: Any = None,
) -> Dict[str, Any]:
    """Build a sanitized log entry with a fresh correlation id."""
    entry: Dict[str, Any] = {
        "action": sanitize_message(action),
        "user_id": sanitize_user_id(user_id),
        "resource_type": sanitize_message(resource_type),
        "resource_id": sanitize_message(resource_id) if resource_id is not None else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": uuid4().hex,
    }
    if additional_data is not None:
        entry["additional_data"] = sanitize_value(additional_data)
    return entry
