"""Input sanitization and validation for form fields.

``sanitize_*`` text helpers return a :class:`SanitizeResult`; the field
validators (email, name, phone, url) sanitize first and then validate,
returning a :class:`ValidationResult`.
"""

from __future__ import annotations

import html
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import bleach
from pydantic import AnyHttpUrl, EmailStr, TypeAdapter, ValidationError

BASIC_ALLOWED_TAGS = ["b", "i", "em", "strong", "u", "br", "p"]
STRICT_ALLOWED_TAGS: list[str] = []

_TAG_RE = re.compile(r"<[^>]*>")
_DANGEROUS_BLOCK_RE = re.compile(
    r"<(script|style|iframe|object|embed)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ALL_CONTROL_RE = re.compile(r"[\x00-\x1F\x7F]")
_WS_RE = re.compile(r"\s+")
_HSPACE_RE = re.compile(r"[^\S\n]+")
_STRICT_CHARS_RE = re.compile(r"[<>\"'&]")
_PUNCT_RUN_RE = re.compile(r"[!@#$%^&*()]{2,}")

NAME_RE = re.compile(r"^[a-zA-Z\s\-.']{1,100}$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]{7,20}$")

_email_adapter = TypeAdapter(EmailStr)
_url_adapter = TypeAdapter(AnyHttpUrl)


@dataclass
class SanitizeResult:
    original: str
    sanitized: str
    changed: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    is_valid: bool
    sanitized_value: str
    errors: list[str] = field(default_factory=list)


def _invalid_input(value: Any) -> Optional[SanitizeResult]:
    if isinstance(value, str) and value:
        return None
    return SanitizeResult(
        original=value if isinstance(value, str) else "",
        sanitized="",
        changed=False,
        errors=["Invalid input type"] if value else [],
    )


# ---------------------------------------------------------------------------
# Primitive helpers
# ---------------------------------------------------------------------------

def strip_html(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return _TAG_RE.sub("", value)


def escape_html(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return html.escape(value, quote=True).replace("/", "&#x2F;")


def unescape_html(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return html.unescape(value)


def normalize_whitespace(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return _WS_RE.sub(" ", value).strip()


def remove_control_characters(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return _ALL_CONTROL_RE.sub("", value)


def normalize_unicode(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return unicodedata.normalize("NFC", value)


# ---------------------------------------------------------------------------
# Sanitizers
# ---------------------------------------------------------------------------

def sanitize_html(value: str, level: str = "basic",
                  allowed_tags: Optional[list[str]] = None,
                  allowed_attributes: Optional[dict] = None) -> SanitizeResult:
    """Keep a small whitelist of formatting tags, strip everything else.

    Script, style and embedded-object blocks are dropped with their content.
    """
    invalid = _invalid_input(value)
    if invalid:
        return invalid

    if allowed_tags is None:
        allowed_tags = STRICT_ALLOWED_TAGS if level == "strict" else BASIC_ALLOWED_TAGS
    cleaned = _DANGEROUS_BLOCK_RE.sub("", value)
    sanitized = bleach.clean(
        cleaned,
        tags=allowed_tags,
        attributes=allowed_attributes or {},
        strip=True,
    )
    return SanitizeResult(
        original=value, sanitized=sanitized, changed=sanitized != value,
    )


def sanitize_text(value: str, level: str = "basic",
                  max_length: Optional[int] = None,
                  preserve_line_breaks: bool = False) -> SanitizeResult:
    """Reduce arbitrary input to plain, normalised text."""
    invalid = _invalid_input(value)
    if invalid:
        return invalid

    errors: list[str] = []
    sanitized = _TAG_RE.sub("", value)
    sanitized = unicodedata.normalize("NFC", sanitized)
    sanitized = _CONTROL_RE.sub("", sanitized)

    if preserve_line_breaks:
        lines = (_HSPACE_RE.sub(" ", line).strip()
                 for line in sanitized.replace("\r\n", "\n").split("\n"))
        sanitized = "\n".join(line for line in lines if line)
    else:
        sanitized = _WS_RE.sub(" ", sanitized).strip()

    if max_length and len(sanitized) > max_length:
        sanitized = sanitized[:max_length]
        errors.append(f"Input truncated to {max_length} characters")

    if level == "strict":
        sanitized = _STRICT_CHARS_RE.sub("", sanitized)
        sanitized = _PUNCT_RUN_RE.sub("", sanitized)

    return SanitizeResult(
        original=value, sanitized=sanitized,
        changed=sanitized != value, errors=errors,
    )


def is_valid_email(value: str) -> bool:
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


def is_valid_url(value: str) -> bool:
    try:
        _url_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


def is_valid_name(value: str) -> bool:
    return isinstance(value, str) and bool(NAME_RE.match(value))


def is_valid_phone(value: str) -> bool:
    return isinstance(value, str) and bool(PHONE_RE.match(value))


def sanitize_email(value: str, level: str = "strict",
                   max_length: Optional[int] = None,
                   preserve_line_breaks: bool = False) -> ValidationResult:
    # Always strict, whatever level the caller asked for
    text = sanitize_text(value, level="strict", max_length=max_length,
                         preserve_line_breaks=preserve_line_breaks)
    sanitized = text.sanitized.lower()
    if is_valid_email(sanitized):
        return ValidationResult(True, sanitized, text.errors)
    return ValidationResult(False, sanitized, text.errors + ["Invalid email format"])


def sanitize_name(value: str, level: str = "basic",
                  max_length: Optional[int] = None,
                  preserve_line_breaks: bool = False) -> ValidationResult:
    # Names are capped at 100 characters regardless of max_length
    text = sanitize_text(value, level=level, max_length=100,
                         preserve_line_breaks=preserve_line_breaks)
    sanitized = re.sub(r"[^a-zA-Z\s\-.']", "", text.sanitized)
    sanitized = _WS_RE.sub(" ", sanitized).strip()
    sanitized = re.sub(r"\b\w", lambda m: m.group(0).upper(), sanitized)
    if is_valid_name(sanitized):
        return ValidationResult(True, sanitized, text.errors)
    return ValidationResult(False, sanitized, text.errors + ["Invalid name format"])


def sanitize_phone(value: str, level: str = "strict",
                   max_length: Optional[int] = None,
                   preserve_line_breaks: bool = False) -> ValidationResult:
    text = sanitize_text(value, level="strict", max_length=max_length,
                         preserve_line_breaks=preserve_line_breaks)
    sanitized = re.sub(r"[^\d\s\-()+]", "", text.sanitized)
    sanitized = _WS_RE.sub(" ", sanitized).strip()
    if is_valid_phone(sanitized):
        return ValidationResult(True, sanitized, text.errors)
    return ValidationResult(False, sanitized, text.errors + ["Invalid phone format"])


def sanitize_url(value: str, level: str = "strict",
                 max_length: Optional[int] = None,
                 preserve_line_breaks: bool = False) -> ValidationResult:
    text = sanitize_text(value, level="strict", max_length=max_length,
                         preserve_line_breaks=preserve_line_breaks)
    sanitized = text.sanitized
    if sanitized and not re.match(r"^https?://", sanitized):
        sanitized = f"https://{sanitized}"
    if is_valid_url(sanitized):
        return ValidationResult(True, sanitized, text.errors)
    return ValidationResult(False, sanitized, text.errors + ["Invalid URL format"])


_SANITIZERS = {
    "html": sanitize_html,
    "text": sanitize_text,
    "email": sanitize_email,
    "name": sanitize_name,
    "phone": sanitize_phone,
    "url": sanitize_url,
}

HTML_OPTIONS = frozenset({"level", "allowed_tags", "allowed_attributes"})
TEXT_OPTIONS = frozenset({"level", "max_length", "preserve_line_breaks"})


def sanitize_input(value: str, kind: str = "text",
                   **options) -> Union[SanitizeResult, ValidationResult]:
    """Dispatch to the sanitizer for ``kind``; unknown kinds fall back to text.

    ``options`` is the shared option set (``level``, ``allowed_tags``,
    ``allowed_attributes``, ``max_length``, ``preserve_line_breaks``); each
    sanitizer receives the subset it understands.
    """
    unknown = set(options) - HTML_OPTIONS - TEXT_OPTIONS
    if unknown:
        raise TypeError(f"Unknown sanitize option(s): {', '.join(sorted(unknown))}")
    accepted = HTML_OPTIONS if kind == "html" else TEXT_OPTIONS
    sanitizer = _SANITIZERS.get(kind, sanitize_text)
    return sanitizer(value, **{k: v for k, v in options.items() if k in accepted})


def sanitize_object(data: dict, rules: dict[str, dict]) -> tuple[dict, dict, bool]:
    """Sanitize several fields at once.

    ``rules`` maps field name to ``{"type": kind, "options": {...}}``.
    Returns ``(sanitized, errors, is_valid)``; non-string values pass through.
    """
    sanitized: dict = {}
    errors: dict[str, list[str]] = {}
    is_valid = True

    for key, rule in rules.items():
        value = data.get(key)
        if not isinstance(value, str):
            sanitized[key] = value
            errors[key] = []
            continue
        result = sanitize_input(value, rule.get("type", "text"),
                                **rule.get("options", {}))
        errors[key] = result.errors
        if isinstance(result, ValidationResult):
            sanitized[key] = result.sanitized_value
            if not result.is_valid:
                is_valid = False
        else:
            sanitized[key] = result.sanitized

    return sanitized, errors, is_valid
