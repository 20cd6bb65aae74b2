"""Field validation and normalization helpers for supplier catalog data.

The strict helpers raise ``ValidationError``; the transformer catches it,
records an issue and stores ``None`` for the field instead of dropping the
whole row.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

VALID_EAN_LENGTHS = (8, 12, 13, 14)

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_HOSTNAME_RE = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$",
    re.IGNORECASE,
)
_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_TAG_RE = re.compile(r"</?script\b[^>]*>", re.IGNORECASE)

TRUE_VALUES = {"true", "1", "yes", "y", "t"}


class ValidationError(Exception):
    """Raised when a single field value fails validation."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        self.field = field
        self.value = value
        super().__init__(message)


@dataclass
class UrlCheck:
    """Outcome of URL validation.

    Attributes:
        url: The normalized URL
        warning: Set when the URL is accepted but not served over HTTPS
    """

    url: str
    warning: str | None = None


def extract_text(node: Any) -> str | None:
    """Extract the text content of a parsed XML node.

    Accepts plain strings, numbers and ``{"_": text, ...attrs}`` nodes
    produced for elements carrying both attributes and text. Lists yield
    their first non-empty entry.

    Args:
        node: Parsed node value.

    Returns:
        Stripped text, or None when there is none.
    """
    if node is None:
        return None
    if isinstance(node, str):
        text = node.strip()
        return text or None
    if isinstance(node, bool):
        return str(node).lower()
    if isinstance(node, int | float):
        return str(node)
    if isinstance(node, dict):
        return extract_text(node.get("_"))
    if isinstance(node, list):
        for item in node:
            text = extract_text(item)
            if text:
                return text
    return None


def to_bool(value: Any) -> bool:
    """Interpret a flag value from the feed ("true", "1", "yes", ...)."""
    if isinstance(value, bool):
        return value
    text = extract_text(value)
    return text is not None and text.lower() in TRUE_VALUES


def clean_ean(value: Any) -> str:
    """Validate an EAN/GTIN barcode.

    Non-digit characters are stripped. Only lengths 8, 12, 13 and 14 are
    accepted, and 13-digit codes must carry a correct EAN-13 check digit.

    Args:
        value: Raw barcode value.

    Returns:
        The digits-only barcode.

    Raises:
        ValidationError: If the value is empty, has the wrong length or a
            bad check digit.
    """
    text = extract_text(value)
    if text is None:
        raise ValidationError("ean", value, "EAN is empty")

    digits = re.sub(r"\D", "", text)
    if len(digits) not in VALID_EAN_LENGTHS:
        raise ValidationError("ean", value, f"Invalid EAN length {len(digits)}: {text!r}")

    if len(digits) == 13 and ean13_check_digit(digits[:12]) != int(digits[12]):
        raise ValidationError("ean", value, f"Invalid EAN-13 check digit: {text!r}")

    return digits


def ean13_check_digit(first_twelve: str) -> int:
    """Compute the EAN-13 check digit for the first 12 digits."""
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(first_twelve))
    return (10 - total % 10) % 10


def validate_ean(value: Any) -> str | None:
    """Lenient EAN validation: the cleaned barcode, or None if invalid."""
    try:
        return clean_ean(value)
    except ValidationError:
        return None


def check_url(value: Any) -> UrlCheck:
    """Validate and normalize a URL.

    The value is trimmed and ``https://`` is prepended when no scheme is
    present. The host must look like a domain name (or ``localhost``).
    Plain ``http`` URLs are accepted with a warning.

    Args:
        value: Raw URL value.

    Returns:
        UrlCheck with the normalized URL and an optional warning.

    Raises:
        ValidationError: If the value cannot be used as a web URL.
    """
    text = extract_text(value)
    if text is None:
        raise ValidationError("url", value, "URL is empty")
    if any(ch.isspace() for ch in text):
        raise ValidationError("url", value, f"URL contains whitespace: {text!r}")

    if not _SCHEME_RE.match(text):
        text = f"https://{text.lstrip('/')}"

    try:
        parts = urlsplit(text)
        hostname = parts.hostname
        port = parts.port
    except ValueError as e:
        raise ValidationError("url", value, f"Malformed URL: {text!r}") from e

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        raise ValidationError("url", value, f"Unsupported URL scheme {scheme!r}")
    if port == 0:
        raise ValidationError("url", value, f"Invalid URL port: {text!r}")
    if not hostname or not (hostname == "localhost" or _HOSTNAME_RE.match(hostname)):
        raise ValidationError("url", value, f"Invalid URL host: {text!r}")

    warning = None
    if scheme != "https":
        warning = f"URL is not served over HTTPS: {text}"
    return UrlCheck(url=text, warning=warning)


def validate_url(value: Any) -> str | None:
    """Lenient URL validation: the normalized URL, or None if invalid."""
    try:
        return check_url(value).url
    except ValidationError:
        return None


def normalize_number(value: Any, field: str = "number") -> float | None:
    """Coerce a numeric feed value to float.

    Both comma and dot decimal separators are accepted.

    Args:
        value: Raw value.
        field: Field name used in the error.

    Returns:
        The float value, or None when the value is missing or empty.

    Raises:
        ValidationError: If a non-empty value is not a number.
    """
    if isinstance(value, bool):
        raise ValidationError(field, value, f"Invalid number: {value!r}")
    if isinstance(value, int | float):
        return float(value)

    text = extract_text(value)
    if text is None:
        return None

    try:
        return float(text.replace(" ", "").replace(",", "."))
    except ValueError as e:
        raise ValidationError(field, value, f"Invalid number: {text!r}") from e


def parse_int(value: Any, field: str = "integer", default: int | None = None) -> int | None:
    """Coerce a feed value to int, truncating decimals.

    Raises:
        ValidationError: If a non-empty value is not a number.
    """
    number = normalize_number(value, field)
    if number is None:
        return default
    return int(number)


def sanitize_html(value: Any) -> str | None:
    """Remove ``<script>`` blocks (and stray script tags) from HTML text."""
    text = extract_text(value)
    if text is None:
        return None
    text = _SCRIPT_BLOCK_RE.sub("", text)
    text = _SCRIPT_TAG_RE.sub("", text)
    return text.strip() or None


def slugify(value: str) -> str:
    """Build a URL-safe slug: lowercase, dashes for whitespace and underscores."""
    slug = value.strip().lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^\w-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-_")


def segment_slug(segment: str) -> str:
    """Slug for one category path segment, never empty.

    Segments without any slug-able characters fall back to ``cat`` plus the
    first 8 hex characters of the SHA-1 of the raw segment.
    """
    slug = slugify(segment)
    if slug:
        return slug
    digest = hashlib.sha1(segment.encode("utf-8")).hexdigest()
    return f"cat{digest[:8]}"


def fit_identifier(value: str, limit: int) -> str:
    """Shorten an identifier to ``limit`` characters, keeping it unique.

    Over-long values keep their head and end in ``_`` plus the first 8 hex
    characters of the SHA-1 of the full value, so the result is stable and
    distinct identifiers stay distinct.
    """
    if len(value) <= limit:
        return value
    digest = hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]
    return f"{value[: limit - len(digest) - 1]}_{digest}"
