"""
Input sanitization for payment requests.

Detects SQL injection, XSS and path traversal patterns in user-supplied
strings and makes values safe to write to logs.
"""
import re
import unicodedata
from typing import Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

SQL_INJECTION_PATTERNS = [
    re.compile(
        r"('|--|;|\||\*|%|\b(SELECT|INSERT|UPDATE|DELETE|CREATE|DROP|ALTER|EXEC|UNION|SCRIPT)\b)",
        re.IGNORECASE,
    ),
    re.compile(r"\b(OR|AND)\s+(\w+\s*=\s*\w+|\d+\s*=\s*\d+)", re.IGNORECASE),
    re.compile(r"'\s*(OR|AND)\s*'", re.IGNORECASE),
    re.compile(r"\b(EXEC|EXECUTE|SP_|XP_)\b", re.IGNORECASE),
    re.compile(r"\b(SCRIPT|JAVASCRIPT|VBSCRIPT)\b", re.IGNORECASE),
]

XSS_PATTERNS = [
    re.compile(r"<\s*(script|iframe|object|embed|link|meta|style)", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"on(click|load|error|focus|blur|change|submit)\s*=", re.IGNORECASE),
    re.compile(r"\beval\s*\(", re.IGNORECASE),
    re.compile(r"\balert\s*\(", re.IGNORECASE),
]

PATH_TRAVERSAL_PATTERNS = [
    re.compile(r"\.\.[\\/]"),
    re.compile(r"[\\/]etc[\\/]passwd"),
    re.compile(r"[\\/]proc[\\/]"),
    re.compile(r"[\\/](windows|winnt)[\\/]system32", re.IGNORECASE),
]

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
PHONE_SEPARATORS = re.compile(r"[\s\-()+.]")
PHONE_DIGITS = re.compile(r"^\d{7,15}$")
CUSTOMER_NAME = re.compile(r"^[a-zA-ZÀ-ÿĀ-ž\s'\-.]+$")
COUNTRY_CODE = re.compile(r"^[A-Z]{2,3}$")
ADDRESS_PUNCTUATION = frozenset("'-.,#/")

LOG_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}
MAX_LOG_LENGTH = 100

MAX_METADATA_ENTRIES = 10
MAX_METADATA_KEY_LENGTH = 50
MAX_METADATA_VALUE_LENGTH = 200


def _has_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


class InputSanitizer:
    """Attack pattern detection and log-safe formatting."""

    def sanitize_input(self, value: Optional[str]) -> Optional[str]:
        """Strip NUL and control characters, NFC-normalise and trim."""
        if not _has_text(value):
            return value
        cleaned = CONTROL_CHARS.sub("", value.replace("\0", ""))
        return unicodedata.normalize("NFC", cleaned).strip()

    def sanitize_for_logging(self, value: Optional[str]) -> Optional[str]:
        """Escape line breaks and control whitespace; truncate long values."""
        if not _has_text(value):
            return value
        escaped = value
        for raw, replacement in LOG_ESCAPES.items():
            escaped = escaped.replace(raw, replacement)
        if len(escaped) > MAX_LOG_LENGTH:
            escaped = escaped[: MAX_LOG_LENGTH - 3] + "..."
        return escaped

    def is_sql_injection_attempt(self, value: Optional[str]) -> bool:
        if not _has_text(value):
            return False
        normalized = value.lower().strip()
        if any(pattern.search(normalized) for pattern in SQL_INJECTION_PATTERNS):
            logger.warning("sql_injection_attempt_detected", value=self.sanitize_for_logging(value))
            return True
        return False

    def is_xss_attempt(self, value: Optional[str]) -> bool:
        if not _has_text(value):
            return False
        normalized = value.lower().strip()
        if any(pattern.search(normalized) for pattern in XSS_PATTERNS):
            logger.warning("xss_attempt_detected", value=self.sanitize_for_logging(value))
            return True
        return False

    def is_path_traversal_attempt(self, value: Optional[str]) -> bool:
        if not _has_text(value):
            return False
        if any(pattern.search(value) for pattern in PATH_TRAVERSAL_PATTERNS):
            logger.warning("path_traversal_attempt_detected", value=self.sanitize_for_logging(value))
            return True
        return False

    def is_valid_input(self, value: Optional[str]) -> bool:
        """Empty input is valid; anything matching an attack pattern is not."""
        if not _has_text(value):
            return True
        return not (
            self.is_sql_injection_attempt(value)
            or self.is_xss_attempt(value)
            or self.is_path_traversal_attempt(value)
        )

    def is_valid_metadata(self, metadata: Optional[Dict[str, str]]) -> bool:
        """
        Validate a metadata map.

        At most 10 entries; keys up to 50 characters, values up to 200, and
        neither may be blank or contain an attack pattern.
        """
        if not metadata:
            return True

        if len(metadata) > MAX_METADATA_ENTRIES:
            logger.warning("metadata_size_exceeded", size=len(metadata))
            return False

        for key, value in metadata.items():
            if not _has_text(key) or len(key) > MAX_METADATA_KEY_LENGTH or not self.is_valid_input(key):
                logger.warning("invalid_metadata_key", key=self.sanitize_for_logging(key))
                return False
            if (
                not _has_text(value)
                or len(value) > MAX_METADATA_VALUE_LENGTH
                or not self.is_valid_input(value)
            ):
                logger.warning("invalid_metadata_value", key=self.sanitize_for_logging(key))
                return False

        return True

    def sanitize_metadata(self, metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Sanitized copy of a metadata map, dropping entries that end up blank."""
        sanitized: Dict[str, str] = {}
        for key, value in (metadata or {}).items():
            clean_key = self.sanitize_input(key)
            clean_value = self.sanitize_input(value)
            if _has_text(clean_key) and _has_text(clean_value):
                sanitized[clean_key] = clean_value
        return sanitized

    def is_valid_phone_number(self, phone: Optional[str]) -> bool:
        """Optional; 7 to 15 digits once separators are removed."""
        if not _has_text(phone):
            return True
        if not PHONE_DIGITS.match(PHONE_SEPARATORS.sub("", phone)):
            logger.warning("invalid_phone_number", value=self.sanitize_for_logging(phone))
            return False
        return self.is_valid_input(phone)

    def is_valid_customer_name(self, name: Optional[str]) -> bool:
        if not _has_text(name):
            return False
        if not 2 <= len(name) <= 100:
            logger.warning("invalid_customer_name_length", value=self.sanitize_for_logging(name))
            return False
        if not CUSTOMER_NAME.match(name):
            logger.warning("invalid_customer_name_characters", value=self.sanitize_for_logging(name))
            return False
        return self.is_valid_input(name)

    def is_valid_country_code(self, country_code: Optional[str]) -> bool:
        if not _has_text(country_code):
            return False
        if not COUNTRY_CODE.match(country_code):
            logger.warning("invalid_country_code", value=self.sanitize_for_logging(country_code))
            return False
        return self.is_valid_input(country_code)

    def is_valid_address_component(self, component: Optional[str], field_name: str) -> bool:
        """Optional; letters, digits, whitespace and ' - . , # / only."""
        if not _has_text(component):
            return True
        if not self.is_valid_input(component):
            logger.warning("invalid_address_component", field=field_name)
            return False
        if not all(ch.isalnum() or ch.isspace() or ch in ADDRESS_PUNCTUATION for ch in component):
            logger.warning(
                "invalid_address_characters",
                field=field_name,
                value=self.sanitize_for_logging(component),
            )
            return False
        return True
