"""Validation for Contact page form submissions."""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_PATTERN = re.compile(r'^[\d\s\-\(\)]+$')

REQUIRED_FIELDS = ('name', 'email', 'message')
HONEYPOT_FIELD = 'website'
MIN_MESSAGE_LENGTH = 10

ERROR_REQUIRED = 'This field is required'
ERROR_EMAIL = 'Please enter a valid email address'
ERROR_PHONE = 'Please enter a valid phone number'


def error_min_length(minimum: int) -> str:
    return f"Please enter at least {minimum} characters"


@dataclass
class ValidationResult:
    """Outcome of validating one submission."""
    is_valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    is_spam: bool = False
    data: Dict[str, str] = field(default_factory=dict)


def validate_field(name: str, value: str) -> Optional[str]:
    """
    Validate a single stripped field value.

    Args:
        name: Form field name
        value: Stripped field value

    Returns:
        Error message, or None when the value is acceptable
    """
    if name in REQUIRED_FIELDS and not value:
        return ERROR_REQUIRED
    if name == 'email' and value and not EMAIL_PATTERN.match(value):
        return ERROR_EMAIL
    if name == 'phone' and value and not PHONE_PATTERN.match(value):
        return ERROR_PHONE
    if name == 'message' and value and len(value) < MIN_MESSAGE_LENGTH:
        return error_min_length(MIN_MESSAGE_LENGTH)
    return None


def validate_contact_submission(fields: Mapping[str, Optional[str]]) -> ValidationResult:
    """
    Validate a contact form submission.

    A filled honeypot field rejects the submission silently: it is marked as
    spam and invalid, with no field errors.

    Args:
        fields: Submitted form fields by name

    Returns:
        ValidationResult with per-field errors and the cleaned data

    Raises:
        ValueError: If the form is not a mapping or a field value is not text
    """
    if not isinstance(fields, Mapping):
        raise ValueError(f"Contact form must be a mapping, got {type(fields).__name__}")

    for name, value in fields.items():
        if value is not None and not isinstance(value, str):
            raise ValueError(
                f"Contact form field '{name}' must be text, got {type(value).__name__}"
            )

    data = {
        name: (value or '').strip()
        for name, value in fields.items()
        if name != HONEYPOT_FIELD
    }

    if (fields.get(HONEYPOT_FIELD) or '').strip():
        logger.warning("Contact submission rejected: honeypot field was filled")
        return ValidationResult(is_valid=False, is_spam=True)

    errors = {}
    for name in list(REQUIRED_FIELDS) + [n for n in data if n not in REQUIRED_FIELDS]:
        error = validate_field(name, data.get(name, ''))
        if error:
            errors[name] = error

    if errors:
        logger.info(
            f"Contact form validation failed. {len(errors)} fields need attention: "
            f"{', '.join(errors)}"
        )

    return ValidationResult(is_valid=not errors, errors=errors, data=data)
