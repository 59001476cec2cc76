from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import EmailStr, TypeAdapter, ValidationError

_email_adapter = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class ContactRules:
    """Field rules for the contact form. Built from settings at request time."""

    require_subject: bool = True
    name_min_length: int = 1
    message_min_length: int = 1
    max_field_length: int = 200
    max_message_length: int = 5000

    @classmethod
    def from_settings(cls, settings) -> "ContactRules":
        return cls(
            require_subject=settings.contact_require_subject,
            name_min_length=settings.contact_name_min_length,
            message_min_length=settings.contact_message_min_length,
        )


@dataclass(frozen=True)
class ContactInput:
    name: str
    email: str
    subject: Optional[str]
    message: str


def field_error(param: str, msg: str, value: Any = None) -> Dict[str, Any]:
    return {"type": "field", "msg": msg, "param": param, "location": "body", "value": value}


def _text_field(
    payload: Dict[str, Any],
    param: str,
    label: str,
    errors: List[Dict[str, Any]],
    *,
    required: bool,
    min_length: int = 1,
    max_length: int,
) -> Optional[str]:
    raw = payload.get(param)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            errors.append(field_error(param, f"{label} is required", raw if raw is not None else ""))
        return None
    if not isinstance(raw, str):
        errors.append(field_error(param, f"{label} must be a string", raw))
        return None

    value = raw.strip()
    if len(value) < min_length:
        errors.append(
            field_error(param, f"{label} must be at least {min_length} characters.", raw)
        )
        return None
    if len(value) > max_length:
        errors.append(
            field_error(param, f"{label} must be at most {max_length} characters.", raw)
        )
        return None
    return value


def _email_field(payload: Dict[str, Any], errors: List[Dict[str, Any]]) -> Optional[str]:
    raw = payload.get("email")
    if not isinstance(raw, str) or not raw.strip():
        errors.append(field_error("email", "Please provide a valid email", raw if raw is not None else ""))
        return None
    try:
        return _email_adapter.validate_python(raw.strip())
    except ValidationError:
        errors.append(field_error("email", "Please provide a valid email", raw))
        return None


def validate_contact(
    payload: Any, rules: ContactRules
) -> Tuple[Optional[ContactInput], List[Dict[str, Any]]]:
    """
    Check every field and collect all violations.
    Returns (cleaned input, []) on success or (None, errors) otherwise.
    """
    if not isinstance(payload, dict):
        return None, [field_error("body", "Request body must be a JSON object", None)]

    errors: List[Dict[str, Any]] = []
    name = _text_field(
        payload, "name", "Name", errors,
        required=True,
        min_length=rules.name_min_length,
        max_length=rules.max_field_length,
    )
    email = _email_field(payload, errors)
    subject = _text_field(
        payload, "subject", "Subject", errors,
        required=rules.require_subject,
        max_length=rules.max_field_length,
    )
    message = _text_field(
        payload, "message", "Message", errors,
        required=True,
        min_length=rules.message_min_length,
        max_length=rules.max_message_length,
    )

    if errors:
        return None, errors
    return ContactInput(name=name, email=email, subject=subject, message=message), []
