"""Pydantic request and response models for the Modelia API.

Request models drive validation; response models define the camelCase wire
format used inside the ``{success, data, message}`` envelope.  The Python
client in :mod:`modelia.client` parses responses with the same models.

Models
------
SignupRequest
    Payload for ``POST /v1/auth/signup``.
LoginRequest
    Payload for ``POST /v1/auth/login``.
GenerationForm
    Text fields of the multipart ``POST /v1/generations`` request.
UserOut / AuthOut / GenerationOut
    Response payloads.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal

from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

from modelia.core.errors import FieldError

STYLES = ("casual", "formal", "streetwear", "vintage", "modern")

Style = Literal["casual", "formal", "streetwear", "vintage", "modern"]

# Location prefixes FastAPI adds that are not part of the field name.
_LOCATION_ROOTS = frozenset({"body", "query", "path", "form", "header"})


def _check_email(value: str) -> str:
    # Syntax check only; the address is kept exactly as submitted.
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise PydanticCustomError("email_invalid", "Invalid email format") from None
    return value


def _min_length(length: int, message: str) -> AfterValidator:
    def check(value: str) -> str:
        if len(value) < length:
            raise PydanticCustomError("too_short", message)
        return value

    return AfterValidator(check)


def _utc_isoformat(value: datetime) -> str:
    # Stored timestamps are naive UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


Email = Annotated[str, AfterValidator(_check_email)]
Password = Annotated[str, _min_length(6, "Password must be at least 6 characters")]
Name = Annotated[str, _min_length(2, "Name must be at least 2 characters")]
Prompt = Annotated[
    str,
    Field(max_length=500),
    _min_length(3, "Prompt must be at least 3 characters"),
]
UtcDatetime = Annotated[datetime, PlainSerializer(_utc_isoformat, when_used="json")]


class SignupRequest(BaseModel):
    """Request body for ``POST /v1/auth/signup``.

    Attributes:
        email: Account email; stored exactly as given.
        password: Plain-text password, at least 6 characters.
        name: Display name, at least 2 characters.
    """

    email: Email = Field(..., description="Account email.")
    password: Password = Field(..., description="Password (6+ characters).")
    name: Name = Field(..., description="Display name (2+ characters).")


class LoginRequest(BaseModel):
    email: Email
    password: Annotated[str, _min_length(1, "Password is required")]


class GenerationForm(BaseModel):
    """Text fields of a generation request.

    Attributes:
        prompt: Instruction for the style transfer, 3-500 characters.
        style: One of :data:`STYLES`.
    """

    prompt: Prompt
    style: Style


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserOut(_CamelModel):
    id: int
    email: str
    name: str
    created_at: UtcDatetime | None = None


class AuthOut(_CamelModel):
    token: str
    user: UserOut


class GenerationOut(_CamelModel):
    """A generation record as returned by the API.

    Attributes:
        id: Record id.
        user_id: Owner id.
        prompt: Prompt text.
        style: Style used.
        image_url: Secure URL of the uploaded source image.
        result_url: Secure URL of the result image, if any.
        status: ``pending``, ``completed`` or ``failed``.
        created_at: Creation timestamp, serialized with a UTC offset.
    """

    id: int
    user_id: int
    prompt: str
    style: str
    image_url: str
    result_url: str | None = None
    status: Literal["pending", "completed", "failed"]
    created_at: UtcDatetime


def field_errors(errors: list[dict]) -> list[FieldError]:
    """Convert pydantic error dicts to :class:`FieldError` entries.

    Every error is kept so clients see all failing fields at once.
    """
    converted: list[FieldError] = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ())]
        if loc and loc[0] in _LOCATION_ROOTS:
            loc = loc[1:]
        converted.append(FieldError(field=".".join(loc), message=error.get("msg", "Invalid value")))
    return converted
