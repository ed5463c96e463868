# app/agreements/utils.py

import base64
import binascii
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, TypeAdapter
from pydantic import ValidationError as SchemaValidationError

from app.core.config import Settings
from app.agreements.exceptions import ValidationError

_email_address = TypeAdapter(EmailStr)

SIGNATURE_DATA_URL = re.compile(r"^data:image/[A-Za-z0-9.+-]+;base64,(?P<payload>.+)$", re.DOTALL)
MAX_SIGNATURE_LENGTH = 2 * 1024 * 1024

ALLOWED_DOCUMENT_TYPES: FrozenSet[str] = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
})


class AgreementConfig(BaseModel):
    """Settings the agreement services depend on"""
    model_config = ConfigDict(frozen=True)

    app_base_url: str = "http://localhost:3000"
    organisation_name: Optional[str] = None
    signing_token_ttl_days: int = 14
    supporting_document_max_bytes: int = 20 * 1024 * 1024

    @classmethod
    def from_settings(cls, settings: Settings) -> "AgreementConfig":
        return cls(
            app_base_url=settings.app_base_url,
            organisation_name=settings.organisation_name,
            signing_token_ttl_days=settings.signing_token_ttl_days,
            supporting_document_max_bytes=settings.supporting_document_max_bytes,
        )

    def token_expiry(self, now: datetime) -> Optional[datetime]:
        """Expiry for a token issued at `now`; None when tokens never expire"""
        if self.signing_token_ttl_days <= 0:
            return None
        return now + timedelta(days=self.signing_token_ttl_days)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_signing_token() -> str:
    """Unguessable single-use token for the driver signing link"""
    return secrets.token_urlsafe(32)


def is_deliverable_address(email: Optional[str]) -> bool:
    """Syntax check only; no DNS lookups"""
    if not email or not email.strip():
        return False
    try:
        _email_address.validate_python(email.strip())
    except SchemaValidationError:
        return False
    return True


def validate_signature_image(signature: str) -> str:
    """Accept only a base64 image data URL."""
    if not signature or len(signature) > MAX_SIGNATURE_LENGTH:
        raise ValidationError("Signature image is missing or too large")
    match = SIGNATURE_DATA_URL.match(signature.strip())
    if not match:
        raise ValidationError("Signature must be an image data URL")
    try:
        base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Signature image is not valid base64") from e
    return signature.strip()


def is_allowed_document_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    content_type = content_type.split(";", 1)[0].strip().lower()
    return content_type.startswith("image/") or content_type in ALLOWED_DOCUMENT_TYPES


def sanitize_file_name(file_name: str) -> str:
    """Keep letters, digits, dot, dash and underscore"""
    base = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", base).strip("-.")
    return cleaned or "document"


def document_prefix(agreement_id: int) -> str:
    return f"agreements/{agreement_id}/supporting/"


def build_document_path(agreement_id: int, file_name: str, now: datetime) -> str:
    """Storage key: agreements/{id}/supporting/{millis}-{name}"""
    return f"{document_prefix(agreement_id)}{int(now.timestamp() * 1000)}-{sanitize_file_name(file_name)}"


def is_document_path_for(agreement_id: int, path: str) -> bool:
    """True when `path` is a plain key under the agreement's document prefix"""
    prefix = document_prefix(agreement_id)
    if not path.startswith(prefix) or len(path) == len(prefix):
        return False
    return ".." not in path.split("/")
