import re

from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext

from raffledesk.config import settings

# Salted PBKDF2; passlib compares digests in constant time
code_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

CONFIRMATION_CODE_RE = re.compile(r"[0-9]{5}")


def is_valid_confirmation_code(code: object) -> bool:
    """A confirmation code is exactly five ASCII digits."""
    return isinstance(code, str) and CONFIRMATION_CODE_RE.fullmatch(code) is not None


def hash_confirmation_code(code: str) -> str:
    return code_context.hash(code)


def verify_confirmation_code(code: str, code_hash: str) -> bool:
    try:
        return code_context.verify(code, code_hash)
    except (ValueError, TypeError):
        # Unrecognized or corrupt hash never verifies
        return False


def _operator_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.OPERATOR_SECRET_KEY, salt="operator-token")


def create_operator_token(subject: str) -> str:
    return _operator_serializer().dumps({"sub": subject, "type": "operator"})


def decode_operator_token(token: str) -> dict:
    """Return the token payload, raising ValueError if it is forged or expired."""
    try:
        payload = _operator_serializer().loads(
            token, max_age=settings.OPERATOR_TOKEN_MAX_AGE_SECONDS
        )
    except BadSignature as exc:
        raise ValueError("Invalid operator token") from exc
    if not isinstance(payload, dict):
        raise ValueError("Invalid operator token")
    return payload
