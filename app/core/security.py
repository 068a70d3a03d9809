import re
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

ALGORITHM = "HS256"

PASSWORD_SYMBOLS = '!@#$%^&*(),.?":{}|<>'
_PASSWORD_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[A-Z]"), "password must contain an uppercase letter"),
    (re.compile(r"[a-z]"), "password must contain a lowercase letter"),
    (re.compile(r"\d"), "password must contain a number"),
    (re.compile("[" + re.escape(PASSWORD_SYMBOLS) + "]"), "password must contain a special character"),
)
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_BYTES = 72
PASSWORD_MAX_LENGTH = 128


class TokenValidationError(ValueError):
    pass


class TokenExpiredError(TokenValidationError):
    pass


def password_policy_violations(password: str) -> list[str]:
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"password must be at least {PASSWORD_MIN_LENGTH} characters")
    # bcrypt hard limit is 72 bytes. We encode as utf-8.
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        problems.append(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    for pattern, message in _PASSWORD_RULES:
        if not pattern.search(password):
            problems.append(message)
    return problems


def hash_password(password: str, *, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_token(
    subject: str,
    expires_delta: timedelta,
    token_type: str,
    *,
    secret: str,
    issuer: str,
    audience: str,
    claims: dict | None = None,
    jti: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **(claims or {}),
        "sub": subject,
        "type": token_type,
        "jti": jti or str(uuid4()),
        "iss": issuer,
        "aud": audience,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(
    token: str,
    *,
    secret: str,
    issuer: str,
    audience: str,
    expected_type: str | None = None,
) -> dict:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            audience=audience,
            issuer=issuer,
        )
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired") from exc
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    if not payload.get("sub"):
        raise TokenValidationError("Invalid token subject")

    token_type = payload.get("type")
    if expected_type and token_type != expected_type:
        raise TokenValidationError("Invalid token type")

    if not payload.get("jti"):
        raise TokenValidationError("Invalid token id")

    return payload
