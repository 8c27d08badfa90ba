from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="access-token")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def generate_access_token(user_id: str) -> str:
    serializer = _serializer()
    return serializer.dumps({"u": user_id})


def read_access_token(token: str, max_age_hours: Optional[int] = None) -> Optional[str]:
    """Return the user id carried by ``token`` or None when it is invalid."""
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=max_age_hours * 3600)
    except SignatureExpired:
        return None
    except BadSignature:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id
