import time
from typing import Mapping, Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings

LOGIN_TOKEN_MINUTES = 15


def _serializer(salt: str) -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.secret_key, salt=salt)


def _issue(salt: str, user_id: str, max_age_seconds: int) -> str:
    timestamp = int(time.time())
    token_data = {"u": user_id, "ts": timestamp, "exp": timestamp + max_age_seconds}
    return _serializer(salt).dumps(token_data)


def _read(salt: str, token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    try:
        data = _serializer(salt).loads(token)
    except BadSignature:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, str) or not user_id:
        return None

    if int(time.time()) > data.get("exp", 0):
        return None

    return user_id


def issue_identity_token(user_id: str, max_age_hours: Optional[int] = None) -> str:
    settings = get_settings()
    max_age_hours = max_age_hours or settings.session_max_age_hours
    return _issue("identity", user_id, max_age_hours * 3600)


def read_identity_token(token: Optional[str]) -> Optional[str]:
    return _read("identity", token)


def issue_login_token(user_id: str) -> str:
    """Short-lived token mailed to the user; exchanged for an identity token."""
    return _issue("login", user_id, LOGIN_TOKEN_MINUTES * 60)


def read_login_token(token: Optional[str]) -> Optional[str]:
    return _read("login", token)


def dump_guest_storage(storage: Mapping[str, str]) -> str:
    return _serializer("guest-storage").dumps(dict(storage))


def load_guest_storage(token: Optional[str]) -> dict[str, str]:
    if not token:
        return {}
    try:
        data = _serializer("guest-storage").loads(token)
    except BadSignature:
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items()}
