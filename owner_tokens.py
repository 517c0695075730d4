import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="owner-token")


def issue_owner_token(owner_id: int, max_age_hours: int = 12) -> str:
    serializer = _serializer()
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"o": owner_id, "exp": expiry}

    return serializer.dumps(token_data)


def resolve_owner_id(token: str, max_age_hours: int = 12) -> Optional[int]:
    """Owner id carried by a valid token, or None when it is forged or expired."""
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None

    owner_id = data.get("o")
    if not isinstance(owner_id, int):
        return None

    if int(time.time()) > data.get("exp", 0):
        return None

    return owner_id
