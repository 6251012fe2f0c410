from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from config.settings import SECRET_KEY

ALGORITHM = 'HS256'


def generate_jwt_token(payload: dict, purpose: str, expires_in: Optional[int] = None,
                       secret: Optional[str] = None) -> str:
    """Sign ``payload`` for a single ``purpose`` (e.g. ``blob_id`` or ``disk_upload``)."""
    claims = dict(payload)
    claims['pur'] = purpose
    if expires_in is not None:
        claims['exp'] = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return jwt.encode(claims, secret or SECRET_KEY, algorithm=ALGORITHM)


def verify_jwt_token(token: str, purpose: str, secret: Optional[str] = None) -> Optional[dict]:
    try:
        claims = jwt.decode(token, secret or SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None
    if claims.get('pur') != purpose:
        return None
    return claims
