import time

import jwt
from flask import current_app


def _signing_key():
    cfg = current_app.config
    if cfg['JWT_ALG'].startswith('HS'):
        return cfg['JWT_SECRET']
    return cfg['JWT_PRIVATE_KEY']


def _verify_key():
    cfg = current_app.config
    if cfg['JWT_ALG'].startswith('HS'):
        return cfg['JWT_SECRET']
    return cfg['JWT_PUBLIC_KEY']


# Vendor access JWT
def sign_vendor_jwt(user_id: int, email: str, role: str, ttl_min: int | None = None) -> str:
    now = int(time.time())
    ttl_min = ttl_min if ttl_min is not None else current_app.config['JWT_EXPIRES_MIN']
    payload = {
        'id': user_id,
        'email': email,
        'role': role,
        'iat': now,
        'exp': now + ttl_min * 60,
    }
    return jwt.encode(payload, _signing_key(), algorithm=current_app.config['JWT_ALG'])


def decode_vendor_jwt(token: str) -> dict:
    """Verify signature and expiry; raises jwt.InvalidTokenError."""
    return jwt.decode(
        token,
        _verify_key(),
        algorithms=[current_app.config['JWT_ALG']],
        options={'require': ['exp', 'id']},
    )
