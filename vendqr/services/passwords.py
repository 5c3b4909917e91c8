import bcrypt
from flask import current_app

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=current_app.config.get('BCRYPT_ROUNDS', 12)))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False
