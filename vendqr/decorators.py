"""Request decorators that put the resolved identity on ``flask.g``."""
from functools import wraps

from flask import g, request

from .errors import Forbidden, RegistrationRequired
from .services.auth_gate import CustomerIdentity, VendorIdentity, authenticate


def bearer_token() -> str | None:
    auth = request.headers.get('Authorization', '')
    if not auth.startswith('Bearer '):
        return None
    return auth.split(' ', 1)[1].strip() or None


def require_identity(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        g.identity = authenticate(bearer_token())
        return f(*args, **kwargs)
    return decorated


def require_vendor(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        identity = authenticate(bearer_token())
        if not isinstance(identity, VendorIdentity):
            raise Forbidden()
        g.identity = identity
        return f(*args, **kwargs)
    return decorated


def require_customer_session(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        identity = authenticate(bearer_token())
        if not isinstance(identity, CustomerIdentity):
            raise Forbidden()
        g.identity = identity
        return f(*args, **kwargs)
    return decorated


def require_registered_customer(message: str = 'Please register to continue'):
    def decorator(f):
        @require_customer_session
        @wraps(f)
        def decorated(*args, **kwargs):
            if not g.identity.is_registered:
                raise RegistrationRequired(message)
            return f(*args, **kwargs)
        return decorated
    return decorator
