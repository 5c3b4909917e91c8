"""Resolve a bearer token to a vendor or a customer-session identity.

Verifiers run in order and the first one to return an identity wins. A
verifier never raises: any failure is ``None``, so the caller only ever
sees one uniform ``Unauthorized``.
"""
import logging
from dataclasses import dataclass

import jwt

from ..errors import Unauthorized
from ..models import db, User, ROLE_VENDOR
from ..time_utils import utcnow
from . import sessions
from .tokens import decode_vendor_jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VendorIdentity:
    id: int
    email: str
    role: str
    full_name: str | None = None

    kind = 'vendor'


@dataclass(frozen=True)
class CustomerIdentity:
    session_id: int
    machine_id: int
    customer_id: int | None = None
    email: str | None = None
    full_name: str | None = None
    expires_at: object = None
    token: str | None = None

    kind = 'customer'

    @property
    def is_registered(self) -> bool:
        return self.customer_id is not None


Identity = VendorIdentity | CustomerIdentity


def verify_vendor_credential(token: str) -> VendorIdentity | None:
    try:
        claims = decode_vendor_jwt(token)
    except jwt.InvalidTokenError:
        return None
    user = db.session.get(User, claims.get('id')) if isinstance(claims.get('id'), int) else None
    if user is None or user.role != ROLE_VENDOR:
        return None
    return VendorIdentity(id=user.id, email=user.email, role=user.role, full_name=user.full_name)


def verify_customer_session(token: str) -> CustomerIdentity | None:
    session = sessions.find_by_token(token)
    if session is None or session.expires_at <= utcnow():
        return None
    customer = session.customer
    return CustomerIdentity(
        session_id=session.id,
        machine_id=session.machine_id,
        customer_id=session.customer_id,
        email=customer.email if customer is not None else None,
        full_name=customer.full_name if customer is not None else None,
        expires_at=session.expires_at,
        token=token,
    )


VERIFIERS = (verify_vendor_credential, verify_customer_session)


def authenticate(token: str | None, verifiers=VERIFIERS) -> Identity:
    if not token:
        raise Unauthorized()
    for verifier in verifiers:
        identity = verifier(token)
        if identity is not None:
            return identity
    logger.debug('bearer token rejected by all verifiers')
    raise Unauthorized()
