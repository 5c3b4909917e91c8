"""Customer sessions opened by scanning a machine QR code.

A session token is an opaque UUID and the only credential an anonymous
customer holds. A session is bound to one machine for its whole life and
may be promoted once from anonymous to a registered customer.
"""
import logging
import uuid
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, or_, update

from ..errors import AlreadyLinked, MachineNotFound, SessionExpired, SessionNotFound
from ..models import db, CustomerSession, VendingMachine
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

RELINK_REJECT = 'reject'
RELINK_OVERWRITE = 'overwrite'


def _looks_like_token(token) -> bool:
    if not isinstance(token, str) or len(token) != 36:
        return False
    try:
        uuid.UUID(token)
    except ValueError:
        return False
    return True


def create(machine_id: int, scanned_token: str, customer_id: int | None = None,
           ip_address: str | None = None, user_agent: str | None = None) -> CustomerSession:
    if db.session.get(VendingMachine, machine_id) is None:
        raise MachineNotFound()
    now = utcnow()
    session = CustomerSession(
        customer_id=customer_id,
        machine_id=machine_id,
        session_token=str(uuid.uuid4()),
        qr_code_scanned=(scanned_token or '')[:500],
        ip_address=ip_address[:45] if ip_address else None,
        user_agent=user_agent,
        created_at=now,
        expires_at=now + timedelta(hours=current_app.config.get('SESSION_EXPIRY_HOURS', 24)),
    )
    db.session.add(session)
    db.session.commit()
    logger.info('customer session %s opened on machine %s', session.id, machine_id)
    return session


def find_by_token(token: str) -> CustomerSession | None:
    """Lookup regardless of expiry; callers decide freshness."""
    if not _looks_like_token(token):
        return None
    return db.session.execute(
        db.select(CustomerSession).filter_by(session_token=token)
    ).scalar_one_or_none()


def is_valid(token: str) -> bool:
    if not _looks_like_token(token):
        return False
    found = db.session.execute(
        db.select(CustomerSession.id).where(
            CustomerSession.session_token == token,
            CustomerSession.expires_at > utcnow(),
        )
    ).first()
    return found is not None


def link_to_customer(token: str, customer_id: int, policy: str | None = None) -> CustomerSession:
    """
    Promote an anonymous session to a registered customer.

    Linking to the id already on the session is a no-op. Linking to a
    different id is refused with AlreadyLinked unless the relink policy is
    'overwrite'. The guard lives in the UPDATE itself so two concurrent
    links cannot both win.
    """
    policy = policy or current_app.config.get('SESSION_RELINK_POLICY', RELINK_REJECT)
    session = find_by_token(token)
    if session is None:
        raise SessionNotFound()
    if session.expires_at <= utcnow():
        raise SessionExpired()
    if session.customer_id == customer_id:
        return session

    stmt = update(CustomerSession).where(CustomerSession.id == session.id).values(customer_id=customer_id)
    if policy != RELINK_OVERWRITE:
        stmt = stmt.where(or_(CustomerSession.customer_id.is_(None),
                              CustomerSession.customer_id == customer_id))
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount == 0:
        db.session.rollback()
        raise AlreadyLinked()
    db.session.commit()
    db.session.refresh(session)
    logger.info('session %s linked to customer %s', session.id, customer_id)
    return session


def delete_expired(now=None) -> int:
    now = now or utcnow()
    result = db.session.execute(
        db.delete(CustomerSession).where(CustomerSession.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    count = result.rowcount or 0
    logger.info('purged %d expired customer sessions', count)
    return count


def get_active_sessions(machine_id: int) -> list[CustomerSession]:
    return list(db.session.execute(
        db.select(CustomerSession)
        .where(CustomerSession.machine_id == machine_id, CustomerSession.expires_at > utcnow())
        .order_by(CustomerSession.created_at.desc(), CustomerSession.id.desc())
    ).scalars())


def get_customer_session_count(customer_id: int) -> int:
    return db.session.execute(
        db.select(func.count(CustomerSession.id))
        .where(CustomerSession.customer_id == customer_id, CustomerSession.expires_at > utcnow())
    ).scalar_one()
