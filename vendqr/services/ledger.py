"""Discount redemptions and loyalty points.

Every write here is a guarded write: a precondition read that produces a
friendly error, followed by a conditional insert/update where the database
constraint is the final arbiter. Unique-constraint violations are expected
under concurrent duplicate requests and map to ``AlreadyRedeemed``.

Shared counters (``discount_codes.current_uses``, loyalty balances) are only
ever changed with single-statement atomic increments.
"""
import logging
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyRedeemed, BadRequest, Conflict, DiscountExpired, DiscountInactive,
    DiscountNotFound, LimitReached, NotYetValid, WrongMachine,
)
from ..models import db, DiscountCode, DiscountRedemption, LoyaltyAccount
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

STATUS_PENDING = 'pending'
STATUS_APPROVED = 'approved'
DISCOUNT_TYPES = ('percentage', 'fixed')


def normalize_code(code) -> str:
    return (code or '').strip().upper()


# ---------------------------------------------------------------------------
# vendor side

def create_discount(vendor_id: int, machine_id: int, code: str, discount_value,
                    discount_type: str = 'percentage', product_id: int | None = None,
                    max_uses: int | None = None, valid_from=None, valid_until=None) -> DiscountCode:
    normalized = normalize_code(code)
    if not 3 <= len(normalized) <= 50:
        raise BadRequest('Code must be between 3 and 50 characters')
    if discount_type not in DISCOUNT_TYPES:
        raise BadRequest('discountType must be percentage or fixed')
    try:
        value = Decimal(str(discount_value))
    except (InvalidOperation, ValueError) as exc:
        raise BadRequest('discountValue must be a number') from exc
    if value <= 0 or (discount_type == 'percentage' and value > 100):
        raise BadRequest('discountValue out of range')
    if max_uses is not None and max_uses < 1:
        raise BadRequest('maxUses must be at least 1')
    if valid_from and valid_until and valid_until < valid_from:
        raise BadRequest('validUntil must be after validFrom')

    discount = DiscountCode(
        vendor_id=vendor_id,
        machine_id=machine_id,
        product_id=product_id,
        code=normalized,
        discount_type=discount_type,
        discount_value=value,
        max_uses=max_uses,
        current_uses=0,
        valid_from=valid_from,
        valid_until=valid_until,
        is_active=True,
    )
    db.session.add(discount)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict('Discount code already exists') from exc
    return discount


def list_discounts(machine_id: int) -> list[DiscountCode]:
    return list(db.session.execute(
        db.select(DiscountCode)
        .where(DiscountCode.machine_id == machine_id)
        .order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc())
    ).scalars())


def delete_discount(machine_id: int, discount_id: int) -> None:
    result = db.session.execute(
        db.delete(DiscountCode)
        .where(DiscountCode.id == discount_id, DiscountCode.machine_id == machine_id)
        .execution_options(synchronize_session='fetch')
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise DiscountNotFound()
    db.session.commit()


# ---------------------------------------------------------------------------
# customer side

def _already_redeemed(discount_id: int, customer_id: int) -> bool:
    return db.session.execute(
        db.select(DiscountRedemption.id).filter_by(discount_code_id=discount_id, customer_id=customer_id)
    ).first() is not None


def _check_redeemable(discount: DiscountCode, customer_id: int, machine_id: int, now) -> None:
    if discount.machine_id != machine_id:
        raise WrongMachine()
    if not discount.is_active:
        raise DiscountInactive()
    if discount.valid_from is not None and now < discount.valid_from:
        raise NotYetValid()
    if discount.valid_until is not None and now > discount.valid_until:
        raise DiscountExpired()
    # a customer who already holds a redemption is told so even when the
    # code is exhausted, their own use being what exhausted it
    if _already_redeemed(discount.id, customer_id):
        raise AlreadyRedeemed()
    if discount.max_uses is not None and discount.current_uses >= discount.max_uses:
        raise LimitReached()


def _book(discount_id: int, customer_id: int, machine_id: int,
          proof_image_url: str | None = None, points: int = 0) -> DiscountRedemption:
    redemption = DiscountRedemption(
        discount_code_id=discount_id,
        customer_id=customer_id,
        machine_id=machine_id,
        proof_image_url=proof_image_url,
        status=STATUS_APPROVED if proof_image_url else STATUS_PENDING,
        points_awarded=points,
        redeemed_at=utcnow(),
    )
    try:
        db.session.add(redemption)
        db.session.flush()
        claimed = db.session.execute(
            update(DiscountCode)
            .where(
                DiscountCode.id == discount_id,
                or_(DiscountCode.max_uses.is_(None), DiscountCode.current_uses < DiscountCode.max_uses),
            )
            .values(current_uses=DiscountCode.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            db.session.rollback()
            raise LimitReached()
        if points:
            _upsert_points(customer_id, machine_id, points)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.info('duplicate redemption of code %s by customer %s rejected', discount_id, customer_id)
        raise AlreadyRedeemed() from exc
    return redemption


def redeem(code: str, customer_id: int, machine_id: int, now=None) -> tuple[DiscountCode, DiscountRedemption]:
    """
    Consume a discount code once for a customer at a machine.

    Raises DiscountNotFound, WrongMachine, DiscountInactive, NotYetValid,
    DiscountExpired, LimitReached or AlreadyRedeemed.
    """
    now = now or utcnow()
    discount = db.session.execute(
        db.select(DiscountCode).filter_by(code=normalize_code(code))
    ).scalar_one_or_none()
    if discount is None:
        raise DiscountNotFound()
    _check_redeemable(discount, customer_id, machine_id, now)
    redemption = _book(discount.id, customer_id, machine_id)
    db.session.refresh(discount)
    logger.info('code %s redeemed by customer %s on machine %s', discount.id, customer_id, machine_id)
    return discount, redemption


def submit_proof(customer_id: int, machine_id: int, discount_id: int, proof_image_url: str,
                 now=None) -> tuple[DiscountRedemption, LoyaltyAccount]:
    """
    Record proof of purchase for a discount and award loyalty points.

    When the customer already redeemed the code the proof is attached to
    that redemption; points are awarded at most once per redemption.
    """
    if not proof_image_url:
        raise BadRequest('Proof of purchase image is required')
    now = now or utcnow()
    points = current_app.config.get('PROOF_POINTS', 10)
    discount = db.session.get(DiscountCode, discount_id)
    if discount is None:
        raise DiscountNotFound()
    if discount.machine_id != machine_id:
        raise WrongMachine()

    existing = db.session.execute(
        db.select(DiscountRedemption).filter_by(discount_code_id=discount.id, customer_id=customer_id)
    ).scalar_one_or_none()
    if existing is None:
        _check_redeemable(discount, customer_id, machine_id, now)
        redemption = _book(discount.id, customer_id, machine_id, proof_image_url, points)
    else:
        attached = db.session.execute(
            update(DiscountRedemption)
            .where(DiscountRedemption.id == existing.id, DiscountRedemption.proof_image_url.is_(None))
            .values(proof_image_url=proof_image_url, status=STATUS_APPROVED, points_awarded=points)
            .execution_options(synchronize_session=False)
        )
        if attached.rowcount == 0:
            db.session.rollback()
            raise AlreadyRedeemed('Proof of purchase already submitted for this discount')
        _upsert_points(customer_id, machine_id, points)
        db.session.commit()
        db.session.refresh(existing)
        redemption = existing

    logger.info('proof accepted for code %s, %d points to customer %s', discount.id, points, customer_id)
    return redemption, get_account(customer_id, machine_id)


def list_redemptions(customer_id: int) -> list[DiscountRedemption]:
    """A customer's redemptions across machines, newest first."""
    return list(db.session.execute(
        db.select(DiscountRedemption)
        .filter_by(customer_id=customer_id)
        .order_by(DiscountRedemption.redeemed_at.desc(), DiscountRedemption.id.desc())
    ).scalars())


# ---------------------------------------------------------------------------
# loyalty points

def _dialect_insert():
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f'loyalty upsert not supported on {dialect}')
    return insert


def _upsert_points(customer_id: int, machine_id: int, points: int) -> None:
    table = LoyaltyAccount.__table__
    now = utcnow()
    stmt = _dialect_insert()(table).values(
        customer_id=customer_id,
        machine_id=machine_id,
        points_balance=points,
        lifetime_points=points,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.customer_id, table.c.machine_id],
        set_={
            'points_balance': table.c.points_balance + stmt.excluded.points_balance,
            'lifetime_points': table.c.lifetime_points + stmt.excluded.lifetime_points,
            'updated_at': stmt.excluded.updated_at,
        },
    )
    db.session.execute(stmt)


def award_points(customer_id: int, machine_id: int, points: int) -> LoyaltyAccount:
    """Add points to both balance and lifetime for a customer/machine pair."""
    if points <= 0:
        raise ValueError('points must be positive')
    _upsert_points(customer_id, machine_id, points)
    db.session.commit()
    return get_account(customer_id, machine_id)


def get_account(customer_id: int, machine_id: int) -> LoyaltyAccount | None:
    account = db.session.execute(
        db.select(LoyaltyAccount).filter_by(customer_id=customer_id, machine_id=machine_id)
    ).scalar_one_or_none()
    if account is not None:
        # balances are written through core statements
        db.session.refresh(account)
    return account


def get_accounts(customer_id: int) -> list[LoyaltyAccount]:
    return list(db.session.execute(
        db.select(LoyaltyAccount)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyAccount.points_balance.desc())
    ).scalars())
