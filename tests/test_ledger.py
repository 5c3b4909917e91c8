from datetime import timedelta

import pytest

from conftest import make_machine, make_user
from vendqr.errors import (
    AlreadyRedeemed, BadRequest, Conflict, DiscountExpired, DiscountInactive,
    DiscountNotFound, LimitReached, NotYetValid, WrongMachine,
)
from vendqr.models import db, DiscountCode, DiscountRedemption, LoyaltyAccount, ROLE_CUSTOMER
from vendqr.services import ledger
from vendqr.time_utils import utcnow


def _customers(n):
    return [make_user(f'c{i}@example.com', ROLE_CUSTOMER) for i in range(n)]


def test_create_discount_normalizes_code(vendor, machine):
    discount = ledger.create_discount(vendor.id, machine.id, ' save10 ', 10)
    assert discount.code == 'SAVE10'
    assert discount.current_uses == 0
    with pytest.raises(Conflict):
        ledger.create_discount(vendor.id, machine.id, 'Save10', 5)


@pytest.mark.parametrize('kwargs', [
    {'code': 'AB', 'discount_value': 10},
    {'code': 'VALID', 'discount_value': 0},
    {'code': 'VALID', 'discount_value': 120},
    {'code': 'VALID', 'discount_value': 'ten'},
    {'code': 'VALID', 'discount_value': 5, 'discount_type': 'bogo'},
    {'code': 'VALID', 'discount_value': 5, 'max_uses': 0},
])
def test_create_discount_validation(vendor, machine, kwargs):
    with pytest.raises(BadRequest):
        ledger.create_discount(vendor.id, machine.id, **kwargs)


def test_redeem_records_use(vendor, machine, customer):
    ledger.create_discount(vendor.id, machine.id, 'SAVE10', 10)
    discount, redemption = ledger.redeem('save10', customer.id, machine.id)
    assert discount.current_uses == 1
    assert redemption.status == 'pending'
    assert redemption.customer_id == customer.id


def test_redeem_unknown_code(machine, customer):
    with pytest.raises(DiscountNotFound):
        ledger.redeem('NOPE', customer.id, machine.id)


def test_redeem_wrong_machine(vendor, machine, customer):
    other = make_machine(vendor, name='Gym')
    ledger.create_discount(vendor.id, other.id, 'GYMONLY', 10)
    with pytest.raises(WrongMachine):
        ledger.redeem('GYMONLY', customer.id, machine.id)


def test_redeem_inactive(vendor, machine, customer):
    discount = ledger.create_discount(vendor.id, machine.id, 'OFF10', 10)
    discount.is_active = False
    db.session.commit()
    with pytest.raises(DiscountInactive):
        ledger.redeem('OFF10', customer.id, machine.id)


def test_redeem_validity_window(vendor, machine, customer):
    now = utcnow()
    ledger.create_discount(vendor.id, machine.id, 'LATER', 10, valid_from=now + timedelta(days=1))
    ledger.create_discount(vendor.id, machine.id, 'GONE', 10, valid_until=now - timedelta(days=1))
    with pytest.raises(NotYetValid):
        ledger.redeem('LATER', customer.id, machine.id, now=now)
    with pytest.raises(DiscountExpired):
        ledger.redeem('GONE', customer.id, machine.id, now=now)


def test_same_customer_cannot_redeem_twice(vendor, machine, customer):
    ledger.create_discount(vendor.id, machine.id, 'ONCE', 10)
    ledger.redeem('ONCE', customer.id, machine.id)
    with pytest.raises(AlreadyRedeemed):
        ledger.redeem('ONCE', customer.id, machine.id)


def test_limit_holds_for_n_plus_one_customers(vendor, machine):
    ledger.create_discount(vendor.id, machine.id, 'FIRST3', 10, max_uses=3)
    customers = _customers(4)
    for c in customers[:3]:
        ledger.redeem('FIRST3', c.id, machine.id)
    with pytest.raises(LimitReached):
        ledger.redeem('FIRST3', customers[3].id, machine.id)

    discount = db.session.execute(db.select(DiscountCode).filter_by(code='FIRST3')).scalar_one()
    assert discount.current_uses == 3
    count = db.session.execute(db.select(db.func.count(DiscountRedemption.id))).scalar_one()
    assert count == 3


def test_limit_enforced_by_conditional_update(vendor, machine, monkeypatch):
    """A stale read of current_uses must not let a redemption through."""
    discount = ledger.create_discount(vendor.id, machine.id, 'ONLY1', 10, max_uses=1)
    first, second = _customers(2)
    ledger.redeem('ONLY1', first.id, machine.id)

    def stale_check(d, customer_id, machine_id, now):
        return None

    monkeypatch.setattr(ledger, '_check_redeemable', stale_check)
    with pytest.raises(LimitReached):
        ledger.redeem('ONLY1', second.id, machine.id)
    db.session.refresh(discount)
    assert discount.current_uses == 1


def test_duplicate_race_caught_by_unique_constraint(vendor, machine, customer, monkeypatch):
    """Both requests pass the precheck; storage keeps exactly one."""
    discount = ledger.create_discount(vendor.id, machine.id, 'RACE', 10)
    ledger.redeem('RACE', customer.id, machine.id)

    monkeypatch.setattr(ledger, '_already_redeemed', lambda discount_id, customer_id: False)
    with pytest.raises(AlreadyRedeemed):
        ledger.redeem('RACE', customer.id, machine.id)

    db.session.refresh(discount)
    assert discount.current_uses == 1
    count = db.session.execute(db.select(db.func.count(DiscountRedemption.id))).scalar_one()
    assert count == 1


def test_proof_without_prior_redemption(app, vendor, machine, customer):
    discount = ledger.create_discount(vendor.id, machine.id, 'PROOF', 10)
    redemption, account = ledger.submit_proof(customer.id, machine.id, discount.id, '/uploads/proofs/a.jpg')
    assert redemption.status == 'approved'
    assert redemption.points_awarded == app.config['PROOF_POINTS']
    assert account.points_balance == account.lifetime_points == app.config['PROOF_POINTS']
    db.session.refresh(discount)
    assert discount.current_uses == 1


def test_proof_attached_to_existing_redemption_once(app, vendor, machine, customer):
    discount = ledger.create_discount(vendor.id, machine.id, 'ATTACH', 10, max_uses=1)
    ledger.redeem('ATTACH', customer.id, machine.id)

    redemption, account = ledger.submit_proof(customer.id, machine.id, discount.id, '/uploads/proofs/b.jpg')
    assert redemption.proof_image_url == '/uploads/proofs/b.jpg'
    assert redemption.status == 'approved'
    assert account.points_balance == app.config['PROOF_POINTS']

    with pytest.raises(AlreadyRedeemed):
        ledger.submit_proof(customer.id, machine.id, discount.id, '/uploads/proofs/c.jpg')
    assert ledger.get_account(customer.id, machine.id).points_balance == app.config['PROOF_POINTS']
    db.session.refresh(discount)
    assert discount.current_uses == 1


def test_proof_requires_image_and_matching_machine(vendor, machine, customer):
    other = make_machine(vendor, name='Gym')
    discount = ledger.create_discount(vendor.id, machine.id, 'WHERE', 10)
    with pytest.raises(BadRequest):
        ledger.submit_proof(customer.id, machine.id, discount.id, '')
    with pytest.raises(WrongMachine):
        ledger.submit_proof(customer.id, other.id, discount.id, '/uploads/proofs/d.jpg')
    with pytest.raises(DiscountNotFound):
        ledger.submit_proof(customer.id, machine.id, 9999, '/uploads/proofs/d.jpg')


def test_points_accumulate_per_machine(vendor, machine, customer):
    other = make_machine(vendor, name='Gym')
    ledger.award_points(customer.id, machine.id, 10)
    account = ledger.award_points(customer.id, machine.id, 5)
    ledger.award_points(customer.id, other.id, 3)

    assert account.points_balance == 15
    assert account.lifetime_points == 15
    rows = db.session.execute(db.select(LoyaltyAccount)).scalars().all()
    assert len(rows) == 2
    assert [a.points_balance for a in ledger.get_accounts(customer.id)] == [15, 3]


def test_award_points_rejects_non_positive(machine, customer):
    with pytest.raises(ValueError):
        ledger.award_points(customer.id, machine.id, 0)


def test_delete_discount(vendor, machine):
    discount = ledger.create_discount(vendor.id, machine.id, 'BYE', 10)
    ledger.delete_discount(machine.id, discount.id)
    assert ledger.list_discounts(machine.id) == []
    with pytest.raises(DiscountNotFound):
        ledger.delete_discount(machine.id, discount.id)


def test_list_redemptions_newest_first(vendor, machine, customer):
    other = make_machine(vendor, name='Gym')
    ledger.create_discount(vendor.id, machine.id, 'OLDER', 5)
    ledger.create_discount(vendor.id, other.id, 'NEWER', 5)
    _, older = ledger.redeem('OLDER', customer.id, machine.id)
    _, newer = ledger.redeem('NEWER', customer.id, other.id)
    older.redeemed_at = utcnow() - timedelta(days=1)
    db.session.commit()
    stranger = make_user('stranger@example.com', ROLE_CUSTOMER)

    history = ledger.list_redemptions(customer.id)
    assert [r.id for r in history] == [newer.id, older.id]
    assert [r.to_dict()['machine']['name'] for r in history] == ['Gym', machine.machine_name]
    assert ledger.list_redemptions(stranger.id) == []
