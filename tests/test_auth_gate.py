from datetime import timedelta

import pytest

from vendqr.errors import Unauthorized
from vendqr.models import db
from vendqr.services.auth_gate import (
    CustomerIdentity, VendorIdentity, authenticate, verify_customer_session, verify_vendor_credential,
)
from vendqr.services.tokens import sign_vendor_jwt
from vendqr.time_utils import utcnow


def test_vendor_credential_resolves(vendor):
    identity = authenticate(sign_vendor_jwt(vendor.id, vendor.email, vendor.role))
    assert isinstance(identity, VendorIdentity)
    assert identity.id == vendor.id
    assert identity.kind == 'vendor'


def test_customer_session_resolves(customer_session, customer):
    identity = authenticate(customer_session.session_token)
    assert isinstance(identity, CustomerIdentity)
    assert identity.customer_id == customer.id
    assert identity.email == customer.email
    assert identity.is_registered


def test_anonymous_session_resolves(anon_session):
    identity = authenticate(anon_session.session_token)
    assert identity.customer_id is None
    assert not identity.is_registered
    assert identity.machine_id == anon_session.machine_id


@pytest.mark.parametrize('token', [None, '', 'garbage', '00000000-0000-4000-8000-000000000000'])
def test_unknown_tokens_fail_uniformly(db_session, token):
    with pytest.raises(Unauthorized) as exc:
        authenticate(token)
    assert exc.value.message == 'Invalid or expired token.'
    assert exc.value.status == 401


def test_expired_jwt_falls_through(vendor):
    token = sign_vendor_jwt(vendor.id, vendor.email, vendor.role, ttl_min=-1)
    assert verify_vendor_credential(token) is None
    with pytest.raises(Unauthorized):
        authenticate(token)


def test_customer_user_cannot_hold_vendor_credential(customer):
    token = sign_vendor_jwt(customer.id, customer.email, 'vendor')
    assert verify_vendor_credential(token) is None


def test_expired_session_falls_through(anon_session):
    anon_session.expires_at = utcnow() - timedelta(seconds=1)
    db.session.commit()
    assert verify_customer_session(anon_session.session_token) is None
    with pytest.raises(Unauthorized):
        authenticate(anon_session.session_token)


def test_verifier_order_is_respected(vendor, anon_session):
    seen = []

    def first(token):
        seen.append('first')
        return None

    def second(token):
        seen.append('second')
        return VendorIdentity(id=vendor.id, email=vendor.email, role=vendor.role)

    def never(token):
        seen.append('never')
        return None

    identity = authenticate('anything', verifiers=(first, second, never))
    assert identity.id == vendor.id
    assert seen == ['first', 'second']
