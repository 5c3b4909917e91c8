import logging
import re

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError

from .decorators import require_customer_session, require_identity
from .errors import (
    AlreadyLinked, BadRequest, Conflict, DomainError, MachineInactive, MachineNotFound, Unauthorized,
)
from .models import db, User, VendingMachine, ROLE_CUSTOMER, ROLE_VENDOR
from .services import qr, sessions
from .services.auth_gate import VendorIdentity
from .services.passwords import hash_password, verify_password
from .services.rate_limit import check_rate_ip
from .services.tokens import sign_vendor_jwt
from .time_utils import to_utc_z

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def _credentials(data: dict) -> tuple[str, str]:
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not _EMAIL_RE.match(email):
        raise BadRequest('A valid email is required')
    if not password:
        raise BadRequest('Password is required')
    return email, password


def _create_user(email: str, password: str, full_name: str | None, role: str) -> User:
    try:
        password_hash = hash_password(password)
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc
    user = User(email=email, password_hash=password_hash, full_name=full_name, role=role)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict('Email already registered') from exc
    return user


def _check_login(email: str, password: str, role: str) -> User:
    user = db.session.execute(db.select(User).filter_by(email=email)).scalar_one_or_none()
    if user is None or user.role != role or not verify_password(password, user.password_hash):
        raise Unauthorized('Invalid email or password')
    return user


# ---------------------------------------------------------------------------
# vendors

@bp.post('/vendor/register')
def vendor_register():
    data = request.get_json(silent=True) or {}
    email, password = _credentials(data)
    full_name = (data.get('fullName') or '').strip()
    if len(full_name) < 2:
        raise BadRequest('fullName is required')
    user = _create_user(email, password, full_name, ROLE_VENDOR)
    token = sign_vendor_jwt(user.id, user.email, user.role)
    return jsonify({
        'success': True,
        'message': 'Vendor registered successfully',
        'data': {'user': user.to_dict(), 'token': token},
    }), 201


@bp.post('/vendor/login')
def vendor_login():
    email, password = _credentials(request.get_json(silent=True) or {})
    user = _check_login(email, password, ROLE_VENDOR)
    token = sign_vendor_jwt(user.id, user.email, user.role)
    return jsonify({
        'success': True,
        'message': 'Login successful',
        'data': {'user': user.to_dict(), 'token': token},
    })


# ---------------------------------------------------------------------------
# customers

def _qr_login(qr_data: str):
    check_rate_ip(request.remote_addr or '0.0.0.0')
    try:
        payload = qr.validate(qr_data)
        machine = db.session.get(VendingMachine, payload['machineId'])
        if machine is None:
            raise MachineNotFound()
        if not machine.is_active:
            raise MachineInactive()
    except DomainError as exc:
        logger.info('QR login rejected: %s', exc.code)
        raise

    session = sessions.create(
        machine_id=machine.id,
        scanned_token=qr_data,
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent'),
    )
    return jsonify({
        'success': True,
        'message': 'QR login successful',
        'data': {
            'sessionToken': session.session_token,
            'machine': {'id': machine.id, 'name': machine.machine_name, 'location': machine.location},
            'expiresAt': to_utc_z(session.expires_at),
        },
    })


@bp.post('/customer/qr-login')
def customer_qr_login():
    data = request.get_json(silent=True) or {}
    qr_data = data.get('qrData')
    if not isinstance(qr_data, str) or not qr_data.strip():
        raise BadRequest('qrData is required')
    return _qr_login(qr_data.strip())


@bp.post('/customer/qr-login/image')
def customer_qr_login_image():
    # Accept multipart/form-data with file field 'image'
    file = request.files.get('image')
    if file is None:
        raise BadRequest('Image file is required')
    data = file.read()
    if not data:
        raise BadRequest('Image file is empty')
    qr_data = qr.decode_image(data)
    if not qr_data:
        raise BadRequest('No QR code found in image')
    return _qr_login(qr_data)


@bp.post('/customer/register')
@require_customer_session
def customer_register():
    data = request.get_json(silent=True) or {}
    if g.identity.is_registered and current_app.config.get('SESSION_RELINK_POLICY') != sessions.RELINK_OVERWRITE:
        raise AlreadyLinked()
    email, password = _credentials(data)
    full_name = (data.get('fullName') or '').strip() or None
    user = _create_user(email, password, full_name, ROLE_CUSTOMER)
    session = sessions.link_to_customer(g.identity.token, user.id)
    return jsonify({
        'success': True,
        'message': 'Account created and linked to this session',
        'data': {'user': user.to_dict(), 'session': session.to_dict()},
    }), 201


@bp.post('/customer/login')
@require_customer_session
def customer_login():
    email, password = _credentials(request.get_json(silent=True) or {})
    user = _check_login(email, password, ROLE_CUSTOMER)
    session = sessions.link_to_customer(g.identity.token, user.id)
    return jsonify({
        'success': True,
        'message': 'Session linked to your account',
        'data': {'user': user.to_dict(), 'session': session.to_dict()},
    })


# ---------------------------------------------------------------------------

@bp.get('/verify')
@require_identity
def verify():
    identity = g.identity
    if isinstance(identity, VendorIdentity):
        data = {
            'type': 'vendor',
            'user': {'id': identity.id, 'email': identity.email,
                     'fullName': identity.full_name, 'role': identity.role},
        }
    else:
        data = {
            'type': 'customer',
            'sessionId': identity.session_id,
            'machineId': identity.machine_id,
            'customerId': identity.customer_id,
            'expiresAt': to_utc_z(identity.expires_at),
        }
    return jsonify({'success': True, 'data': data})
