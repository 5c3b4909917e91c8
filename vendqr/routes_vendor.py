import io
import logging
import os

from flask import Blueprint, current_app, g, jsonify, request, send_file

from .decorators import require_vendor
from .errors import BadRequest, MachineNotFound, PollNotFound
from .models import db, Poll, VendingMachine
from .services import ledger, polls, qr, sessions
from .time_utils import parse_iso_datetime, to_utc_z

logger = logging.getLogger(__name__)

bp = Blueprint('vendor', __name__)


def _owned_machine(machine_id: int) -> VendingMachine:
    machine = db.session.get(VendingMachine, machine_id)
    if machine is None or machine.vendor_id != g.identity.id:
        raise MachineNotFound()
    return machine


def _owned_poll(poll_id: int) -> Poll:
    poll = db.session.get(Poll, poll_id)
    if poll is None or poll.vendor_id != g.identity.id:
        raise PollNotFound()
    return poll


def _datetime_field(data: dict, key: str):
    raw = data.get(key)
    if raw in (None, ''):
        return None
    try:
        return parse_iso_datetime(raw)
    except (TypeError, ValueError) as exc:
        raise BadRequest(f'{key} must be an ISO 8601 datetime') from exc


def _optional_int(data: dict, key: str):
    raw = data.get(key)
    if raw in (None, ''):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise BadRequest(f'{key} must be an integer') from exc


def _issue_qr(machine: VendingMachine) -> None:
    issued = qr.generate(machine.id)
    machine.qr_code_data = issued['token']
    machine.qr_code_image_url = qr.render_data_url(issued['token'])


# ---------------------------------------------------------------------------
# machines

@bp.post('/machines')
@require_vendor
def create_machine():
    data = request.get_json(silent=True) or {}
    name = (data.get('machineName') or data.get('name') or '').strip()
    if not 2 <= len(name) <= 255:
        raise BadRequest('machineName must be between 2 and 255 characters')
    location = (data.get('location') or '').strip() or None

    machine = VendingMachine(vendor_id=g.identity.id, machine_name=name, location=location, is_active=True)
    db.session.add(machine)
    # the QR payload needs the machine id
    db.session.flush()
    _issue_qr(machine)
    db.session.commit()
    logger.info('vendor %s created machine %s', g.identity.id, machine.id)
    return jsonify({
        'success': True,
        'message': 'Vending machine created',
        'data': {'machine': machine.to_dict(with_qr=True)},
    }), 201


@bp.get('/machines')
@require_vendor
def list_machines():
    machines = db.session.execute(
        db.select(VendingMachine)
        .filter_by(vendor_id=g.identity.id)
        .order_by(VendingMachine.created_at.desc(), VendingMachine.id.desc())
    ).scalars().all()
    return jsonify({
        'success': True,
        'data': {'machines': [m.to_dict() for m in machines], 'count': len(machines)},
    })


@bp.get('/machines/<int:machine_id>/qr')
@require_vendor
def machine_qr(machine_id: int):
    machine = _owned_machine(machine_id)
    if not machine.qr_code_data:
        _issue_qr(machine)
        db.session.commit()

    accept = request.headers.get('Accept', '')
    if 'image/png' in accept:
        path = os.path.join(current_app.config['QR_IMAGE_DIR'], f'machine_{machine.id}.png')
        qr.render_image(machine.qr_code_data, path)
        return send_file(
            io.BytesIO(qr.make_qr_bytes(machine.qr_code_data)), mimetype='image/png',
            as_attachment=False, download_name=f'machine_{machine.id}.png', etag=False,
        )
    return jsonify({
        'success': True,
        'data': {
            'machineId': machine.id,
            'qrCodeData': machine.qr_code_data,
            'qrCodeImageUrl': machine.qr_code_image_url,
        },
    })


@bp.post('/machines/<int:machine_id>/qr/regenerate')
@require_vendor
def regenerate_qr(machine_id: int):
    machine = _owned_machine(machine_id)
    _issue_qr(machine)
    db.session.commit()
    logger.info('QR code regenerated for machine %s', machine.id)
    return jsonify({
        'success': True,
        'message': 'QR code regenerated',
        'data': {'machine': machine.to_dict(with_qr=True)},
    })


@bp.get('/machines/<int:machine_id>/sessions')
@require_vendor
def machine_sessions(machine_id: int):
    machine = _owned_machine(machine_id)
    active = sessions.get_active_sessions(machine.id)
    return jsonify({
        'success': True,
        'data': {'sessions': [s.to_dict() for s in active], 'count': len(active)},
    })


# ---------------------------------------------------------------------------
# discount codes

@bp.post('/machines/<int:machine_id>/discounts')
@require_vendor
def create_discount(machine_id: int):
    machine = _owned_machine(machine_id)
    data = request.get_json(silent=True) or {}
    if data.get('discountValue') is None:
        raise BadRequest('discountValue is required')
    discount = ledger.create_discount(
        vendor_id=g.identity.id,
        machine_id=machine.id,
        code=data.get('code'),
        discount_value=data.get('discountValue'),
        discount_type=data.get('discountType') or 'percentage',
        product_id=_optional_int(data, 'productId'),
        max_uses=_optional_int(data, 'maxUses'),
        valid_from=_datetime_field(data, 'validFrom'),
        valid_until=_datetime_field(data, 'validUntil'),
    )
    return jsonify({
        'success': True,
        'message': 'Discount code created',
        'data': {'discount': discount.to_dict()},
    }), 201


@bp.get('/machines/<int:machine_id>/discounts')
@require_vendor
def list_discounts(machine_id: int):
    machine = _owned_machine(machine_id)
    discounts = ledger.list_discounts(machine.id)
    return jsonify({
        'success': True,
        'data': {'discounts': [d.to_dict() for d in discounts], 'count': len(discounts)},
    })


@bp.delete('/machines/<int:machine_id>/discounts/<int:discount_id>')
@require_vendor
def delete_discount(machine_id: int, discount_id: int):
    machine = _owned_machine(machine_id)
    ledger.delete_discount(machine.id, discount_id)
    return jsonify({'success': True, 'message': 'Discount code deleted'})


# ---------------------------------------------------------------------------
# polls

@bp.post('/machines/<int:machine_id>/polls')
@require_vendor
def create_poll(machine_id: int):
    machine = _owned_machine(machine_id)
    data = request.get_json(silent=True) or {}
    poll = polls.create_poll(
        vendor_id=g.identity.id,
        machine_id=machine.id,
        question=data.get('question'),
        options=data.get('options'),
        expires_at=_datetime_field(data, 'expiresAt'),
    )
    return jsonify({
        'success': True,
        'message': 'Poll created',
        'data': {'poll': {
            'id': poll.id,
            'question': poll.question,
            'isActive': poll.is_active,
            'expiresAt': to_utc_z(poll.expires_at),
            'options': [o.to_dict() for o in poll.options],
        }},
    }), 201


@bp.get('/machines/<int:machine_id>/polls')
@require_vendor
def list_polls(machine_id: int):
    machine = _owned_machine(machine_id)
    items = polls.list_polls(machine.id)
    return jsonify({'success': True, 'data': {'polls': items, 'count': len(items)}})


@bp.get('/polls/<int:poll_id>/results')
@require_vendor
def poll_results(poll_id: int):
    poll = _owned_poll(poll_id)
    rows = polls.results(poll.id)
    return jsonify({
        'success': True,
        'data': {
            'poll': {'id': poll.id, 'question': poll.question, 'isActive': poll.is_active},
            'results': rows,
            'totalVotes': sum(r['totalVotes'] for r in rows),
        },
    })


@bp.post('/polls/<int:poll_id>/close')
@require_vendor
def close_poll(poll_id: int):
    poll = polls.close_poll(_owned_poll(poll_id))
    return jsonify({
        'success': True,
        'message': 'Poll closed',
        'data': {'poll': {'id': poll.id, 'isActive': poll.is_active, 'closedAt': to_utc_z(poll.closed_at)}},
    })
