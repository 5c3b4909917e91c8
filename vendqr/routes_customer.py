from flask import Blueprint, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from .decorators import require_customer_session, require_registered_customer
from .errors import BadRequest, DomainError, LoyaltyNotFound, MachineNotFound, ProfileNotFound, WrongMachine
from .models import db, User, VendingMachine, ROLE_CUSTOMER
from .services import ledger, polls
from .services.uploads import discard_proof_image, save_proof_image

bp = Blueprint('customer', __name__)


def _int_field(value, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise BadRequest(f'{name} must be an integer') from exc


@bp.get('/machine')
@require_customer_session
def machine_info():
    machine = db.session.get(VendingMachine, g.identity.machine_id)
    if machine is None:
        raise MachineNotFound()
    return jsonify({'success': True, 'data': {'machine': machine.to_dict()}})


# ---------------------------------------------------------------------------
# polls

@bp.get('/polls')
@require_customer_session
def list_polls():
    voter = polls.voter_for(g.identity.customer_id, g.identity.session_id)
    items = polls.active_polls(g.identity.machine_id, voter)
    return jsonify({'success': True, 'data': {'polls': items, 'count': len(items)}})


@bp.post('/polls/<int:poll_id>/vote')
@require_customer_session
def vote(poll_id: int):
    data = request.get_json(silent=True) or {}
    option_id = _int_field(data.get('optionId', data.get('pollOptionId')), 'optionId')
    vote_type = data.get('voteType') or 'like'
    voter = polls.voter_for(g.identity.customer_id, g.identity.session_id)
    ballot = polls.vote(poll_id, option_id, voter, vote_type, machine_id=g.identity.machine_id)
    return jsonify({
        'success': True,
        'message': 'Vote recorded successfully',
        'data': {'vote': {'id': ballot.id, 'optionId': ballot.poll_option_id, 'voteType': ballot.vote_type}},
    })


# ---------------------------------------------------------------------------
# discounts

@bp.post('/discounts/redeem')
@require_registered_customer('Please register to redeem discount codes')
def redeem_discount():
    data = request.get_json(silent=True) or {}
    code = data.get('code')
    if not isinstance(code, str) or not code.strip():
        raise BadRequest('code is required')
    discount, redemption = ledger.redeem(code, g.identity.customer_id, g.identity.machine_id)
    return jsonify({
        'success': True,
        'message': 'Discount code redeemed',
        'data': {
            'redemptionId': redemption.id,
            'code': discount.code,
            'discountType': discount.discount_type,
            'discountValue': float(discount.discount_value),
            'productId': discount.product_id,
        },
    })


@bp.post('/redemptions/submit')
@require_registered_customer('Please register to submit proof of purchase')
def submit_redemption():
    # points accrue at the machine the session was opened on
    machine_id = g.identity.machine_id
    if request.form.get('machineId') not in (None, ''):
        if _int_field(request.form.get('machineId'), 'machineId') != machine_id:
            raise WrongMachine('Proof of purchase must be submitted at the machine you scanned')
    discount_id = _int_field(request.form.get('discountId'), 'discountId')
    proof_url = save_proof_image(request.files.get('proofImage'))
    try:
        redemption, account = ledger.submit_proof(g.identity.customer_id, machine_id, discount_id, proof_url)
    except (DomainError, SQLAlchemyError):
        discard_proof_image(proof_url)
        raise
    return jsonify({
        'success': True,
        'message': 'Proof of purchase accepted',
        'data': {
            'redemptionId': redemption.id,
            'status': redemption.status,
            'pointsAwarded': redemption.points_awarded,
            'totalPoints': account.points_balance,
            'totalLifetimePoints': account.lifetime_points,
        },
    }), 201


# ---------------------------------------------------------------------------
# loyalty

@bp.get('/loyalty')
@require_registered_customer('Please register to view loyalty points')
def loyalty():
    accounts = ledger.get_accounts(g.identity.customer_id)
    return jsonify({
        'success': True,
        'data': {
            'loyaltyAccounts': [a.to_dict() for a in accounts],
            'totalPoints': sum(a.points_balance for a in accounts),
            'totalLifetimePoints': sum(a.lifetime_points for a in accounts),
            'count': len(accounts),
        },
    })


@bp.get('/loyalty/<int:machine_id>')
@require_registered_customer('Please register to view loyalty points')
def loyalty_for_machine(machine_id: int):
    account = ledger.get_account(g.identity.customer_id, machine_id)
    if account is None:
        raise LoyaltyNotFound()
    return jsonify({'success': True, 'data': {'loyalty': account.to_dict()}})


# ---------------------------------------------------------------------------
# history and profile

@bp.get('/redemptions')
@require_registered_customer('Please register to view redemption history')
def redemption_history():
    items = [r.to_dict() for r in ledger.list_redemptions(g.identity.customer_id)]
    return jsonify({'success': True, 'data': {'redemptions': items, 'count': len(items)}})


@bp.get('/profile')
@require_registered_customer('Please register to view profile')
def profile():
    user = db.session.get(User, g.identity.customer_id)
    if user is None or user.role != ROLE_CUSTOMER:
        raise ProfileNotFound()
    return jsonify({'success': True, 'data': {'profile': user.to_profile()}})
