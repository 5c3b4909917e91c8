from functools import wraps
import hmac

from flask import Blueprint, current_app, jsonify, request

from .errors import Unauthorized
from .services import sessions

bp = Blueprint('admin', __name__)


def require_admin_key(f):
    # Simple API-key auth
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = request.headers.get('X-Admin-Key') or ''
        expected = current_app.config.get('ADMIN_API_KEY') or ''
        if not expected or not hmac.compare_digest(api_key, expected):
            raise Unauthorized()
        return f(*args, **kwargs)
    return decorated


@bp.get('/ping')
def ping():
    return jsonify({'admin': 'ok'})


@bp.post('/sessions/purge')
@require_admin_key
def purge_sessions():
    deleted = sessions.delete_expired()
    return jsonify({'success': True, 'data': {'deleted': deleted}})


@bp.get('/customers/<int:customer_id>/sessions')
@require_admin_key
def customer_sessions(customer_id: int):
    return jsonify({
        'success': True,
        'data': {'customerId': customer_id, 'activeSessions': sessions.get_customer_session_count(customer_id)},
    })
