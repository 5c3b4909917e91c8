"""Domain errors and their HTTP rendering.

Every failure a customer or vendor can trigger is a ``DomainError`` with a
stable ``code`` (for the frontend to branch on), a human-readable message,
an HTTP status and a coarse category.
"""
import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

CLIENT_ERROR = 'client_error'
NOT_FOUND = 'not_found'
ALREADY_DONE = 'already_done'
UNAUTHORIZED = 'unauthorized'
SERVER_ERROR = 'server_error'


class DomainError(Exception):
    code = 'error'
    message = 'Request failed'
    status = 400
    category = CLIENT_ERROR

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {
            'success': False,
            'error': self.code,
            'message': self.message,
            'category': self.category,
        }


class DecryptionError(Exception):
    """Token could not be opened: malformed, wrong key or corrupted."""


# request shape

class BadRequest(DomainError):
    code = 'bad_request'
    message = 'Invalid request'


class Conflict(DomainError):
    code = 'conflict'
    message = 'Resource already exists'
    status = 409
    category = ALREADY_DONE


class RateLimited(DomainError):
    code = 'rate_limited'
    message = 'Too many requests, try again shortly'
    status = 429


# QR payload

class InvalidPayload(DomainError):
    code = 'invalid_qr'
    message = 'Invalid or corrupted QR code'


class ExpiredPayload(DomainError):
    code = 'expired_qr'
    message = 'QR code expired'


# machines

class MachineNotFound(DomainError):
    code = 'machine_not_found'
    message = 'Vending machine not found'
    status = 404
    category = NOT_FOUND


class MachineInactive(DomainError):
    code = 'machine_inactive'
    message = 'This vending machine is currently inactive'
    status = 403


# sessions / identity

class SessionNotFound(DomainError):
    code = 'session_not_found'
    message = 'Session not found'
    status = 404
    category = NOT_FOUND


class SessionExpired(DomainError):
    code = 'session_expired'
    message = 'Session expired, scan the machine QR code again'
    status = 401
    category = UNAUTHORIZED


class AlreadyLinked(DomainError):
    code = 'already_linked'
    message = 'Session is already linked to another account'
    status = 409
    category = ALREADY_DONE


class Unauthorized(DomainError):
    code = 'unauthorized'
    message = 'Invalid or expired token.'
    status = 401
    category = UNAUTHORIZED


class Forbidden(DomainError):
    code = 'forbidden'
    message = 'Access forbidden. Insufficient permissions.'
    status = 403
    category = UNAUTHORIZED


class RegistrationRequired(DomainError):
    code = 'registration_required'
    message = 'Please register to continue'
    status = 401
    category = UNAUTHORIZED


# discounts

class DiscountNotFound(DomainError):
    code = 'discount_not_found'
    message = 'Discount code not found'
    status = 404
    category = NOT_FOUND


class WrongMachine(DomainError):
    code = 'wrong_machine'
    message = 'This discount code is not valid for this machine'


class DiscountInactive(DomainError):
    code = 'discount_inactive'
    message = 'This discount code is no longer active'


class NotYetValid(DomainError):
    code = 'discount_not_yet_valid'
    message = 'This discount code is not valid yet'


class DiscountExpired(DomainError):
    code = 'discount_expired'
    message = 'This discount code has expired'


class LimitReached(DomainError):
    code = 'discount_limit_reached'
    message = 'This discount code has reached its usage limit'
    status = 409
    category = ALREADY_DONE


class AlreadyRedeemed(DomainError):
    code = 'already_redeemed'
    message = 'You have already redeemed this discount code'
    status = 409
    category = ALREADY_DONE


# customers

class ProfileNotFound(DomainError):
    code = 'profile_not_found'
    message = 'Profile not found'
    status = 404
    category = NOT_FOUND


# loyalty

class LoyaltyNotFound(DomainError):
    code = 'loyalty_not_found'
    message = 'No loyalty account found for this machine'
    status = 404
    category = NOT_FOUND


# polls

class PollNotFound(DomainError):
    code = 'poll_not_found'
    message = 'Poll not found'
    status = 404
    category = NOT_FOUND


class PollInactive(DomainError):
    code = 'poll_inactive'
    message = 'This poll is no longer active'


class PollExpired(DomainError):
    code = 'poll_expired'
    message = 'This poll has expired'


class InvalidOption(DomainError):
    code = 'invalid_option'
    message = 'Invalid poll option'


class AlreadyVoted(DomainError):
    code = 'already_voted'
    message = 'You have already voted on this option'
    status = 409
    category = ALREADY_DONE


def register_error_handlers(app):
    from .models import db

    @app.errorhandler(DomainError)
    def handle_domain_error(err: DomainError):
        return jsonify(err.to_dict()), err.status

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(err):
        db.session.rollback()
        logger.exception('storage failure on request')
        return jsonify({
            'success': False,
            'error': SERVER_ERROR,
            'message': 'Service temporarily unavailable',
            'category': SERVER_ERROR,
        }), 500

    @app.errorhandler(413)
    def handle_too_large(err):
        return jsonify({
            'success': False,
            'error': 'payload_too_large',
            'message': 'Uploaded file is too large',
            'category': CLIENT_ERROR,
        }), 413
