from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, UniqueConstraint

from .time_utils import utcnow, to_utc_z

db = SQLAlchemy()

ROLE_VENDOR = 'vendor'
ROLE_CUSTOMER = 'customer'


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True)
    password_hash = db.Column(db.String(255))
    full_name = db.Column(db.String(255))
    phone = db.Column(db.String(32))
    role = db.Column(db.String(20), nullable=False, default=ROLE_CUSTOMER)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('vendor', 'customer')", name='ck_users_role'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'fullName': self.full_name,
            'role': self.role,
        }

    def to_profile(self):
        return {
            'id': self.id,
            'email': self.email,
            'fullName': self.full_name,
            'phone': self.phone,
            'createdAt': to_utc_z(self.created_at),
        }


class VendingMachine(db.Model):
    __tablename__ = 'vending_machines'

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    machine_name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(500))
    qr_code_data = db.Column(db.Text)
    qr_code_image_url = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self, with_qr=False):
        out = {
            'id': self.id,
            'name': self.machine_name,
            'location': self.location,
            'isActive': self.is_active,
            'createdAt': to_utc_z(self.created_at),
        }
        if with_qr:
            out['qrCodeData'] = self.qr_code_data
            out['qrCodeImageUrl'] = self.qr_code_image_url
        return out


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(10, 2))
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class CustomerSession(db.Model):
    __tablename__ = 'customer_sessions'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('vending_machines.id', ondelete='CASCADE'), nullable=False, index=True)
    session_token = db.Column(db.String(64), nullable=False, unique=True)
    qr_code_scanned = db.Column(db.String(500), nullable=False)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.Text)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    customer = db.relationship('User', lazy='joined')

    def to_dict(self):
        out = {
            'id': self.id,
            'customerId': self.customer_id,
            'machineId': self.machine_id,
            'expiresAt': to_utc_z(self.expires_at),
            'createdAt': to_utc_z(self.created_at),
        }
        if self.customer is not None:
            out['email'] = self.customer.email
            out['role'] = self.customer.role
            out['fullName'] = self.customer.full_name
        return out


class DiscountCode(db.Model):
    __tablename__ = 'discount_codes'

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('vending_machines.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'))
    code = db.Column(db.String(50), nullable=False, unique=True)
    discount_type = db.Column(db.String(20), nullable=False, default='percentage')
    discount_value = db.Column(db.Numeric(10, 2), nullable=False)
    max_uses = db.Column(db.Integer)
    current_uses = db.Column(db.Integer, nullable=False, default=0)
    valid_from = db.Column(db.DateTime)
    valid_until = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("discount_type IN ('percentage', 'fixed')", name='ck_discount_type'),
        CheckConstraint('discount_value > 0', name='ck_discount_value'),
        CheckConstraint('current_uses >= 0', name='ck_discount_current_uses'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'machineId': self.machine_id,
            'productId': self.product_id,
            'code': self.code,
            'discountType': self.discount_type,
            'discountValue': float(self.discount_value),
            'maxUses': self.max_uses,
            'currentUses': self.current_uses,
            'validFrom': to_utc_z(self.valid_from),
            'validUntil': to_utc_z(self.valid_until),
            'isActive': self.is_active,
        }


class DiscountRedemption(db.Model):
    __tablename__ = 'discount_redemptions'

    id = db.Column(db.Integer, primary_key=True)
    discount_code_id = db.Column(db.Integer, db.ForeignKey('discount_codes.id', ondelete='CASCADE'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('vending_machines.id', ondelete='CASCADE'), nullable=False, index=True)
    proof_image_url = db.Column(db.String(500))
    status = db.Column(db.String(20), nullable=False, default='pending')
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    redeemed_at = db.Column(db.DateTime, default=utcnow)

    discount_code = db.relationship('DiscountCode', lazy='joined')
    machine = db.relationship('VendingMachine', lazy='joined')

    __table_args__ = (
        UniqueConstraint('discount_code_id', 'customer_id', name='uq_redemption_code_customer'),
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name='ck_redemption_status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'discountId': self.discount_code_id,
            'code': self.discount_code.code if self.discount_code else None,
            'status': self.status,
            'pointsAwarded': self.points_awarded,
            'proofImageUrl': self.proof_image_url,
            'redeemedAt': to_utc_z(self.redeemed_at),
            'machine': {
                'id': self.machine_id,
                'name': self.machine.machine_name if self.machine else None,
                'location': self.machine.location if self.machine else None,
            },
        }


class LoyaltyAccount(db.Model):
    __tablename__ = 'loyalty_points'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('vending_machines.id', ondelete='CASCADE'), nullable=False, index=True)
    points_balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    machine = db.relationship('VendingMachine', lazy='joined')

    __table_args__ = (
        UniqueConstraint('customer_id', 'machine_id', name='uq_loyalty_customer_machine'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'machineId': self.machine_id,
            'machineName': self.machine.machine_name if self.machine else None,
            'location': self.machine.location if self.machine else None,
            'pointsBalance': self.points_balance,
            'lifetimePoints': self.lifetime_points,
            'updatedAt': to_utc_z(self.updated_at),
        }


class Poll(db.Model):
    __tablename__ = 'polls'

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('vending_machines.id', ondelete='CASCADE'), nullable=False, index=True)
    question = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime)
    closed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    options = db.relationship(
        'PollOption', order_by='PollOption.display_order', cascade='all, delete-orphan', lazy='selectin'
    )


class PollOption(db.Model):
    __tablename__ = 'poll_options'

    id = db.Column(db.Integer, primary_key=True)
    poll_id = db.Column(db.Integer, db.ForeignKey('polls.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'))
    option_text = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.Text)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            'id': self.id,
            'text': self.option_text,
            'imageUrl': self.image_url,
            'productId': self.product_id,
            'displayOrder': self.display_order,
        }


class PollVote(db.Model):
    __tablename__ = 'poll_votes'

    id = db.Column(db.Integer, primary_key=True)
    poll_id = db.Column(db.Integer, db.ForeignKey('polls.id', ondelete='CASCADE'), nullable=False, index=True)
    poll_option_id = db.Column(db.Integer, db.ForeignKey('poll_options.id', ondelete='CASCADE'), nullable=False, index=True)
    # exactly one of customer_id / session_id is set
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), index=True)
    session_id = db.Column(db.Integer, db.ForeignKey('customer_sessions.id', ondelete='SET NULL'), index=True)
    vote_type = db.Column(db.String(10), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('poll_option_id', 'customer_id', name='uq_vote_option_customer'),
        UniqueConstraint('poll_option_id', 'session_id', name='uq_vote_option_session'),
        CheckConstraint("vote_type IN ('like', 'dislike')", name='ck_vote_type'),
    )
