import os, sys, pathlib
from datetime import timedelta
# Ensure project root is on PYTHONPATH when running directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vendqr import create_app
from vendqr.models import db, User, VendingMachine, ROLE_VENDOR
from vendqr.services import ledger, polls, qr
from vendqr.services.passwords import hash_password
from vendqr.time_utils import utcnow

VENDOR_EMAIL = os.environ.get('SEED_VENDOR_EMAIL', 'vendor@example.com')
VENDOR_PASSWORD = os.environ.get('SEED_VENDOR_PASSWORD', 'password123')

app = create_app()
with app.app_context():
    vendor = db.session.execute(db.select(User).filter_by(email=VENDOR_EMAIL)).scalar_one_or_none()
    if vendor is None:
        vendor = User(email=VENDOR_EMAIL, password_hash=hash_password(VENDOR_PASSWORD),
                      full_name='Demo Vendor', role=ROLE_VENDOR)
        db.session.add(vendor)
        db.session.commit()

    machine = VendingMachine(vendor_id=vendor.id, machine_name='Lobby Snacks', location='Building A, ground floor')
    db.session.add(machine)
    db.session.flush()
    issued = qr.generate(machine.id)
    machine.qr_code_data = issued['token']
    machine.qr_code_image_url = qr.render_data_url(issued['token'])
    db.session.commit()

    code = f'SAVE10M{machine.id}'
    ledger.create_discount(vendor.id, machine.id, code, 10, max_uses=100,
                           valid_until=utcnow() + timedelta(days=30))
    polls.create_poll(vendor.id, machine.id, 'Which snack should we stock next?',
                      [{'text': 'Trail mix'}, {'text': 'Protein bar'}, {'text': 'Dark chocolate'}])

    out = qr.render_image(machine.qr_code_data, os.path.join('qr_codes', f'machine_{machine.id}.png'))
    print('vendor:', VENDOR_EMAIL, '/', VENDOR_PASSWORD)
    print('machine id:', machine.id)
    print('discount code:', code)
    print('qrData:', machine.qr_code_data)
    print('QR PNG:', out)
