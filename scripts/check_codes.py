#!/usr/bin/env python3
import sys, os, json, time, pathlib

# Usage: python scripts/check_codes.py <QR_DATA> [QR_ENCRYPTION_KEY]
# Opens a machine QR token offline and reports its payload and age.
# Key falls back to env QR_ENCRYPTION_KEY; QR_KEY_DERIVATION picks truncate|hkdf.

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vendqr.errors import DecryptionError
from vendqr.services.envelope import derive_key, open_token


def err(msg):
    print(f"ERROR: {msg}")
    sys.exit(1)


if len(sys.argv) < 2:
    err("Usage: check_codes.py <QR_DATA> [QR_ENCRYPTION_KEY]")

token = sys.argv[1].strip()
secret = sys.argv[2].strip() if len(sys.argv) > 2 else os.environ.get('QR_ENCRYPTION_KEY')
if not secret:
    err("no key (argument or env QR_ENCRYPTION_KEY)")
key = derive_key(secret, os.environ.get('QR_KEY_DERIVATION', 'truncate'))

try:
    payload = json.loads(open_token(token, key=key).decode('utf-8'))
except DecryptionError as e:
    err(f"decrypt: {e}")
except ValueError as e:
    err(f"parse: {e}")

if not isinstance(payload, dict):
    err("payload is not an object")

max_age_days = int(os.environ.get('QR_MAX_AGE_DAYS', '365'))
ts = payload.get('timestamp')
age_s = int(time.time() - ts / 1000) if isinstance(ts, int) else None
print({
    'machine_id': payload.get('machineId'),
    'unique_id': payload.get('uniqueId'),
    'ts_ms': ts,
    'age_s': age_s,
    'cipher': 'gcm' if len(token.partition(':')[0]) == 24 else 'cbc',
    f'stale_>{max_age_days}d': age_s is not None and age_s > max_age_days * 86400,
})
