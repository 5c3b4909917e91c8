#!/usr/bin/env python3
import os, sys, json, jwt

# Usage: python scripts/check_jwt.py <VENDOR_JWT> [KEY_FILE|-]
# HS* (default JWT_ALG=HS256): key is env JWT_SECRET, else SECRET_KEY.
# RS*: key file argument, else env JWT_PUBLIC_KEY, else jwt.pub in CWD.


def load_key(alg: str, path_hint: str):
    if path_hint and path_hint != '-':
        with open(path_hint, 'r') as f:
            return f.read()
    if alg.startswith('HS'):
        return os.environ.get('JWT_SECRET') or os.environ.get('SECRET_KEY')
    k = os.environ.get('JWT_PUBLIC_KEY')
    if k:
        return k
    try:
        with open('jwt.pub', 'r') as f:
            return f.read()
    except OSError:
        return None


if len(sys.argv) < 2:
    print("Usage: check_jwt.py <VENDOR_JWT> [KEY_FILE|-]")
    sys.exit(1)

raw = sys.argv[1].strip()
alg = os.environ.get('JWT_ALG', 'HS256')
key = load_key(alg, sys.argv[2].strip() if len(sys.argv) > 2 else '-')
if not key:
    print("ERROR: no verification key available")
    sys.exit(1)

try:
    payload = jwt.decode(raw, key, algorithms=[alg], options={'require': ['exp', 'id']})
except jwt.InvalidTokenError as e:
    print("ERROR:", e)
    sys.exit(1)

print(json.dumps(payload, indent=2, sort_keys=True))
