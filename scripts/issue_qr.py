import os
import sys
import base64
import requests

# Create a machine (or regenerate its QR) through the vendor API and save the PNG.
#   VENDOR_EMAIL=... VENDOR_PASSWORD=... MACHINE_NAME="Gym floor 2" python scripts/issue_qr.py
#   MACHINE_ID=42 WANT_PNG=1 python scripts/issue_qr.py

BASE_URL = os.environ.get('BASE_URL', 'http://localhost:5000')
VENDOR_EMAIL = os.environ.get('VENDOR_EMAIL')
VENDOR_PASSWORD = os.environ.get('VENDOR_PASSWORD')

if not VENDOR_EMAIL or not VENDOR_PASSWORD:
    print('Missing VENDOR_EMAIL / VENDOR_PASSWORD in env')
    sys.exit(1)

r = requests.post(f"{BASE_URL}/api/auth/vendor/login",
                  json={'email': VENDOR_EMAIL, 'password': VENDOR_PASSWORD}, timeout=10)
if r.status_code != 200:
    print('Login error:', r.status_code, r.text)
    sys.exit(1)
headers = {'Authorization': f"Bearer {r.json()['data']['token']}"}

machine_id = os.environ.get('MACHINE_ID')
if machine_id:
    r = requests.post(f"{BASE_URL}/api/vendor/machines/{machine_id}/qr/regenerate", headers=headers, timeout=10)
else:
    payload = {
        'machineName': os.environ.get('MACHINE_NAME', 'New machine'),
        'location': os.environ.get('MACHINE_LOCATION'),
    }
    r = requests.post(f"{BASE_URL}/api/vendor/machines", headers=headers, json=payload, timeout=10)
if r.status_code not in (200, 201):
    print('Error:', r.status_code, r.text)
    sys.exit(1)
machine = r.json()['data']['machine']
print('machine id:', machine['id'])
print('qrData:', machine['qrCodeData'])

out = os.environ.get('OUT', f"machine_{machine['id']}.png")
# If WANT_PNG=1, request image directly
if os.environ.get('WANT_PNG', '0') == '1':
    r = requests.get(f"{BASE_URL}/api/vendor/machines/{machine['id']}/qr",
                     headers={**headers, 'Accept': 'image/png'}, timeout=10)
    if r.status_code != 200:
        print('Error:', r.status_code, r.text)
        sys.exit(1)
    with open(out, 'wb') as f:
        f.write(r.content)
else:
    data_url = machine['qrCodeImageUrl']
    with open(out, 'wb') as f:
        f.write(base64.b64decode(data_url.split(',', 1)[1]))
print('PNG saved to', out)
