import base64
import io
import json
import logging
import os
import uuid

import qrcode
from flask import current_app
from PIL import Image

from ..errors import DecryptionError, ExpiredPayload, InvalidPayload
from ..time_utils import epoch_ms
from .envelope import open_token, seal

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
IMAGE_WIDTH = 300
IMAGE_MARGIN = 2


def max_age_ms() -> int:
    return current_app.config.get('QR_MAX_AGE_DAYS', 365) * DAY_MS


def generate(machine_id: int) -> dict:
    """Seal ``{machineId, timestamp, uniqueId}`` for a machine."""
    payload = {
        'machineId': machine_id,
        'timestamp': epoch_ms(),
        'uniqueId': str(uuid.uuid4()),
    }
    token = seal(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    return {'token': token, 'payload': payload}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate(token: str, now_ms: int | None = None) -> dict:
    """
    Open a scanned token and check its shape and age.

    Raises InvalidPayload for anything that does not decrypt to a well formed
    payload, ExpiredPayload when it is older than QR_MAX_AGE_DAYS.
    """
    try:
        payload = json.loads(open_token(token).decode('utf-8'))
    except (DecryptionError, UnicodeDecodeError, ValueError) as exc:
        raise InvalidPayload() from exc

    if not isinstance(payload, dict):
        raise InvalidPayload('Invalid QR code format')
    machine_id = payload.get('machineId')
    ts = payload.get('timestamp')
    unique_id = payload.get('uniqueId')
    if not _is_int(machine_id) or machine_id <= 0 or not _is_int(ts) or not isinstance(unique_id, str):
        raise InvalidPayload('Invalid QR code format')
    try:
        uuid.UUID(unique_id)
    except ValueError as exc:
        raise InvalidPayload('Invalid QR code format') from exc

    now_ms = epoch_ms() if now_ms is None else now_ms
    if now_ms - ts > max_age_ms():
        raise ExpiredPayload()
    return {'machineId': machine_id, 'timestamp': ts, 'uniqueId': unique_id}


def _make_image(data: str) -> Image.Image:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        border=IMAGE_MARGIN,
        box_size=1,
    )
    qr.add_data(data)
    qr.make(fit=True)
    modules = qr.modules_count + 2 * IMAGE_MARGIN
    qr.box_size = max(1, IMAGE_WIDTH // modules)
    img = qr.make_image(fill_color='black', back_color='white').get_image().convert('RGB')
    if img.size != (IMAGE_WIDTH, IMAGE_WIDTH):
        img = img.resize((IMAGE_WIDTH, IMAGE_WIDTH), Image.NEAREST)
    return img


def make_qr_bytes(data: str) -> bytes:
    """Return QR PNG bytes for the provided token."""
    img = _make_image(data)
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def render_image(data: str, path: str) -> str:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'wb') as f:
        f.write(make_qr_bytes(data))
    return path


def render_data_url(data: str) -> str:
    return 'data:image/png;base64,' + base64.b64encode(make_qr_bytes(data)).decode('ascii')


def decode_image(data: bytes) -> str | None:
    """Read the QR text out of a photo; None when no code is found."""
    import numpy as np
    import cv2

    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise InvalidPayload('Uploaded file is not an image')
    detector = cv2.QRCodeDetector()
    val, _points, _ = detector.detectAndDecode(img)
    return val or None
