import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from ..errors import BadRequest

ALLOWED_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.webp', '.heic'}


def save_proof_image(file_storage) -> str:
    """Store an uploaded proof-of-purchase image and return its public path."""
    if file_storage is None or not file_storage.filename:
        raise BadRequest('Proof of purchase image is required')
    ext = os.path.splitext(secure_filename(file_storage.filename))[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise BadRequest('Proof image must be a PNG, JPEG, GIF, WEBP or HEIC file')
    folder = os.path.join(current_app.config['UPLOAD_DIR'], 'proofs')
    os.makedirs(folder, exist_ok=True)
    name = f'{uuid.uuid4().hex}{ext}'
    file_storage.save(os.path.join(folder, name))
    return f'/uploads/proofs/{name}'


def discard_proof_image(url: str) -> None:
    """Remove an image stored by save_proof_image; used when the submission is refused."""
    name = os.path.basename(url or '')
    if not name:
        return
    path = os.path.join(current_app.config['UPLOAD_DIR'], 'proofs', name)
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
