"""Symmetric envelope for QR payloads.

Wire shape is ``<hex-iv>:<hex-ciphertext>`` with a single shared key:

* ``cbc`` - AES-256-CBC, PKCS7 padding, 16-byte IV (compatible with every
  QR code already printed).
* ``gcm`` - AES-256-GCM, 12-byte nonce, 16-byte tag appended to the
  ciphertext. Tampering is detected before any JSON is parsed.

``open_token`` tells the two apart by the IV length, so switching
``QR_CIPHER_MODE`` never invalidates codes issued under the other mode.
"""
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from flask import current_app

from ..errors import DecryptionError

KEY_LENGTH = 32
CBC_IV_LENGTH = 16
GCM_NONCE_LENGTH = 12
_HKDF_INFO = b'vendqr-qr-envelope'


def derive_key(secret: str, method: str = 'truncate') -> bytes:
    raw = secret.encode('utf-8')
    if method == 'hkdf':
        return HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=hashlib.sha256(_HKDF_INFO).digest(),
            info=_HKDF_INFO,
        ).derive(raw)
    if method != 'truncate':
        raise ValueError(f'unknown key derivation: {method}')
    return raw[:KEY_LENGTH].ljust(KEY_LENGTH, b'\0')


def _app_key() -> bytes:
    cfg = current_app.config
    return derive_key(cfg['QR_ENCRYPTION_KEY'], cfg.get('QR_KEY_DERIVATION', 'truncate'))


def seal(plaintext: bytes, key: bytes | None = None, mode: str | None = None) -> str:
    key = key or _app_key()
    mode = mode or current_app.config.get('QR_CIPHER_MODE', 'cbc')
    if mode == 'gcm':
        nonce = os.urandom(GCM_NONCE_LENGTH)
        ct = AESGCM(key).encrypt(nonce, plaintext, None)
        return f'{nonce.hex()}:{ct.hex()}'
    if mode != 'cbc':
        raise ValueError(f'unknown cipher mode: {mode}')
    iv = os.urandom(CBC_IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ct = encryptor.update(padded) + encryptor.finalize()
    return f'{iv.hex()}:{ct.hex()}'


def open_token(token: str, key: bytes | None = None) -> bytes:
    if not isinstance(token, str) or ':' not in token:
        raise DecryptionError('malformed token')
    iv_hex, _, ct_hex = token.partition(':')
    try:
        iv = bytes.fromhex(iv_hex)
        ct = bytes.fromhex(ct_hex)
    except (ValueError, binascii.Error) as exc:
        raise DecryptionError('token is not hex encoded') from exc
    if not ct:
        raise DecryptionError('empty ciphertext')
    key = key or _app_key()

    if len(iv) == GCM_NONCE_LENGTH:
        try:
            return AESGCM(key).decrypt(iv, ct, None)
        except InvalidTag as exc:
            raise DecryptionError('authentication failed') from exc

    if len(iv) != CBC_IV_LENGTH or len(ct) % CBC_IV_LENGTH:
        raise DecryptionError('bad iv or block length')
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ct) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise DecryptionError('bad padding') from exc
