import os


def _read_secret_file(*paths):
    for p in paths:
        try:
            with open(p, 'r') as f:
                return f.read().strip()
        except OSError:
            continue
    return None


def engine_options(uri: str, timeout_ms: int) -> dict:
    # statement_timeout bounds every storage call made while serving a request
    if uri.startswith('postgres'):
        return {
            'pool_pre_ping': True,
            'connect_args': {'options': f'-c statement_timeout={timeout_ms}'},
        }
    return {}


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///local.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DB_STATEMENT_TIMEOUT_MS = int(os.environ.get('DB_STATEMENT_TIMEOUT_MS', '5000'))

    # QR envelope
    QR_ENCRYPTION_KEY = os.environ.get('QR_ENCRYPTION_KEY')
    QR_KEY_DERIVATION = os.environ.get('QR_KEY_DERIVATION', 'truncate')
    QR_CIPHER_MODE = os.environ.get('QR_CIPHER_MODE', 'cbc')
    QR_MAX_AGE_DAYS = int(os.environ.get('QR_MAX_AGE_DAYS', '365'))
    QR_IMAGE_DIR = os.environ.get('QR_IMAGE_DIR', 'qr_codes')

    # customer sessions
    SESSION_EXPIRY_HOURS = int(os.environ.get('SESSION_EXPIRY_HOURS', '24'))
    SESSION_RELINK_POLICY = os.environ.get('SESSION_RELINK_POLICY', 'reject')

    # vendor credentials
    JWT_SECRET = os.environ.get('JWT_SECRET')
    JWT_PRIVATE_KEY = os.environ.get('JWT_PRIVATE_KEY')
    JWT_PUBLIC_KEY = os.environ.get('JWT_PUBLIC_KEY')
    JWT_ALG = os.environ.get('JWT_ALG', 'HS256')
    JWT_EXPIRES_MIN = int(os.environ.get('JWT_EXPIRES_MIN', '60'))

    PROOF_POINTS = int(os.environ.get('PROOF_POINTS', '10'))
    UPLOAD_DIR = os.environ.get('UPLOAD_DIR', 'uploads')
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_UPLOAD_BYTES', str(10 * 1024 * 1024)))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    ADMIN_API_KEY = os.environ.get('ADMIN_API_KEY')
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    QR_LOGIN_RATE_LIMIT = int(os.environ.get('QR_LOGIN_RATE_LIMIT', '20'))
    QR_LOGIN_RATE_WINDOW = int(os.environ.get('QR_LOGIN_RATE_WINDOW', '60'))

    def __init__(self):
        # Optional fallbacks to support Secret Files on Render (/etc/secrets)
        if not self.QR_ENCRYPTION_KEY:
            self.QR_ENCRYPTION_KEY = (
                _read_secret_file('/etc/secrets/qr_encryption_key')
                or '12345678901234567890123456789012'
            )
        if not self.JWT_SECRET:
            self.JWT_SECRET = _read_secret_file('/etc/secrets/jwt_secret') or self.SECRET_KEY
        if not self.JWT_PRIVATE_KEY:
            self.JWT_PRIVATE_KEY = _read_secret_file('/etc/secrets/jwt.key', 'jwt.key')
        if not self.JWT_PUBLIC_KEY:
            self.JWT_PUBLIC_KEY = _read_secret_file('/etc/secrets/jwt.pub', 'jwt.pub')
        if (not self.SECRET_KEY) or self.SECRET_KEY == 'dev':
            self.SECRET_KEY = _read_secret_file('/etc/secrets/secret_key') or self.SECRET_KEY
