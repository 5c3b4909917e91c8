import logging
import os

from flask import Flask, send_from_directory
from werkzeug.middleware.proxy_fix import ProxyFix
from .config import Config, engine_options
from .errors import register_error_handlers
from .models import db
from flask_migrate import Migrate
from dotenv import load_dotenv

load_dotenv()


def create_app(overrides: dict | None = None):
    app = Flask(__name__)
    app.config.from_object(Config())
    if overrides:
        app.config.update(overrides)
    app.config.setdefault(
        'SQLALCHEMY_ENGINE_OPTIONS',
        engine_options(app.config['SQLALCHEMY_DATABASE_URI'], app.config['DB_STATEMENT_TIMEOUT_MS']),
    )
    for key in ('UPLOAD_DIR', 'QR_IMAGE_DIR'):
        app.config[key] = os.path.abspath(app.config[key])
    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    db.init_app(app)
    Migrate(app, db)
    # Trust reverse proxy headers (Render/Heroku)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    with app.app_context():
        # quickstart; schema changes go through Flask-Migrate
        db.create_all()

    from .routes_auth import bp as auth_bp
    from .routes_customer import bp as customer_bp
    from .routes_vendor import bp as vendor_bp
    from .routes_admin import bp as admin_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(customer_bp, url_prefix='/api/customer')
    app.register_blueprint(vendor_bp, url_prefix='/api/vendor')
    app.register_blueprint(admin_bp, url_prefix='/admin')
    register_error_handlers(app)

    from .cli import register_commands
    register_commands(app)

    @app.get('/health')
    def health():
        return {'ok': True}

    @app.get('/uploads/<path:filename>')
    def uploads(filename):
        return send_from_directory(app.config['UPLOAD_DIR'], filename)

    return app
