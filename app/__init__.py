from __future__ import annotations

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from app.middlewares.audit import init_audit_capture
from app.middlewares.error_handler import init_error_handlers
from app.middlewares.logging import init_request_logging
from app.middlewares.request_id import init_request_id
from app.middlewares.security_headers import init_security_headers
from app.routes.api import api_bp
from app.routes.core import core_bp
from app.utils.logging import setup_logging
from config import Config
from db import init_engine


def create_app() -> Flask:
    load_dotenv()

    cfg = Config()
    cfg.validate()
    setup_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    from models import Base  # imported after engine init
    from schema import ensure_schema

    Base.metadata.create_all(bind=engine)
    ensure_schema(engine)

    app = Flask(__name__)
    app.config["CFG"] = cfg

    CORS(
        app,
        origins=cfg.ALLOWED_ORIGINS,
        supports_credentials=False,
        allow_headers=["Content-Type", "X-User-Email", "X-Internal-Token", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        methods=["GET", "POST", "PUT", "OPTIONS"],
        max_age=3600,
    )

    init_request_id(app)
    init_security_headers(app)
    init_request_logging(app)
    init_audit_capture(app)
    init_error_handlers(app)

    app.register_blueprint(core_bp)
    app.register_blueprint(api_bp, url_prefix="/api")

    return app
