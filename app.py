"""
app.py — Flask Application Factory for the ShadowGuard screen auditor.
"""
import os
import logging
from flask import Flask
from flask_cors import CORS
from pythonjsonlogger import jsonlogger

from config import config_map
from extensions import db, limiter
from analyzer.backend import GeminiBackend
from analyzer.runner import RunRegistry

# ── Logging ────────────────────────────────────────────────────────────────────
handler = logging.StreamHandler()
handler.setFormatter(jsonlogger.JsonFormatter(
    "%(asctime)s %(levelname)s %(name)s %(message)s"
))
logging.basicConfig(level=logging.INFO, handlers=[handler])

logger = logging.getLogger(__name__)


def create_app(env: str = None, backend=None) -> Flask:
    """
    Application factory.

    `backend` is any object with `generate(image_b64, context, token)`;
    the Gemini REST backend is used when none is given.
    """
    env = env or os.environ.get("FLASK_ENV", "development")
    cfg = config_map.get(env, config_map["default"])

    app = Flask(__name__)
    app.config.from_object(cfg)

    # ── Ensure directories exist ───────────────────────────────────────────────
    try:
        data_dir = os.path.join(os.path.dirname(__file__), "data")
        os.makedirs(data_dir, exist_ok=True)
    except OSError:
        pass

    # ── Extensions ────────────────────────────────────────────────────────────
    db.init_app(app)
    CORS(app, origins="same-origin")
    limiter.init_app(app)

    app.extensions["audit_backend"] = backend or GeminiBackend.from_config(app.config)
    app.extensions["audit_runs"] = RunRegistry()

    # ── Blueprints ────────────────────────────────────────────────────────────
    from blueprints.api import api_bp
    app.register_blueprint(api_bp, url_prefix="/api/v1")

    # ── DB init ───────────────────────────────────────────────────────────────
    with app.app_context():
        import models.session  # noqa: F401  registers all tables
        try:
            db.create_all()
            logger.info("Database tables created / verified.")
        except Exception as e:
            logger.error("Failed to initialize database: %s", e)

    logger.info("ShadowGuard app created [env=%s]", env)
    return app


app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
