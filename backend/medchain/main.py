"""
MedChain – Flask Application Factory
Serves both the REST API and the frontend static files.
"""

import atexit
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from medchain.config import Config
from medchain.database import init_services, init_store
from medchain.middleware.audit_logger import audit_after_request
from medchain.middleware.auth_middleware import jwt_required_middleware
from medchain.routes.auth import auth_bp
from medchain.routes.distributor import distributor_bp
from medchain.routes.doctor import doctor_bp
from medchain.routes.manufacturer import manufacturer_bp
from medchain.routes.pharmacist import pharmacist_bp
from medchain.routes.views import views_bp
from medchain.services.dashboard_service import ViewRegistry
from medchain.services.id_generator import TimestampIdGenerator
from medchain.services.record_store.supabase_store import SupabaseRecordStore

limiter = Limiter(key_func=get_remote_address, default_limits=[Config.RATE_LIMIT_DEFAULT])

# Path to the frontend directory (relative to project root)
FRONTEND_DIR = Path(__file__).resolve().parent.parent.parent / "frontend"


def create_app(store=None, id_generator=None, scheduler=None) -> Flask:
    Config.validate()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = Config.FLASK_SECRET_KEY
    app.config["JWT_SECRET"] = Config.JWT_SECRET
    app.config["SESSION_TTL_HOURS"] = Config.SESSION_TTL_HOURS
    app.config["POLL_INTERVAL_SECONDS"] = Config.POLL_INTERVAL_SECONDS
    app.config["POLL_MAX_WORKERS"] = Config.POLL_MAX_WORKERS
    app.config["DEBUG"] = Config.APP_ENV == "development"

    # Extensions
    CORS(app, resources={r"/api/*": {"origins": Config.FRONTEND_URL}})
    limiter.init_app(app)

    # Record store and live dashboard views
    init_store(app, store or SupabaseRecordStore(Config.SUPABASE_URL, Config.SUPABASE_KEY))
    registry = ViewRegistry(
        scheduler=scheduler or BackgroundScheduler(daemon=True),
        interval=Config.POLL_INTERVAL_SECONDS,
        max_workers=Config.POLL_MAX_WORKERS,
    )
    init_services(app, registry, id_generator or TimestampIdGenerator())
    atexit.register(registry.close_all)

    # Middleware
    app.before_request(jwt_required_middleware)
    app.after_request(audit_after_request)

    # Blueprints
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(manufacturer_bp, url_prefix="/api/manufacturer")
    app.register_blueprint(distributor_bp, url_prefix="/api/distributor")
    app.register_blueprint(pharmacist_bp, url_prefix="/api/pharmacist")
    app.register_blueprint(doctor_bp, url_prefix="/api/doctor")
    app.register_blueprint(views_bp, url_prefix="/api/views")

    # Health check
    @app.route("/api/health")
    def health():
        return {"status": "ok", "service": "medchain"}

    # ---------- Serve frontend static files ----------
    def _not_found(path):
        return jsonify({"error": "Not found.", "path": path}), 404

    @app.route("/")
    def serve_index():
        if not (FRONTEND_DIR / "index.html").is_file():
            return _not_found("/")
        return send_from_directory(str(FRONTEND_DIR), "index.html")

    @app.route("/<path:filename>")
    def serve_static(filename):
        """Serve any file from the frontend directory (CSS, JS, images)."""
        # Unknown API paths and a missing frontend bundle answer JSON
        if filename.startswith("api/") or not (FRONTEND_DIR / "index.html").is_file():
            return _not_found(f"/{filename}")
        file_path = FRONTEND_DIR / filename
        if file_path.is_file():
            return send_from_directory(str(FRONTEND_DIR), filename)
        # Fall back to index.html for SPA-style routing
        return send_from_directory(str(FRONTEND_DIR), "index.html")

    return app
