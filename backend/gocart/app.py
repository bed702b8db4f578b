import os
import time
from typing import Dict, Optional

import click
from dotenv import load_dotenv
from flask import Flask, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from werkzeug.middleware.proxy_fix import ProxyFix

from .access import ADMIN, AccessControl, parse_csv_setting
from .coupons import register_coupon_routes
from .dashboards import register_dashboard_routes
from .errors import register_error_handlers
from .media import LocalMediaStorage, build_media_uploader
from .products import register_product_routes
from .scheduler import build_scheduler, process_due_events
from .stores import register_store_routes

load_dotenv()


class Services:
    """Collaborators shared by the route modules of one application."""

    def __init__(self, db, access, media, scheduler):
        self.db = db
        self.access = access
        self.media = media
        self.scheduler = scheduler


def load_settings(app: Flask) -> Dict:
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    return {
        "MONGO_URI": os.getenv("MONGO_URI", "mongodb://localhost:27017/gocart"),
        "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY", "change-me-in-production"),
        "MAX_CONTENT_LENGTH": max_upload_mb * 1024 * 1024,
        "ADMIN_USER_IDS": parse_csv_setting(os.getenv("ADMIN_USER_IDS", "")),
        "ADMIN_EMAILS": parse_csv_setting(os.getenv("ADMIN_EMAILS", "")),
        "IMAGEKIT_PRIVATE_KEY": os.getenv("IMAGEKIT_PRIVATE_KEY", "").strip(),
        "IMAGEKIT_URL_ENDPOINT": os.getenv("IMAGEKIT_URL_ENDPOINT", "").strip(),
        "IMAGEKIT_UPLOAD_URL": os.getenv(
            "IMAGEKIT_UPLOAD_URL", "https://upload.imagekit.io/api/v1/files/upload"
        ),
        "UPLOAD_FOLDER": os.getenv("UPLOAD_FOLDER") or os.path.join(app.root_path, "uploads"),
        "MEDIA_BASE_URL": os.getenv("MEDIA_BASE_URL", "").strip(),
        "ALLOWED_IMAGE_EXTENSIONS": {
            extension.lower()
            for extension in parse_csv_setting(
                os.getenv("ALLOWED_IMAGE_EXTENSIONS", "png,jpg,jpeg,gif,webp")
            )
        },
        "UPLOAD_WORKERS": int(os.getenv("UPLOAD_WORKERS", "4")),
        "INNGEST_EVENT_KEY": os.getenv("INNGEST_EVENT_KEY", "").strip(),
        "INNGEST_BASE_URL": os.getenv("INNGEST_BASE_URL", "https://inn.gs"),
        "COLLABORATOR_TIMEOUT_SECONDS": float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "30")),
        "EVENT_POLL_SECONDS": float(os.getenv("EVENT_POLL_SECONDS", "30")),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").upper(),
    }


def ensure_indexes(app: Flask, db) -> None:
    try:
        db.stores.create_index("user_id", unique=True)
        db.stores.create_index("username", unique=True)
        db.coupons.create_index("code", unique=True)
        db.products.create_index("store_id")
        db.ratings.create_index("product_id")
        db.orders.create_index("store_id")
        db.scheduled_events.create_index([("status", 1), ("created_at", 1)])
    except Exception as exc:
        app.logger.warning("Unable to ensure indexes: %s", exc)


def create_app(
    test_config: Optional[Dict] = None,
    db=None,
    media=None,
    scheduler=None,
) -> Flask:
    """Create and configure the Flask application.

    ``db``, ``media`` and ``scheduler`` may be passed in to replace the
    collaborators that would otherwise be built from configuration.
    """
    app = Flask(__name__)

    # Honor proxy headers so generated upload links keep the public origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config.update(load_settings(app))
    if test_config:
        app.config.update(test_config)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(","):
        if origin.strip():
            allowed_origins.append(origin.strip())
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    jwt_manager = JWTManager(app)
    if db is None:
        db = PyMongo(app).db
    ensure_indexes(app, db)

    services = Services(
        db=db,
        access=AccessControl(
            db,
            admin_user_ids=app.config["ADMIN_USER_IDS"],
            admin_emails=app.config["ADMIN_EMAILS"],
        ),
        media=media or build_media_uploader(app.config),
        scheduler=scheduler or build_scheduler(app.config, db),
    )

    register_error_handlers(app, jwt_manager)

    # --- ROUTES ---
    register_store_routes(app, services)
    register_product_routes(app, services)
    register_coupon_routes(app, services)
    register_dashboard_routes(app, services)

    if isinstance(services.media, LocalMediaStorage):

        @app.route("/uploads/<path:filename>")
        def serve_uploaded_file(filename: str):
            return send_from_directory(services.media.root, filename)

    @app.route("/api/admin/is-admin", methods=["GET"])
    @services.access.requires(ADMIN)
    def is_admin(caller):
        return {"isAdmin": True}, 200

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # --- Worker ---

    @app.cli.command("process-events")
    @click.option("--loop", is_flag=True, help="Keep polling for due events.")
    @click.option("--interval", type=float, default=None, help="Seconds between polls.")
    def process_events_command(loop: bool, interval: Optional[float]):
        """Run scheduled events whose time has come (coupon expiry)."""
        poll_seconds = interval or app.config["EVENT_POLL_SECONDS"]
        while True:
            handled = process_due_events(db, app.logger)
            if handled:
                app.logger.info("Processed %s scheduled event(s)", handled)
            click.echo(f"Processed {handled} scheduled event(s).")
            if not loop:
                break
            time.sleep(poll_seconds)

    return app
