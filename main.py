# main.py: app factory, BASE_PATH-aware (psycopg3 + pooling)
# The DB client, record store and exam engine are built once here and injected
# into the blueprints; nothing below reaches for a module-level connection.

import atexit
import os
from typing import Optional

from flask import Flask, g, session

from admin import create_admin_blueprint
from config import CBTConfig
from db import PgClient
from engine import ExamEngine
from errors import StoreUnavailable
from exam import create_exam_blueprint
from store import RecordStore


def create_app(config: Optional[CBTConfig] = None,
               store: Optional[RecordStore] = None,
               engine: Optional[ExamEngine] = None) -> Flask:
    cfg = config or CBTConfig.from_env()

    app = Flask(__name__)
    app.url_map.strict_slashes = False
    app.secret_key = cfg.secret_key
    app.config.update(
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=True,  # HTTPS in production
    )

    # =========================================================================
    # Store + engine (constructed once, torn down at process exit)
    # =========================================================================
    if store is None:
        client = PgClient(cfg)
        store = RecordStore({
            "fetch_all": client.fetch_all,
            "execute": client.execute,
            "execute_returning": client.execute_returning,
        })
        atexit.register(client.close)
        if cfg.ensure_schema:
            try:
                store.ensure_schema()
            except StoreUnavailable as e:
                print(f"[DB] schema check skipped: {e}", flush=True)
    if engine is None:
        engine = ExamEngine(store, cfg)
        atexit.register(engine.shutdown)

    app.extensions["cbt"] = {"config": cfg, "store": store, "engine": engine}

    # =========================================================================
    # Identity (sign-in is handled upstream; it leaves user_id in the session)
    # =========================================================================
    @app.before_request
    def attach_identity():
        uid = session.get("user_id")
        if uid:
            g.user_id = str(uid)

    @app.get("/healthz")
    def healthz():
        try:
            ok = store.ping()
            return ("ok" if ok else "db-fail", 200 if ok else 500)
        except StoreUnavailable as e:
            return (f"error: {e}", 500)

    # =========================================================================
    # Blueprints
    # =========================================================================
    app.register_blueprint(create_exam_blueprint(cfg.base_path, {"engine": engine}))
    app.register_blueprint(create_admin_blueprint(cfg.base_path, {"engine": engine}))
    return app


# =============================================================================
# Local dev entry (gunicorn: "main:create_app()")
# =============================================================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    create_app().run(host="0.0.0.0", port=port, debug=True)
