import os
from pathlib import Path

from flask import Flask
from flask_cors import CORS
from supabase import create_client

from config.source_families import load_source_families

from .aggregates import DEFAULT_MODEL, NO_DATA_LABEL
from .main.routes import main_bp
from .records import local_timezone
from .sources import SqliteRowSource, SupabaseRowSource


def _create_row_source():
    """Build the process-wide read-only row source from the environment.

    ``PRODUCTION_DB_PATH`` selects a SQLite database and takes precedence;
    otherwise ``SUPABASE_URL``/``SUPABASE_SERVICE_KEY`` select Supabase.
    """
    db_path = os.environ.get("PRODUCTION_DB_PATH")
    if db_path:
        return SqliteRowSource(db_path)

    supabase_url = os.environ.get("SUPABASE_URL")
    if supabase_url:
        supabase = create_client(supabase_url, os.environ["SUPABASE_SERVICE_KEY"])
        tables = [
            name.strip()
            for name in os.environ.get("SUPABASE_TABLES", "").split(",")
            if name.strip()
        ]
        order_column = os.environ.get("SUPABASE_ORDER_COLUMN", "id").strip()
        return SupabaseRowSource(
            supabase, tables or None, order_column=order_column or None
        )

    raise RuntimeError(
        "No data source configured. Set PRODUCTION_DB_PATH or SUPABASE_URL "
        "and SUPABASE_SERVICE_KEY."
    )


def create_app():
    static_folder = (
        os.environ.get("STATIC_FOLDER")
        or Path(__file__).resolve().parent.parent / "track"
    )
    app = Flask(
        __name__,
        static_folder=str(static_folder),
        static_url_path="",
    )
    CORS(app)

    app.config["ROW_SOURCE"] = _create_row_source()
    app.config["SOURCE_FAMILIES"] = load_source_families()
    app.config["TABLE_PATTERN"] = os.environ.get("TABLE_PATTERN") or None
    app.config["LOCAL_TIMEZONE"] = os.environ.get("LOCAL_TIMEZONE")
    app.config["LOCAL_TZ"] = local_timezone(app.config["LOCAL_TIMEZONE"])
    app.config["DEFAULT_MODEL"] = os.environ.get("DEFAULT_MODEL") or DEFAULT_MODEL
    app.config["NO_DATA_LABEL"] = os.environ.get("NO_DATA_LABEL") or NO_DATA_LABEL

    app.register_blueprint(main_bp)

    @app.route("/")
    def index():
        return app.send_static_file("index.html")

    return app
