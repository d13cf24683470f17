import csv
import io
import os
import sqlite3
from functools import wraps

from flask import Flask, Response, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from .db import connect_db, parse_database_config
from .db_migrations import apply_migrations, get_db_health
from .errors import DatabaseInitError, ImportFailure
from .files import is_allowed_file
from .importer import import_rows, run_import
from .models import OVERRIDE, default_settings
from .store import (
    count_transactions,
    delete_transactions,
    find_transactions,
    get_or_create_settings,
    log_audit,
    reset_settings,
)

EXPORT_COLUMNS = [
    "Date",
    "Time",
    "Account",
    "Category",
    "Subcategory",
    "Note",
    "INR",
    "Income/Expense",
    "Description",
    "Amount",
    "Currency",
    "ID",
]


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        SECRET_KEY="dev",
        DATABASE=os.path.join(app.instance_path, "finance_tracker.sqlite"),
        MAX_CONTENT_LENGTH=10 * 1024 * 1024,
        IMPORT_DEFAULT_MODE=OVERRIDE,
    )

    if test_config is not None:
        app.config.update(test_config)

    os.makedirs(app.instance_path, exist_ok=True)
    app.config.setdefault("DB_INIT_ERROR", None)

    @app.teardown_appcontext
    def close_db(_=None):
        db = g.pop("db", None)
        if db is not None:
            db.close()

    def get_db():
        if "db" not in g:
            try:
                g.db = connect_db(parse_database_config(app.config["DATABASE"]))
            except (sqlite3.Error, OSError, RuntimeError) as exc:
                message = f"Unable to open database at {app.config['DATABASE']}: {exc}"
                app.logger.error(message)
                app.config["DB_INIT_ERROR"] = message
                raise DatabaseInitError(message) from exc
        return g.db

    def init_db():
        try:
            apply_migrations(app.config["DATABASE"])
            app.config["DB_INIT_ERROR"] = None
        except (sqlite3.Error, OSError, RuntimeError) as exc:
            message = f"Failed to initialize database at {app.config['DATABASE']}: {exc}"
            app.logger.error(message)
            app.config["DB_INIT_ERROR"] = message
            raise DatabaseInitError(message) from exc

    @app.cli.command("init-db")
    def init_db_command():
        init_db()
        print("Initialized the database.")

    @app.get("/health/db")
    def db_health():
        try:
            return jsonify(get_db_health(app.config["DATABASE"]))
        except sqlite3.Error as exc:
            return jsonify({
                "ok": False,
                "schema_version": 0,
                "missing_tables": [],
                "missing_columns": {},
                "missing_indexes": [],
                "error": str(exc),
            }), 500

    def login_required(view):
        @wraps(view)
        def wrapped_view(**kwargs):
            if g.user is None:
                return jsonify({"success": False, "message": "Not authorized, please log in"}), 401
            return view(**kwargs)

        return wrapped_view

    @app.errorhandler(413)
    def file_too_large(_error):
        limit_mb = app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
        return jsonify({"success": False, "message": f"File too large. Maximum size is {limit_mb}MB."}), 413

    @app.before_request
    def load_logged_in_user():
        if app.config.get("DB_INIT_ERROR"):
            message = app.config["DB_INIT_ERROR"]
            return jsonify({"success": False, "message": f"Database initialization failed: {message}"}), 500

        user_id = session.get("user_id")
        if user_id is None:
            g.user = None
        else:
            g.user = get_db().execute("SELECT id, username FROM users WHERE id = ?", (user_id,)).fetchone()

    def credentials():
        data = request.get_json(silent=True) if request.is_json else request.form
        data = data or {}
        return str(data.get("username") or "").strip(), str(data.get("password") or "")

    @app.post("/register")
    def register():
        username, password = credentials()
        error = None
        if not username:
            error = "Username is required."
        elif not password:
            error = "Password is required."
        if error is not None:
            return jsonify({"success": False, "message": error}), 400

        db = get_db()
        if db.execute("SELECT 1 FROM users WHERE username = ?", (username,)).fetchone() is not None:
            return jsonify({"success": False, "message": "User already exists."}), 409
        db.execute(
            "INSERT INTO users (username, password_hash) VALUES (?, ?)",
            (username, generate_password_hash(password)),
        )
        db.commit()
        return jsonify({"success": True, "message": "Registration successful. Please login."}), 201

    @app.post("/login")
    def login():
        username, password = credentials()
        user = get_db().execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if user is None or not check_password_hash(user["password_hash"], password):
            return jsonify({"success": False, "message": "Incorrect username or password."}), 401

        session.clear()
        session["user_id"] = user["id"]
        return jsonify({"success": True, "user": {"id": user["id"], "username": user["username"]}})

    @app.post("/logout")
    def logout():
        session.clear()
        return jsonify({"success": True})

    def import_response(report):
        payload = {"success": True, "message": report.message, "stats": report.to_stats()}
        if report.errors:
            payload["errors"] = report.errors
        if report.new_accounts:
            payload["newAccounts"] = report.new_accounts
        return jsonify(payload)

    def import_failure_response(exc):
        payload = {"success": False, "message": f"Import failed: {exc}"}
        if exc.errors:
            payload["errors"] = exc.errors
        return jsonify(payload), 400

    @app.post("/api/import/upload")
    @login_required
    def import_upload():
        uploaded = request.files.get("file")
        if uploaded is None or not uploaded.filename:
            return jsonify({"success": False, "message": "Please upload a file"}), 400
        if not is_allowed_file(uploaded.filename, uploaded.mimetype):
            return jsonify({
                "success": False,
                "message": "Only Excel (.xlsx, .xls), CSV and JSON files are allowed",
            }), 400

        mode = request.form.get("mode") or app.config["IMPORT_DEFAULT_MODE"]
        try:
            report = run_import(
                get_db(),
                g.user["id"],
                uploaded.filename,
                uploaded.read(),
                mode,
                mimetype=uploaded.mimetype,
            )
        except ImportFailure as exc:
            app.logger.info("Rejected import of %s: %s", uploaded.filename, exc)
            return import_failure_response(exc)
        except Exception as exc:
            app.logger.exception("Import of %s failed", uploaded.filename)
            return jsonify({"success": False, "message": f"Server error while importing file: {exc}"}), 500
        return import_response(report)

    @app.post("/api/import/json")
    @login_required
    def import_json():
        data = request.get_json(silent=True) or {}
        rows = data.get("transactions") if isinstance(data, dict) else None
        if not isinstance(rows, list) or not rows:
            return jsonify({"success": False, "message": "Transactions array is required"}), 400

        mode = data.get("mode") or app.config["IMPORT_DEFAULT_MODE"]
        try:
            report = import_rows(get_db(), g.user["id"], rows, mode)
        except ImportFailure as exc:
            return import_failure_response(exc)
        except Exception as exc:
            app.logger.exception("JSON import failed")
            return jsonify({"success": False, "message": f"Server error while importing data: {exc}"}), 500
        return import_response(report)

    @app.get("/api/import/status")
    @login_required
    def import_status():
        return jsonify({"success": True, "totalTransactions": count_transactions(get_db(), g.user["id"])})

    @app.get("/api/settings")
    @login_required
    def get_settings():
        db = get_db()
        settings = get_or_create_settings(db, g.user["id"], default_settings)
        db.commit()
        return jsonify({"success": True, "settings": settings.to_document(), "version": settings.version})

    @app.delete("/api/settings/clear-all")
    @login_required
    def clear_all():
        db = get_db()
        user_id = g.user["id"]
        try:
            deleted = delete_transactions(db, user_id)
            reset_settings(db, user_id)
            log_audit(db, user_id, "clear_all", {"deletedCount": deleted})
            db.commit()
        except Exception:
            db.rollback()
            raise
        app.logger.info("Cleared %s transactions for user %s", deleted, user_id)
        return jsonify({
            "success": True,
            "message": f"Cleared {deleted} transactions and reset settings",
            "deletedCount": deleted,
        })

    @app.get("/api/export/csv")
    @login_required
    def export_csv():
        transactions = find_transactions(get_db(), g.user["id"])

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(EXPORT_COLUMNS)
        for transaction in transactions:
            document = transaction.to_document()
            writer.writerow([document[column] for column in EXPORT_COLUMNS])

        return Response(
            output.getvalue(),
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=transactions.csv"},
        )

    with app.app_context():
        try:
            init_db()
        except DatabaseInitError:
            pass

    app.get_db = get_db
    app.init_db = init_db
    return app
