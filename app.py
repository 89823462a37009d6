# app.py
import logging
import os
from datetime import date

from flask import Flask, request, jsonify
from flask_cors import CORS

import engine
from academic_calendar import load_calendar, parse_date
from config import Config
from store import AttendanceStore, SubjectNotFound
from validation import ValidationError, sanitize_numeric_input

log = logging.getLogger(__name__)


# ----------------------------
# Helpers
# ----------------------------

def _today() -> date:
    """`?today=YYYY-MM-DD` pins the date the engine projects from."""
    raw = request.args.get("today")
    if not raw:
        return date.today()
    try:
        return parse_date(raw)
    except ValueError:
        raise ValidationError(["today must be YYYY-MM-DD"])


def _body() -> dict:
    return request.get_json(silent=True) or {}


def create_app(config=Config, store: AttendanceStore = None) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.SECRET_KEY

    logging.basicConfig(level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO))

    CORS(
        app,
        resources={r"/*": {"origins": config.CORS_ORIGINS}},
        allow_headers=["Content-Type"],
        methods=["GET", "POST", "DELETE", "OPTIONS"],
    )

    if store is None:
        store = AttendanceStore(
            config.DATABASE_PATH,
            calendar=load_calendar(config.SEMESTER_FILE),
            default_total=config.DEFAULT_TOTAL_SESSIONS,
            default_sessions_per_week=config.DEFAULT_SESSIONS_PER_WEEK,
        )
    app.extensions["attendance_store"] = store

    # ----------------------------
    # Errors
    # ----------------------------

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        log.warning("%s %s rejected: %s", request.method, request.path, e.errors)
        return jsonify({"error": str(e), "errors": e.errors}), 400

    @app.errorhandler(SubjectNotFound)
    def handle_not_found(e):
        return jsonify({"error": f"subject {e.args[0]} not found"}), 404

    # ----------------------------
    # Health
    # ----------------------------

    @app.get("/health")
    def health():
        return jsonify({"ok": True}), 200

    # ----------------------------
    # Dashboard
    # ----------------------------

    @app.get("/dashboard")
    def get_dashboard():
        return jsonify(store.dashboard(_today())), 200

    @app.get("/calendar")
    def get_calendar():
        return jsonify(store.calendar.summary(_today())), 200

    # ----------------------------
    # Subjects API
    # ----------------------------

    @app.get("/subjects")
    def get_subjects():
        return jsonify(store.all_subject_states(_today())), 200

    @app.post("/subjects")
    def create_subject():
        today = _today()
        s = store.add_subject(_body(), today)
        return jsonify({
            "subject": engine.subject_to_dict(s),
            "state": store.subject_state(s.code, today),
        }), 201

    @app.post("/subjects/defaults")
    def create_default_subjects():
        subjects = store.initialize_defaults()
        return jsonify([engine.subject_to_dict(s) for s in subjects]), 200

    @app.get("/subjects/<code>")
    def get_subject(code):
        s = store.get_subject(code)
        return jsonify({
            "subject": engine.subject_to_dict(s),
            "state": store.subject_state(code, _today()),
        }), 200

    @app.delete("/subjects/<code>")
    def delete_subject(code):
        store.remove_subject(code)
        return "", 204

    @app.post("/subjects/<code>/attendance")
    def update_attendance(code):
        today = _today()
        body = _body()
        s = store.update_attendance(
            code,
            body.get("attended"),
            body.get("conducted"),
            source=str(body.get("source") or "manual"),
        )
        return jsonify({
            "subject": engine.subject_to_dict(s),
            "state": store.subject_state(code, today),
            "global_state": store.global_state(today),
        }), 200

    @app.post("/attendance/batch")
    def batch_update():
        today = _today()
        updates = _body().get("updates")
        if not isinstance(updates, list):
            raise ValidationError(["updates must be a list"])
        applied = store.batch_update_attendance(updates)
        return jsonify({"updated": applied, "global_state": store.global_state(today)}), 200

    # ----------------------------
    # What-if / Recovery
    # ----------------------------

    @app.get("/subjects/<code>/simulate")
    def simulate(code):
        today = _today()
        s = store.get_subject(code)
        skips = sanitize_numeric_input(request.args.get("skips"), default=1, lo=0, hi=1000)
        total = s.profile.total_expected_sessions

        return jsonify({
            "skip": engine.simulate_skip(s.attendance, total, skips, s.profile.sessions_per_week, today),
            "attend_all": engine.simulate_attend_all(s.attendance, total),
            "cancellation": engine.simulate_cancellation(s.attendance, total),
            "last_safe_skip_date": _iso(engine.last_safe_skip_date(
                s.attendance, total, s.profile.sessions_per_week, today
            )),
        }), 200

    @app.get("/subjects/<code>/recovery")
    def recovery(code):
        today = _today()
        s = store.get_subject(code)
        plan = engine.generate_recovery_plan(
            s.attendance,
            s.profile.total_expected_sessions,
            s.profile.sessions_per_week,
            store.weeks_remaining(today),
        )
        return jsonify(plan), 200

    # ----------------------------
    # Export / Import / Reset
    # ----------------------------

    @app.get("/export")
    def export_data():
        return jsonify(store.export_data()), 200

    @app.post("/import")
    def import_data():
        body = _body()
        if body.get("merge"):
            subjects = store.import_subjects(body.get("subjects") or [])
        else:
            subjects = store.import_data(body)
        return jsonify([engine.subject_to_dict(s) for s in subjects]), 200

    @app.post("/reset")
    def reset():
        store.reset()
        return "", 204

    return app


def _iso(d):
    return d.isoformat() if d else None


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "5000"))
    create_app().run(host="0.0.0.0", port=port)
