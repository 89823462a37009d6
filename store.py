"""
Attendance store: the one place subject data is mutated.

Subjects and their counters live in sqlite. Nothing derived (percentage,
status, PNR, ...) is stored; every read goes back through the engine with
an explicit `today`.
"""

import logging
import sqlite3
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

import engine
from academic_calendar import SemesterCalendar, load_calendar, data_confidence, needs_update, requires_forced_update
from validation import ValidationError, validate_attended_conducted, validate_batch_data, validate_subject_data

log = logging.getLogger(__name__)

EXPORT_VERSION = 1


class SubjectNotFound(KeyError):
    pass


# TE DS timetable, total = sessions per week x 15 teaching weeks
DEFAULT_SUBJECTS = [
    {"code": "ML", "name": "Machine Learning", "sessions_per_week": 5, "total_expected_sessions": 75},
    {"code": "CSS", "name": "Cryptography & System Security", "sessions_per_week": 3, "total_expected_sessions": 45},
    {"code": "DAV", "name": "Data Analytics & Visualization", "sessions_per_week": 5, "total_expected_sessions": 75},
    {"code": "DC", "name": "Distributed Computing", "sessions_per_week": 3, "total_expected_sessions": 45},
    {"code": "SEPM", "name": "Software Engineering & Project Management", "sessions_per_week": 5, "total_expected_sessions": 75},
    {"code": "CCL", "name": "Cloud Computing Lab", "sessions_per_week": 4, "total_expected_sessions": 60},
    {"code": "DAV L", "name": "DAV Lab", "sessions_per_week": 4, "total_expected_sessions": 60},
    {"code": "CSS L", "name": "CSS Lab", "sessions_per_week": 4, "total_expected_sessions": 60},
    {"code": "ML L", "name": "ML Lab", "sessions_per_week": 4, "total_expected_sessions": 60},
    {"code": "SEPM L", "name": "SEPM Lab", "sessions_per_week": 4, "total_expected_sessions": 60},
]


class AttendanceStore:
    def __init__(
        self,
        db_path: str,
        calendar: Optional[SemesterCalendar] = None,
        default_total: int = 75,
        default_sessions_per_week: int = 4,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_path = db_path
        self.calendar = calendar or load_calendar()
        self.default_total = default_total
        self.default_sessions_per_week = default_sessions_per_week
        self.clock = clock or datetime.now
        self.init_db()

    # ----------------------------
    # DB Setup
    # ----------------------------

    def get_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        with self.get_db() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subjects (
                    code                    TEXT PRIMARY KEY,
                    name                    TEXT NOT NULL,
                    total_expected_sessions INTEGER NOT NULL,
                    sessions_per_week       INTEGER NOT NULL,
                    attended                INTEGER NOT NULL DEFAULT 0,
                    conducted               INTEGER NOT NULL DEFAULT 0,
                    source                  TEXT NOT NULL DEFAULT 'manual',
                    last_updated            TEXT NOT NULL DEFAULT '',
                    position                INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS meta (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()

    def _touch(self, conn, stamp: str):
        conn.execute("""
            INSERT INTO meta (key, value) VALUES ('last_updated', ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """, (stamp,))

    # ----------------------------
    # Helpers
    # ----------------------------

    def _row_to_subject(self, row) -> engine.Subject:
        return engine.Subject(
            profile=engine.SubjectProfile(
                code=row["code"],
                name=row["name"],
                total_expected_sessions=int(row["total_expected_sessions"]),
                sessions_per_week=int(row["sessions_per_week"]),
            ),
            attendance=engine.AttendanceCounter(
                attended=int(row["attended"]),
                conducted=int(row["conducted"]),
            ),
        )

    def _with_defaults(self, data: Dict[str, object]) -> Dict[str, object]:
        return {
            **data,
            "total_expected_sessions": data.get("total_expected_sessions") or self.default_total,
            "sessions_per_week": data.get("sessions_per_week") or self.default_sessions_per_week,
            "attendance": data.get("attendance") or {"attended": 0, "conducted": 0},
        }

    def _validated(self, data: Dict[str, object], today: Optional[date] = None) -> Dict[str, object]:
        data = self._with_defaults(data)
        weeks_elapsed = self.calendar.weeks_elapsed(today) if today else None
        result = validate_subject_data(data, weeks_elapsed)
        if not result["valid"]:
            log.warning("rejected subject %r: %s", data.get("code"), result["errors"])
            raise ValidationError(result["errors"])
        for w in result["warnings"]:
            log.warning("subject %s: %s", data["code"], w)
        return data

    def _validated_batch(self, items: List[Dict[str, object]]) -> List[Dict[str, object]]:
        """Validate a whole import up front; one bad subject rejects all of them."""
        prepared = [self._with_defaults(d) for d in items]
        result = validate_batch_data(prepared)
        if not result["valid"]:
            errors = [f"{r['code'] or '?'}: {e}" for r in result["results"] for e in r["errors"]]
            log.warning("rejected import: %s", errors)
            raise ValidationError(errors)
        for r in result["results"]:
            for w in r["warnings"]:
                log.warning("subject %s: %s", r["code"], w)
        return prepared

    def _insert(self, conn, data: Dict[str, object], stamp: str, source: str):
        position = conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM subjects").fetchone()[0]
        conn.execute("""
            INSERT INTO subjects
                (code, name, total_expected_sessions, sessions_per_week, attended, conducted, source, last_updated, position)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(data["code"]),
            str(data["name"]),
            int(data["total_expected_sessions"]),
            int(data["sessions_per_week"]),
            int(data["attendance"]["attended"]),
            int(data["attendance"]["conducted"]),
            source,
            stamp,
            position,
        ))

    # ----------------------------
    # Reads
    # ----------------------------

    def list_subjects(self) -> List[engine.Subject]:
        with self.get_db() as conn:
            rows = conn.execute("SELECT * FROM subjects ORDER BY position").fetchall()
        return [self._row_to_subject(r) for r in rows]

    def get_subject(self, code: str) -> engine.Subject:
        with self.get_db() as conn:
            row = conn.execute("SELECT * FROM subjects WHERE code = ?", (code,)).fetchone()
        if row is None:
            raise SubjectNotFound(code)
        return self._row_to_subject(row)

    def last_updated(self) -> Optional[datetime]:
        with self.get_db() as conn:
            row = conn.execute("SELECT value FROM meta WHERE key = 'last_updated'").fetchone()
        return datetime.fromisoformat(row["value"]) if row else None

    # ----------------------------
    # Writes
    # ----------------------------

    def add_subject(self, data: Dict[str, object], today: Optional[date] = None) -> engine.Subject:
        data = self._validated(data, today)
        stamp = self.clock().isoformat()

        with self.get_db() as conn:
            exists = conn.execute("SELECT 1 FROM subjects WHERE code = ?", (data["code"],)).fetchone()
            if exists:
                raise ValidationError([f"Subject {data['code']} already exists"])
            self._insert(conn, data, stamp, "manual")
            self._touch(conn, stamp)
            conn.commit()

        log.info("added subject %s", data["code"])
        return self.get_subject(str(data["code"]))

    def remove_subject(self, code: str) -> None:
        with self.get_db() as conn:
            cur = conn.execute("DELETE FROM subjects WHERE code = ?", (code,))
            conn.commit()
        if cur.rowcount == 0:
            raise SubjectNotFound(code)
        log.info("removed subject %s", code)

    def update_attendance(self, code: str, attended, conducted, source: str = "manual") -> engine.Subject:
        check = validate_attended_conducted(attended, conducted)
        if not check["valid"]:
            log.warning("rejected attendance for %s: %s", code, check["error"])
            raise ValidationError([check["error"]])

        stamp = self.clock().isoformat()
        with self.get_db() as conn:
            cur = conn.execute("""
                UPDATE subjects SET attended = ?, conducted = ?, source = ?, last_updated = ?
                WHERE code = ?
            """, (int(attended), int(conducted), source, stamp, code))
            if cur.rowcount == 0:
                raise SubjectNotFound(code)
            self._touch(conn, stamp)
            conn.commit()

        log.info("updated %s: %s/%s", code, attended, conducted)
        return self.get_subject(code)

    def batch_update_attendance(self, updates: List[Dict[str, object]]) -> int:
        """Apply {code, attended, conducted} updates atomically. Unknown codes are skipped."""
        if not all(isinstance(u, dict) for u in updates):
            raise ValidationError(["Each update must be an object"])

        errors = []
        for u in updates:
            check = validate_attended_conducted(u.get("attended"), u.get("conducted"))
            if not check["valid"]:
                errors.append(f"{u.get('code')}: {check['error']}")
        if errors:
            raise ValidationError(errors)

        stamp = self.clock().isoformat()
        applied = 0
        with self.get_db() as conn:
            for u in updates:
                cur = conn.execute("""
                    UPDATE subjects SET attended = ?, conducted = ?, source = ?, last_updated = ?
                    WHERE code = ?
                """, (int(u["attended"]), int(u["conducted"]), str(u.get("source") or "batch_update"), stamp, u.get("code")))
                if cur.rowcount == 0:
                    log.warning("batch update skipped unknown subject %r", u.get("code"))
                applied += cur.rowcount
            if applied:
                self._touch(conn, stamp)
            conn.commit()

        log.info("batch updated %d subjects", applied)
        return applied

    def import_subjects(self, imported: List[Dict[str, object]]) -> List[engine.Subject]:
        """Merge by code: existing subjects get new counters, new codes are added."""
        if not isinstance(imported, list) or not all(isinstance(d, dict) for d in imported):
            raise ValidationError(["Data must be an array of subjects"])
        prepared = self._validated_batch([{**d, "name": d.get("name") or d.get("code")} for d in imported])
        stamp = self.clock().isoformat()

        with self.get_db() as conn:
            for d in prepared:
                cur = conn.execute("""
                    UPDATE subjects SET attended = ?, conducted = ?, source = 'import', last_updated = ?
                    WHERE code = ?
                """, (int(d["attendance"]["attended"]), int(d["attendance"]["conducted"]), stamp, d["code"]))
                if cur.rowcount == 0:
                    self._insert(conn, d, stamp, "import")
            self._touch(conn, stamp)
            conn.commit()

        log.info("imported %d subjects", len(prepared))
        return self.list_subjects()

    def initialize_defaults(self) -> List[engine.Subject]:
        self.reset()
        stamp = self.clock().isoformat()
        with self.get_db() as conn:
            for d in DEFAULT_SUBJECTS:
                self._insert(conn, {**d, "attendance": {"attended": 0, "conducted": 0}}, stamp, "manual")
            self._touch(conn, stamp)
            conn.commit()
        log.info("initialized %d default subjects", len(DEFAULT_SUBJECTS))
        return self.list_subjects()

    def reset(self) -> None:
        with self.get_db() as conn:
            conn.execute("DELETE FROM subjects")
            conn.execute("DELETE FROM meta")
            conn.commit()
        log.info("store reset")

    # ----------------------------
    # Export / Import
    # ----------------------------

    def export_data(self) -> Dict[str, object]:
        last = self.last_updated()
        return {
            "version": EXPORT_VERSION,
            "subjects": [engine.subject_to_dict(s) for s in self.list_subjects()],
            "last_updated": last.isoformat() if last else None,
            "exported_at": self.clock().isoformat(),
        }

    def import_data(self, data: Dict[str, object]) -> List[engine.Subject]:
        """Replace everything with an exported document."""
        if not isinstance(data, dict) or not isinstance(data.get("subjects"), list) \
                or not all(isinstance(d, dict) for d in data["subjects"]):
            raise ValidationError(["Import data must contain a subjects list"])

        prepared = self._validated_batch(data["subjects"])
        codes = [d["code"] for d in prepared]
        if len(set(codes)) != len(codes):
            raise ValidationError(["Duplicate subject codes in import"])

        stamp = self.clock().isoformat()
        with self.get_db() as conn:
            conn.execute("DELETE FROM subjects")
            for d in prepared:
                self._insert(conn, d, stamp, "import")
            self._touch(conn, stamp)
            conn.commit()

        log.info("replaced store with %d imported subjects", len(prepared))
        return self.list_subjects()

    # ----------------------------
    # Computed (always through the engine)
    # ----------------------------

    def weeks_remaining(self, today: date) -> int:
        return self.calendar.weeks_remaining(today)

    def subject_state(self, code: str, today: date) -> Dict[str, object]:
        s = self.get_subject(code)
        return engine.calculate_subject_state(s, self.weeks_remaining(today), today)

    def all_subject_states(self, today: date) -> List[Dict[str, object]]:
        subjects = self.list_subjects()
        states = engine.calculate_all_subject_states(subjects, self.weeks_remaining(today), today)
        return [
            {"subject": engine.subject_to_dict(s), "state": st}
            for s, st in zip(subjects, states)
        ]

    def global_state(self, today: date) -> str:
        return engine.global_status(self.list_subjects(), today)

    def critical_subjects(self, today: date) -> List[Dict[str, object]]:
        return [x for x in self.all_subject_states(today) if x["state"]["status"] == engine.CRITICAL]

    def upcoming_pnrs(self, today: date, window_days: int = engine.PNR_WARNING_DAYS) -> List[Dict[str, object]]:
        upcoming = [
            x for x in self.all_subject_states(today)
            if x["state"]["days_until_pnr"] is not None and 0 <= x["state"]["days_until_pnr"] <= window_days
        ]
        upcoming.sort(key=lambda x: x["state"]["days_until_pnr"])
        return upcoming

    def data_confidence(self) -> str:
        return data_confidence(self.last_updated(), self.clock())

    def needs_data_update(self) -> bool:
        return needs_update(self.last_updated(), self.clock())

    def dashboard(self, today: date) -> Dict[str, object]:
        subjects = self.list_subjects()
        return {
            "has_subjects": bool(subjects),
            "global_state": engine.global_status(subjects, today),
            "overall_percentage": engine.overall_percentage(subjects),
            "minimum_buffer": engine.minimum_buffer(subjects),
            "worst_pnr": engine.pnr_to_json(engine.worst_pnr(subjects, today)),
            "subjects": self.all_subject_states(today),
            "upcoming_pnrs": [x["subject"]["code"] for x in self.upcoming_pnrs(today)],
            "calendar": self.calendar.summary(today),
            "data_confidence": self.data_confidence(),
            "needs_update": self.needs_data_update(),
            "forced_update": requires_forced_update(self.last_updated(), self.clock()),
        }
