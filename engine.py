"""
Attendance Decision Engine (Python Core)

This file contains ONLY the "brain" of 75Guard.
It does math + logic. No storage, no HTTP, no printing, no logging.

Every function is pure: same inputs (including `today`) -> same output.
The store and the API CALL these functions on every read, so nothing
computed here is ever saved as the source of truth.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Union


MIN_ATTENDANCE_RATIO = 0.75
MIN_ATTENDANCE_PERCENT = 75

SAFE = "SAFE"
TENSION = "TENSION"
CRITICAL = "CRITICAL"

# worst wins when aggregating
STATUS_SEVERITY = {SAFE: 0, TENSION: 1, CRITICAL: 2}

NONE = "NONE"
EASY = "EASY"
MEDIUM = "MEDIUM"
HARD = "HARD"
IMPOSSIBLE = "IMPOSSIBLE"

PASSED = "PASSED"

TENSION_BUFFER = 4
CRITICAL_BUFFER = 1
PNR_WARNING_DAYS = 14


# ----------------------------
# DATA MODELS
# ----------------------------

@dataclass(frozen=True)
class AttendanceCounter:
    attended: int       # sessions the student was present for
    conducted: int      # sessions held so far


@dataclass(frozen=True)
class SubjectProfile:
    code: str
    name: str
    total_expected_sessions: int    # whole term
    sessions_per_week: int


@dataclass(frozen=True)
class Subject:
    profile: SubjectProfile
    attendance: AttendanceCounter

    @property
    def code(self) -> str:
        return self.profile.code


# Point of No Return is one of three shapes, never a bare nullable date.

@dataclass(frozen=True)
class NoPnr:
    """Deficit is zero: 75% holds whatever happens next."""


@dataclass(frozen=True)
class PnrPassed:
    """75% can no longer be reached."""


@dataclass(frozen=True)
class PnrOnDate:
    on: date


PNR = Union[NoPnr, PnrPassed, PnrOnDate]


# ----------------------------
# HELPERS
# ----------------------------

def resolve_today(today: Optional[date] = None) -> date:
    return today if today is not None else date.today()


def round_half_up(value, places: int = 2) -> float:
    quant = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quant, rounding=ROUND_HALF_UP))


def min_required(total_sessions: int) -> int:
    return math.ceil(total_sessions * MIN_ATTENDANCE_RATIO)


def remaining_sessions(counter: AttendanceCounter, total_sessions: int) -> int:
    return total_sessions - counter.conducted


def normalize_counter(counter: AttendanceCounter) -> AttendanceCounter:
    """Clamp a counter into a consistent shape (simulation only)."""
    conducted = max(0, counter.conducted)
    attended = max(0, min(counter.attended, conducted))
    return AttendanceCounter(attended=attended, conducted=conducted)


def add_weeks(start: date, weeks: int) -> date:
    """start + weeks, pinned to date.max when the projection runs off the calendar."""
    try:
        return start + timedelta(weeks=weeks)
    except OverflowError:
        return date.max


# ----------------------------
# 1) BASE METRICS
# ----------------------------

def calculate_percentage(attended, conducted) -> float:
    """
    (attended / conducted) x 100, rounded half-up to 2 places.

    calculate_percentage(28, 41) -> 68.29
    calculate_percentage(0, 0)   -> 0.0
    """
    if conducted == 0:
        return 0.0
    ratio = Decimal(str(attended)) * 100 / Decimal(str(conducted))
    return round_half_up(ratio, 2)


def calculate_buffer(counter: AttendanceCounter, total_sessions: int) -> int:
    """
    Classes that can still be missed while finishing at >= 75%.

    remaining    = total - conducted
    min_required = ceil(total x 0.75)
    buffer       = (attended + remaining) - min_required, floored at 0
    """
    remaining = remaining_sessions(counter, total_sessions)
    raw = (counter.attended + remaining) - min_required(total_sessions)
    return max(0, math.floor(raw))


def calculate_deficit(counter: AttendanceCounter, total_sessions: int) -> int:
    """Classes still needed to reach ceil(total x 0.75), floored at 0."""
    raw = min_required(total_sessions) - counter.attended
    return max(0, math.ceil(raw))


# ----------------------------
# 2) POINT OF NO RETURN
# ----------------------------

def calculate_pnr(
    counter: AttendanceCounter,
    total_sessions: int,
    sessions_per_week: int,
    today: Optional[date] = None,
) -> PNR:
    remaining = remaining_sessions(counter, total_sessions)
    deficit = calculate_deficit(counter, total_sessions)

    if deficit > remaining:
        return PnrPassed()

    if deficit == 0:
        return NoPnr()

    sessions_until_pnr = remaining - deficit
    if sessions_per_week > 0:
        weeks_until_pnr = math.floor(sessions_until_pnr / sessions_per_week)
    else:
        weeks_until_pnr = 0

    if weeks_until_pnr <= 0:
        return PnrPassed()

    return PnrOnDate(add_weeks(resolve_today(today), weeks_until_pnr))


def days_until_pnr(pnr: PNR, today: Optional[date] = None) -> Optional[int]:
    """-1 once passed, None when there is no PNR. Stale dates go negative."""
    if isinstance(pnr, PnrPassed):
        return -1
    if isinstance(pnr, PnrOnDate):
        return (pnr.on - resolve_today(today)).days
    return None


def pnr_to_json(pnr: PNR) -> Optional[str]:
    if isinstance(pnr, PnrPassed):
        return PASSED
    if isinstance(pnr, PnrOnDate):
        return pnr.on.isoformat()
    return None


# ----------------------------
# 3) STATUS CLASSIFIER
# ----------------------------

def get_status(
    counter: AttendanceCounter,
    total_sessions: int,
    pnr: Optional[PNR] = None,
    today: Optional[date] = None,
) -> str:
    """
    SAFE / TENSION / CRITICAL, first match wins:

    1. deficit > remaining             -> CRITICAL (unrecoverable)
    2. percentage < 75 or buffer <= 1  -> CRITICAL
    3. buffer <= 4 or PNR within 14d   -> TENSION
    4. otherwise                       -> SAFE

    Recoverability and the current percentage are checked before PNR
    proximity, so a failing subject is never reported as merely tense.
    """
    percentage = calculate_percentage(counter.attended, counter.conducted)
    buffer = calculate_buffer(counter, total_sessions)
    deficit = calculate_deficit(counter, total_sessions)
    remaining = remaining_sessions(counter, total_sessions)

    if deficit > remaining:
        return CRITICAL

    if percentage < MIN_ATTENDANCE_PERCENT or buffer <= CRITICAL_BUFFER:
        return CRITICAL

    pnr_is_close = False
    if isinstance(pnr, PnrOnDate):
        pnr_is_close = days_until_pnr(pnr, today) <= PNR_WARNING_DAYS

    if buffer <= TENSION_BUFFER or pnr_is_close:
        return TENSION

    return SAFE


def worst_status(statuses: List[str]) -> str:
    worst = SAFE
    for s in statuses:
        if STATUS_SEVERITY[s] > STATUS_SEVERITY[worst]:
            worst = s
    return worst


def status_worsened(before: str, after: str) -> bool:
    return (before == SAFE and after != SAFE) or (before == TENSION and after == CRITICAL)


# ----------------------------
# 4) RECOVERY PLANNER
# ----------------------------

def recovery_difficulty(deficit: int, sessions_per_week: int) -> str:
    if deficit > sessions_per_week * 4:
        return HARD
    if deficit > sessions_per_week * 2:
        return MEDIUM
    return EASY


def generate_recovery_plan(
    counter: AttendanceCounter,
    total_sessions: int,
    sessions_per_week: int,
    weeks_remaining: int,
) -> Dict[str, object]:
    deficit = calculate_deficit(counter, total_sessions)
    remaining = remaining_sessions(counter, total_sessions)

    if deficit > remaining:
        return {
            "possible": False,
            "difficulty": IMPOSSIBLE,
            "weekly_breakdown": [],
            "final_percentage": None,
            "required_attendances": deficit,
            "weeks_needed": 0,
            "max_achievable_percentage": calculate_percentage(counter.attended + remaining, total_sessions),
            "message": "Recovery is mathematically impossible. Even with perfect attendance, 75% cannot be reached.",
        }

    if deficit == 0:
        return {
            "possible": True,
            "difficulty": NONE,
            "weekly_breakdown": [],
            "final_percentage": calculate_percentage(counter.attended + remaining, total_sessions),
            "required_attendances": 0,
            "weeks_needed": 0,
            "max_achievable_percentage": None,
            "message": "You are already at or above 75%. No recovery needed.",
        }

    # front-load: attend as much as possible as early as possible
    breakdown: List[Dict[str, int]] = []
    left = deficit
    week = 1
    while left > 0 and week <= weeks_remaining and sessions_per_week > 0:
        attend = min(left, sessions_per_week)
        breakdown.append({
            "week": week,
            "attend": attend,
            "skip": sessions_per_week - attend,
        })
        left -= attend
        week += 1

    return {
        "possible": True,
        "difficulty": recovery_difficulty(deficit, sessions_per_week),
        "weekly_breakdown": breakdown,
        "final_percentage": calculate_percentage(counter.attended + deficit, total_sessions),
        "required_attendances": deficit,
        "weeks_needed": len(breakdown),
        "max_achievable_percentage": None,
        "message": f"Attend {deficit} more sessions to get back to 75%.",
    }


# ----------------------------
# 5) WHAT-IF SIMULATOR
# ----------------------------

def simulate_skip(
    counter: AttendanceCounter,
    total_sessions: int,
    skip_count: int = 1,
    sessions_per_week: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, object]:
    """
    What happens if the next `skip_count` sessions are missed.

    Pass `sessions_per_week` to let PNR proximity feed both statuses;
    without it the statuses use buffer and percentage alone.
    """
    current = normalize_counter(counter)
    skipped = AttendanceCounter(
        attended=current.attended,
        conducted=current.conducted + max(0, skip_count),
    )

    before_pct = calculate_percentage(current.attended, current.conducted)
    after_pct = calculate_percentage(skipped.attended, skipped.conducted)
    before_buffer = calculate_buffer(current, total_sessions)
    after_buffer = calculate_buffer(skipped, total_sessions)

    before_pnr = after_pnr = None
    if sessions_per_week is not None:
        before_pnr = calculate_pnr(current, total_sessions, sessions_per_week, today)
        after_pnr = calculate_pnr(skipped, total_sessions, sessions_per_week, today)

    before_status = get_status(current, total_sessions, before_pnr, today)
    after_status = get_status(skipped, total_sessions, after_pnr, today)

    return {
        "skip_count": max(0, skip_count),
        "current_percentage": before_pct,
        "new_percentage": after_pct,
        "percentage_change": round_half_up(Decimal(str(after_pct)) - Decimal(str(before_pct)), 2),
        "current_buffer": before_buffer,
        "new_buffer": after_buffer,
        "buffer_change": after_buffer - before_buffer,
        "current_status": before_status,
        "new_status": after_status,
        "status_worsened": status_worsened(before_status, after_status),
        "would_cross_threshold": before_pct >= MIN_ATTENDANCE_PERCENT and after_pct < MIN_ATTENDANCE_PERCENT,
    }


def simulate_attend_all(counter: AttendanceCounter, total_sessions: int) -> Dict[str, object]:
    current = normalize_counter(counter)
    remaining = max(0, remaining_sessions(current, total_sessions))
    final_attended = current.attended + remaining
    final_pct = calculate_percentage(final_attended, total_sessions)

    return {
        "final_attended": final_attended,
        "final_percentage": final_pct,
        "can_reach_75": final_pct >= MIN_ATTENDANCE_PERCENT,
        "remaining": remaining,
    }


def simulate_cancellation(counter: AttendanceCounter, total_sessions: int) -> Dict[str, object]:
    # a cancelled session shrinks the term, it never touches the counter
    current = normalize_counter(counter)
    new_total = max(0, total_sessions - 1)

    before_buffer = calculate_buffer(current, total_sessions)
    new_buffer = calculate_buffer(current, new_total)
    before_status = get_status(current, total_sessions)
    new_status = get_status(current, new_total)

    return {
        "new_total": new_total,
        "current_buffer": before_buffer,
        "new_buffer": new_buffer,
        "buffer_change": new_buffer - before_buffer,
        "current_status": before_status,
        "new_status": new_status,
    }


def last_safe_skip_date(
    counter: AttendanceCounter,
    total_sessions: int,
    sessions_per_week: int,
    today: Optional[date] = None,
) -> Optional[date]:
    """Last date skips can continue before the buffer drops into TENSION."""
    buffer = calculate_buffer(counter, total_sessions)
    if buffer <= TENSION_BUFFER or sessions_per_week <= 0:
        return None

    weeks = math.floor((buffer - TENSION_BUFFER) / sessions_per_week)
    if weeks <= 0:
        return None

    return add_weeks(resolve_today(today), weeks)


# ----------------------------
# 6) FULL SUBJECT STATE
# ----------------------------

def calculate_subject_state(
    subject: Subject,
    weeks_remaining: int,
    today: Optional[date] = None,
) -> Dict[str, object]:
    today = resolve_today(today)
    profile = subject.profile
    counter = subject.attendance
    total = profile.total_expected_sessions

    pnr = calculate_pnr(counter, total, profile.sessions_per_week, today)
    plan = generate_recovery_plan(counter, total, profile.sessions_per_week, weeks_remaining)

    return {
        "subject_code": profile.code,
        "percentage": calculate_percentage(counter.attended, counter.conducted),
        "buffer": calculate_buffer(counter, total),
        "deficit": calculate_deficit(counter, total),
        "status": get_status(counter, total, pnr, today),
        "remaining_sessions": remaining_sessions(counter, total),
        "pnr_date": pnr_to_json(pnr),
        "days_until_pnr": days_until_pnr(pnr, today),
        "recovery_possible": plan["possible"],
        "recovery_plan": plan,
    }


def calculate_all_subject_states(
    subjects: List[Subject],
    weeks_remaining: int,
    today: Optional[date] = None,
) -> List[Dict[str, object]]:
    today = resolve_today(today)
    return [calculate_subject_state(s, weeks_remaining, today) for s in subjects]


# ----------------------------
# 7) AGGREGATOR
# ----------------------------

def global_status(subjects: List[Subject], today: Optional[date] = None) -> str:
    if not subjects:
        return SAFE

    today = resolve_today(today)
    statuses = []
    for s in subjects:
        total = s.profile.total_expected_sessions
        pnr = calculate_pnr(s.attendance, total, s.profile.sessions_per_week, today)
        statuses.append(get_status(s.attendance, total, pnr, today))

    return worst_status(statuses)


def overall_percentage(subjects: List[Subject]) -> float:
    attended = sum(s.attendance.attended for s in subjects)
    conducted = sum(s.attendance.conducted for s in subjects)
    return calculate_percentage(attended, conducted)


def minimum_buffer(subjects: List[Subject]) -> int:
    if not subjects:
        return 0
    return min(calculate_buffer(s.attendance, s.profile.total_expected_sessions) for s in subjects)


def worst_pnr(subjects: List[Subject], today: Optional[date] = None) -> PNR:
    """Earliest PNR across subjects; any PASSED subject wins outright."""
    today = resolve_today(today)
    earliest: Optional[PnrOnDate] = None

    for s in subjects:
        pnr = calculate_pnr(s.attendance, s.profile.total_expected_sessions, s.profile.sessions_per_week, today)
        if isinstance(pnr, PnrPassed):
            return pnr
        if isinstance(pnr, PnrOnDate) and (earliest is None or pnr.on < earliest.on):
            earliest = pnr

    return earliest if earliest is not None else NoPnr()


# ----------------------------
# 8) PLAIN DATA IN / OUT
# ----------------------------

def subject_to_dict(s: Subject) -> Dict[str, object]:
    return {
        "code": s.profile.code,
        "name": s.profile.name,
        "total_expected_sessions": s.profile.total_expected_sessions,
        "sessions_per_week": s.profile.sessions_per_week,
        "attendance": {
            "attended": s.attendance.attended,
            "conducted": s.attendance.conducted,
        },
    }


def subject_from_dict(
    d: Dict[str, object],
    default_total: int = 75,
    default_sessions_per_week: int = 4,
) -> Subject:
    attendance = d.get("attendance") or {}
    return Subject(
        profile=SubjectProfile(
            code=str(d["code"]),
            name=str(d.get("name") or d["code"]),
            total_expected_sessions=int(d.get("total_expected_sessions") or default_total),
            sessions_per_week=int(d.get("sessions_per_week") or default_sessions_per_week),
        ),
        attendance=AttendanceCounter(
            attended=int(attendance.get("attended", 0)),
            conducted=int(attendance.get("conducted", 0)),
        ),
    )
