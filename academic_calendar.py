"""
Academic calendar facts for the engine.

The engine never looks at a calendar itself. This module turns a date into
the plain facts it needs (weeks remaining, defaulter list proximity, ...)
so the store and the API can hand them over.

TE DS Even Semester 2025-26 is built in; a JSON file with the same keys
can replace it (see Config.SEMESTER_FILE).
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional


DEFAULT_SEMESTER = {
    "teaching_start": "2026-01-19",
    "end_date": "2026-04-24",
    "teaching_weeks": 15,
    "holidays": [
        {"date": "2026-01-26", "name": "Republic Day", "type": "national"},
    ],
    "defaulter_lists": [
        {"date": "2026-02-02", "name": "1st Defaulter List", "week": 4, "severity": "warning"},
        {"date": "2026-03-02", "name": "2nd Defaulter List", "week": 7, "severity": "serious"},
        {"date": "2026-04-04", "name": "3rd Defaulter List", "week": 11, "severity": "critical"},
        {"date": "2026-04-21", "name": "Final Defaulter List", "week": 14, "severity": "final"},
    ],
    "exam_periods": [
        {"start": "2026-03-05", "end": "2026-03-07", "name": "Mid Semester Exam (MSE) & UT-I"},
        {"start": "2026-04-22", "end": "2026-04-23", "name": "UT-II for TE and BE"},
    ],
}

DEFAULTER_WARNING_DAYS = 7

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"
UNRELIABLE = "UNRELIABLE"


# ----------------------------
# HELPERS
# ----------------------------

def parse_date(iso_yyyy_mm_dd: str) -> date:
    return datetime.strptime(iso_yyyy_mm_dd, "%Y-%m-%d").date()


def days_until(target: date, today: date) -> int:
    return (target - today).days


def is_weekend(d: date) -> bool:
    return d.weekday() >= 5


# ----------------------------
# SEMESTER CALENDAR
# ----------------------------

@dataclass
class SemesterCalendar:
    teaching_start: date
    end_date: date
    teaching_weeks: int
    holidays: List[Dict[str, object]] = field(default_factory=list)
    defaulter_lists: List[Dict[str, object]] = field(default_factory=list)
    exam_periods: List[Dict[str, object]] = field(default_factory=list)

    # weeks

    def weeks_elapsed(self, today: date) -> int:
        return max(0, (today - self.teaching_start).days // 7)

    def weeks_remaining(self, today: date) -> int:
        return max(0, self.teaching_weeks - self.weeks_elapsed(today))

    def current_week(self, today: date) -> int:
        """1-indexed, capped at the last teaching week."""
        return min(self.weeks_elapsed(today) + 1, self.teaching_weeks)

    def semester_progress(self, today: date) -> int:
        if self.teaching_weeks <= 0:
            return 100
        return min(100, round(self.current_week(today) / self.teaching_weeks * 100))

    # holidays / teaching days

    def holiday_info(self, d: date) -> Optional[Dict[str, object]]:
        for h in self.holidays:
            if parse_date(str(h["date"])) == d:
                return h
        return None

    def is_holiday(self, d: date) -> bool:
        return self.holiday_info(d) is not None

    def is_teaching_day(self, d: date) -> bool:
        return not is_weekend(d) and not self.is_holiday(d)

    def count_teaching_days(self, start: date, end: date) -> int:
        count = 0
        current = start
        while current <= end:
            if self.is_teaching_day(current):
                count += 1
            current += timedelta(days=1)
        return count

    def teaching_days_remaining(self, today: date) -> int:
        return self.count_teaching_days(today, self.end_date)

    # defaulter lists

    def upcoming_defaulter_lists(self, today: date) -> List[Dict[str, object]]:
        upcoming = []
        for dl in self.defaulter_lists:
            dleft = days_until(parse_date(str(dl["date"])), today)
            if dleft >= 0:
                upcoming.append({**dl, "days_until": dleft})
        upcoming.sort(key=lambda x: x["days_until"])
        return upcoming

    def next_defaulter_list(self, today: date) -> Optional[Dict[str, object]]:
        # strictly after today, a list published today is already out
        for dl in self.upcoming_defaulter_lists(today):
            if dl["days_until"] > 0:
                return dl
        return None

    def days_until_next_defaulter(self, today: date) -> Optional[int]:
        nxt = self.next_defaulter_list(today)
        return None if nxt is None else int(nxt["days_until"])

    def near_defaulter_list(self, today: date) -> Optional[Dict[str, object]]:
        for dl in self.upcoming_defaulter_lists(today):
            if dl["days_until"] <= DEFAULTER_WARNING_DAYS:
                return dl
        return None

    # exams

    def exam_period(self, d: date) -> Optional[Dict[str, object]]:
        for exam in self.exam_periods:
            if parse_date(str(exam["start"])) <= d <= parse_date(str(exam["end"])):
                return exam
        return None

    def summary(self, today: date) -> Dict[str, object]:
        days_left = self.days_until_next_defaulter(today)
        return {
            "today": today.isoformat(),
            "current_week": self.current_week(today),
            "weeks_elapsed": self.weeks_elapsed(today),
            "weeks_remaining": self.weeks_remaining(today),
            "teaching_days_remaining": self.teaching_days_remaining(today),
            "semester_progress": self.semester_progress(today),
            "is_teaching_day": self.is_teaching_day(today),
            "holiday": self.holiday_info(today),
            "exam_period": self.exam_period(today),
            "next_defaulter_list": self.next_defaulter_list(today),
            "days_until_next_defaulter": days_left,
            "next_defaulter_countdown": None if days_left is None else format_countdown(days_left),
            "near_defaulter_list": self.near_defaulter_list(today),
        }


def calendar_from_dict(d: Dict[str, object]) -> SemesterCalendar:
    return SemesterCalendar(
        teaching_start=parse_date(str(d["teaching_start"])),
        end_date=parse_date(str(d["end_date"])),
        teaching_weeks=int(d["teaching_weeks"]),
        holidays=list(d.get("holidays", [])),
        defaulter_lists=list(d.get("defaulter_lists", [])),
        exam_periods=list(d.get("exam_periods", [])),
    )


def load_calendar(path: str = "") -> SemesterCalendar:
    if not path:
        return calendar_from_dict(DEFAULT_SEMESTER)
    with open(path, "r") as f:
        return calendar_from_dict(json.load(f))


# ----------------------------
# DATA CONFIDENCE
# ----------------------------

def data_confidence(last_updated: Optional[datetime], now: datetime) -> str:
    """
    How much to trust the counters, by age of the last update:
    HIGH <= 7 days, MEDIUM <= 14, LOW <= 30, UNRELIABLE beyond (or never).
    """
    if last_updated is None:
        return UNRELIABLE

    age = (now - last_updated).days
    if age <= 7:
        return HIGH
    if age <= 14:
        return MEDIUM
    if age <= 30:
        return LOW
    return UNRELIABLE


def needs_update(last_updated: Optional[datetime], now: datetime) -> bool:
    return data_confidence(last_updated, now) in (LOW, UNRELIABLE)


def requires_forced_update(last_updated: Optional[datetime], now: datetime) -> bool:
    return data_confidence(last_updated, now) == UNRELIABLE


def format_countdown(days: int) -> str:
    if days < 0:
        return "Passed"
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days <= 7:
        return f"{days} days"

    weeks = days // 7
    return "1 week" if weeks == 1 else f"{weeks} weeks"
