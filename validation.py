"""
Input validation for subject and attendance data.

The engine assumes clean inputs. Everything user-entered passes through
here first:
- attended <= conducted, no negatives
- conducted roughly matches weeks elapsed x sessions per week (warning only)
- clear messages for every failure
"""

import math
from typing import Dict, List, Optional

# a term never comes close to these; they keep date projections in range
MAX_TOTAL_SESSIONS = 1000
MAX_SESSIONS_PER_WEEK = 50


class ValidationError(ValueError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(format_validation_errors(self.errors))


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_count(value) -> bool:
    """Whole, finite number. 5.0 is fine, 4.9 and NaN are not."""
    if not _is_number(value):
        return False
    return isinstance(value, int) or (math.isfinite(value) and value.is_integer())


def validate_attended_conducted(attended, conducted) -> Dict[str, object]:
    if not _is_number(attended) or not _is_number(conducted):
        return {"valid": False, "error": "Values must be numbers"}

    if not _is_count(attended) or not _is_count(conducted):
        return {"valid": False, "error": "Values must be whole numbers"}

    if attended < 0:
        return {"valid": False, "error": "Attended cannot be negative"}

    if conducted < 0:
        return {"valid": False, "error": "Conducted cannot be negative"}

    if attended > conducted:
        return {"valid": False, "error": "Attended cannot exceed conducted"}

    return {"valid": True}


def validate_expected_sessions(
    conducted: int,
    sessions_per_week: int,
    weeks_elapsed: int,
    tolerance_percent: float = 50,
) -> Dict[str, object]:
    """Flag conducted counts far from what the calendar suggests. Never invalid."""
    expected = weeks_elapsed * sessions_per_week
    tolerance = expected * (tolerance_percent / 100)
    lo = max(0, expected - tolerance)
    hi = expected + tolerance
    week = weeks_elapsed + 1

    if conducted < lo:
        return {
            "valid": True,
            "warning": f"Conducted ({conducted}) seems low for week {week}. Expected ~{round(expected)}.",
            "expected": expected,
        }

    if conducted > hi and expected > 0:
        return {
            "valid": True,
            "warning": f"Conducted ({conducted}) seems high for week {week}. Expected ~{round(expected)}.",
            "expected": expected,
        }

    return {"valid": True, "expected": expected}


def validate_subject_data(subject: Optional[Dict[str, object]], weeks_elapsed: Optional[int] = None) -> Dict[str, object]:
    if not subject:
        return {"valid": False, "errors": ["Subject is required"], "warnings": []}

    errors: List[str] = []
    warnings: List[str] = []

    if not subject.get("code"):
        errors.append("Subject code is required")

    if not subject.get("name"):
        errors.append("Subject name is required")

    attendance = subject.get("attendance") or {}
    attended = attendance.get("attended", 0)
    conducted = attendance.get("conducted", 0)

    ac = validate_attended_conducted(attended, conducted)
    if not ac["valid"]:
        errors.append(ac["error"])

    total = subject.get("total_expected_sessions")
    if total is not None and (not _is_count(total) or total < 0):
        errors.append("Total expected sessions must be a non-negative whole number")
    elif total is not None and total > MAX_TOTAL_SESSIONS:
        errors.append(f"Total expected sessions cannot exceed {MAX_TOTAL_SESSIONS}")

    spw = subject.get("sessions_per_week")
    if spw is not None and (not _is_count(spw) or spw < 0):
        errors.append("Sessions per week must be a non-negative whole number")
    elif spw is not None and spw > MAX_SESSIONS_PER_WEEK:
        errors.append(f"Sessions per week cannot exceed {MAX_SESSIONS_PER_WEEK}")

    if errors:
        return {"valid": False, "errors": errors, "warnings": warnings}

    if weeks_elapsed is not None and spw:
        es = validate_expected_sessions(conducted, spw, weeks_elapsed)
        if es.get("warning"):
            warnings.append(es["warning"])

    if total and conducted > total:
        warnings.append(f"Conducted ({conducted}) exceeds total expected ({total})")

    return {"valid": True, "errors": errors, "warnings": warnings}


def validate_batch_data(subjects, weeks_elapsed: Optional[int] = None) -> Dict[str, object]:
    if not isinstance(subjects, list):
        return {"valid": False, "results": [], "error": "Data must be an array of subjects"}

    results = []
    for s in subjects:
        code = s.get("code") if isinstance(s, dict) else None
        results.append({"code": code, **validate_subject_data(s if isinstance(s, dict) else None, weeks_elapsed)})

    return {"valid": all(r["valid"] for r in results), "results": results}


def sanitize_numeric_input(value, default: int = 0, lo: int = 0, hi: Optional[int] = None) -> int:
    try:
        num = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default

    num = max(lo, num)
    if hi is not None:
        num = min(hi, num)
    return num


def format_validation_errors(errors: List[str]) -> str:
    if not errors:
        return ""
    if len(errors) == 1:
        return errors[0]
    return "\n".join(f"{i + 1}. {e}" for i, e in enumerate(errors))
