"""
Engine tests: base metrics, status, PNR, recovery, simulation, aggregation.
"""

import json
from datetime import date, timedelta

import pytest

import engine
from engine import (
    AttendanceCounter,
    NoPnr,
    PnrOnDate,
    PnrPassed,
    Subject,
    SubjectProfile,
)

TODAY = date(2026, 2, 2)


def counter(attended, conducted=0):
    return AttendanceCounter(attended=attended, conducted=conducted)


def subject(code, attended, conducted, total=80, per_week=4):
    return Subject(
        profile=SubjectProfile(code=code, name=code, total_expected_sessions=total, sessions_per_week=per_week),
        attendance=counter(attended, conducted),
    )


# ----------------------------
# BASE METRICS
# ----------------------------

class TestPercentage:
    def test_basic(self):
        assert engine.calculate_percentage(28, 41) == 68.29
        assert engine.calculate_percentage(75, 100) == 75
        assert engine.calculate_percentage(10, 10) == 100

    def test_zero_conducted(self):
        assert engine.calculate_percentage(0, 0) == 0
        assert engine.calculate_percentage(5, 0) == 0

    def test_rounds_half_up(self):
        # 3.125 and 0.625 would round down under banker's rounding
        assert engine.calculate_percentage(1, 32) == 3.13
        assert engine.calculate_percentage(1, 160) == 0.63

    def test_bounded_when_attended_within_conducted(self):
        for conducted in range(1, 40):
            for attended in range(conducted + 1):
                assert 0 <= engine.calculate_percentage(attended, conducted) <= 100


class TestBuffer:
    def test_reference_example(self):
        # remaining = 72, min_required = 60, 6 + 72 - 60 = 18
        assert engine.calculate_buffer(counter(6, 8), 80) == 18

    def test_never_negative(self):
        assert engine.calculate_buffer(counter(10, 60), 80) == 0

    def test_full_attendance(self):
        assert engine.calculate_buffer(counter(60, 60), 80) == 20

    def test_zero_total(self):
        assert engine.calculate_buffer(counter(0, 0), 0) == 0
        assert engine.calculate_buffer(counter(3, 5), 0) == 0


class TestDeficit:
    def test_needed_sessions(self):
        assert engine.calculate_deficit(counter(28), 80) == 32

    def test_zero_at_threshold(self):
        assert engine.calculate_deficit(counter(60), 80) == 0
        assert engine.calculate_deficit(counter(75), 80) == 0

    def test_min_required_rounds_up(self):
        # ceil(45 * 0.75) = 34
        assert engine.calculate_deficit(counter(30), 45) == 4

    def test_zero_total(self):
        assert engine.calculate_deficit(counter(0, 0), 0) == 0


# ----------------------------
# STATUS
# ----------------------------

class TestStatus:
    def test_below_75_is_critical(self):
        assert engine.get_status(counter(28, 41), 80) == engine.CRITICAL

    def test_unrecoverable_is_critical(self):
        assert engine.get_status(counter(20, 70), 80) == engine.CRITICAL

    def test_low_buffer_is_critical(self):
        # 75.64% but buffer 1
        assert engine.get_status(counter(59, 78), 80) == engine.CRITICAL

    def test_buffer_two_to_four_is_tension(self):
        assert engine.get_status(counter(57, 75), 80) == engine.TENSION

    def test_large_buffer_is_safe(self):
        assert engine.get_status(counter(60, 64), 80) == engine.SAFE

    def test_pnr_within_two_weeks_is_tension(self):
        c = counter(45, 55)  # buffer 10, PNR in 2 weeks at 4/week
        pnr = engine.calculate_pnr(c, 80, 4, TODAY)
        assert pnr == PnrOnDate(TODAY + timedelta(days=14))
        assert engine.get_status(c, 80) == engine.SAFE
        assert engine.get_status(c, 80, pnr, TODAY) == engine.TENSION

    def test_failing_subject_is_not_downgraded_by_close_pnr(self):
        c = counter(28, 41)
        pnr = engine.calculate_pnr(c, 80, 4, TODAY)
        assert isinstance(pnr, PnrOnDate)
        assert engine.get_status(c, 80, pnr, TODAY) == engine.CRITICAL

    def test_passed_pnr_does_not_count_as_proximity(self):
        assert engine.get_status(counter(60, 64), 80, PnrPassed(), TODAY) == engine.SAFE


# ----------------------------
# PNR
# ----------------------------

class TestPNR:
    def test_passed_when_deficit_exceeds_remaining(self):
        assert engine.calculate_pnr(counter(20, 70), 80, 4, TODAY) == PnrPassed()

    def test_none_without_deficit(self):
        assert engine.calculate_pnr(counter(60, 64), 80, 4, TODAY) == NoPnr()

    def test_future_date(self):
        # remaining 30, deficit 20, 10 spare sessions -> 2 weeks
        assert engine.calculate_pnr(counter(40, 50), 80, 4, TODAY) == PnrOnDate(date(2026, 2, 16))

    def test_less_than_a_week_left_is_passed(self):
        assert engine.calculate_pnr(counter(58, 76), 80, 4, TODAY) == PnrPassed()

    def test_zero_sessions_per_week_does_not_divide(self):
        assert engine.calculate_pnr(counter(40, 50), 80, 0, TODAY) == PnrPassed()

    def test_projection_past_the_calendar_is_capped(self):
        pnr = engine.calculate_pnr(counter(0, 0), 10**7, 1, TODAY)
        assert pnr == PnrOnDate(date.max)
        assert engine.pnr_to_json(pnr) == "9999-12-31"
        assert engine.days_until_pnr(pnr, TODAY) == (date.max - TODAY).days

    def test_days_until(self):
        assert engine.days_until_pnr(PnrPassed(), TODAY) == -1
        assert engine.days_until_pnr(NoPnr(), TODAY) is None
        assert engine.days_until_pnr(PnrOnDate(date(2026, 2, 16)), TODAY) == 14

    def test_days_until_stale_date_goes_negative(self):
        assert engine.days_until_pnr(PnrOnDate(date(2026, 2, 16)), date(2026, 3, 1)) == -13

    def test_json_forms(self):
        assert engine.pnr_to_json(PnrPassed()) == "PASSED"
        assert engine.pnr_to_json(NoPnr()) is None
        assert engine.pnr_to_json(PnrOnDate(date(2026, 2, 16))) == "2026-02-16"

    def test_unrecoverable_implies_critical_and_passed(self):
        for attended in range(0, 30):
            c = counter(attended, 70)
            if engine.calculate_deficit(c, 80) > 10:
                assert engine.get_status(c, 80) == engine.CRITICAL
                assert engine.calculate_pnr(c, 80, 4, TODAY) == PnrPassed()


# ----------------------------
# RECOVERY PLAN
# ----------------------------

class TestRecoveryPlan:
    def test_impossible(self):
        plan = engine.generate_recovery_plan(counter(20, 70), 80, 4, 3)
        assert plan["possible"] is False
        assert plan["difficulty"] == engine.IMPOSSIBLE
        assert plan["weekly_breakdown"] == []
        assert plan["max_achievable_percentage"] == 37.5

    def test_nothing_needed(self):
        plan = engine.generate_recovery_plan(counter(60, 64), 80, 4, 4)
        assert plan["possible"] is True
        assert plan["difficulty"] == engine.NONE
        assert plan["weekly_breakdown"] == []
        assert plan["final_percentage"] == 95.0

    def test_week_by_week(self):
        plan = engine.generate_recovery_plan(counter(45, 60), 80, 5, 4)
        assert plan["possible"] is True
        assert plan["required_attendances"] == 15
        assert plan["weekly_breakdown"] == [
            {"week": 1, "attend": 5, "skip": 0},
            {"week": 2, "attend": 5, "skip": 0},
            {"week": 3, "attend": 5, "skip": 0},
        ]
        assert sum(w["attend"] for w in plan["weekly_breakdown"]) == 15
        assert plan["weeks_needed"] == 3
        assert plan["final_percentage"] == 75.0
        assert plan["difficulty"] == engine.MEDIUM

    def test_last_week_leaves_skips(self):
        plan = engine.generate_recovery_plan(counter(57, 70), 80, 4, 5)
        assert plan["weekly_breakdown"] == [{"week": 1, "attend": 3, "skip": 1}]
        assert plan["difficulty"] == engine.EASY

    def test_easy(self):
        plan = engine.generate_recovery_plan(counter(55, 70), 80, 5, 2)
        assert plan["difficulty"] == engine.EASY

    def test_hard_is_capped_by_weeks_remaining(self):
        plan = engine.generate_recovery_plan(counter(35, 50), 80, 5, 4)
        assert plan["possible"] is True
        assert plan["difficulty"] == engine.HARD
        assert plan["weeks_needed"] == 4
        assert sum(w["attend"] for w in plan["weekly_breakdown"]) == 20

    def test_no_deficit_means_no_plan_and_no_pnr(self):
        for attended in range(60, 65):
            c = counter(attended, 64)
            assert engine.calculate_pnr(c, 80, 4, TODAY) == NoPnr()
            assert engine.generate_recovery_plan(c, 80, 4, 4)["difficulty"] == engine.NONE


# ----------------------------
# SIMULATOR
# ----------------------------

class TestSimulateSkip:
    def test_single_skip(self):
        result = engine.simulate_skip(counter(60, 70), 80, 1)
        assert result["current_percentage"] == 85.71
        assert result["new_percentage"] == 84.51
        assert result["percentage_change"] == -1.2
        assert result["new_percentage"] < result["current_percentage"]

    def test_threshold_crossing(self):
        result = engine.simulate_skip(counter(60, 80), 85, 1)
        assert result["current_percentage"] == 75.0
        assert result["would_cross_threshold"] is True

    def test_status_worsening(self):
        result = engine.simulate_skip(counter(60, 75), 80, 1)
        assert result["current_status"] == engine.SAFE
        assert result["new_status"] == engine.TENSION
        assert result["status_worsened"] is True

    def test_tension_to_tension_is_not_worse(self):
        result = engine.simulate_skip(counter(57, 74), 80, 1)
        assert result["current_status"] == engine.TENSION
        assert result["new_status"] == engine.TENSION
        assert result["status_worsened"] is False

    def test_monotonic(self):
        c = counter(40, 50)
        previous = None
        for skips in range(0, 25):
            pct = engine.simulate_skip(c, 80, skips)["new_percentage"]
            if previous is not None:
                assert pct <= previous
            previous = pct

    def test_clamps_bad_counter(self):
        result = engine.simulate_skip(counter(12, 10), 80, 1)
        assert result["current_percentage"] == 100
        assert engine.simulate_skip(counter(40, 50), 80, -3)["skip_count"] == 0

    def test_with_pnr_proximity(self):
        # buffer 10 -> 9 after a skip; PNR two weeks out either way
        result = engine.simulate_skip(counter(45, 55), 80, 1, sessions_per_week=4, today=TODAY)
        assert result["current_status"] == engine.TENSION
        assert result["new_status"] == engine.TENSION


class TestSimulateAttendAll:
    def test_best_case(self):
        result = engine.simulate_attend_all(counter(40, 50), 80)
        assert result == {"final_attended": 70, "final_percentage": 87.5, "can_reach_75": True, "remaining": 30}

    def test_unreachable(self):
        result = engine.simulate_attend_all(counter(20, 70), 80)
        assert result["final_percentage"] < 75
        assert result["can_reach_75"] is False


class TestSimulateCancellation:
    def test_recomputes_against_smaller_total(self):
        c = counter(57, 75)
        result = engine.simulate_cancellation(c, 80)
        assert result["new_total"] == 79
        assert result["new_buffer"] == engine.calculate_buffer(c, 79)
        assert result["buffer_change"] == result["new_buffer"] - engine.calculate_buffer(c, 80)
        assert result["new_status"] == engine.get_status(c, 79)


class TestLastSafeSkipDate:
    def test_weeks_of_spare_buffer(self):
        # buffer 16, 12 above the tension band, 3 weeks at 4/week
        assert engine.last_safe_skip_date(counter(60, 64), 80, 4, TODAY) == TODAY + timedelta(days=21)

    def test_none_in_tension(self):
        assert engine.last_safe_skip_date(counter(57, 75), 80, 4, TODAY) is None

    def test_huge_buffer_is_capped(self):
        assert engine.last_safe_skip_date(counter(10**7, 10**7), 10**7, 1, TODAY) == date.max


# ----------------------------
# SUBJECT STATE
# ----------------------------

class TestSubjectState:
    def test_complete_bundle(self):
        s = subject("ML", 45, 60, total=80, per_week=5)
        state = engine.calculate_subject_state(s, 4, date(2026, 3, 2))

        assert state["subject_code"] == "ML"
        assert state["percentage"] == 75.0
        assert state["buffer"] == 5
        assert state["deficit"] == 15
        assert state["remaining_sessions"] == 20
        assert state["pnr_date"] == "2026-03-09"
        assert state["days_until_pnr"] == 7
        assert state["status"] == engine.TENSION
        assert state["recovery_possible"] is True
        assert state["recovery_plan"]["required_attendances"] == 15

    def test_plain_serializable(self):
        states = engine.calculate_all_subject_states(
            [subject("A", 20, 70), subject("B", 60, 64), subject("C", 40, 50)], 4, TODAY
        )
        json.dumps(states)
        assert [s["pnr_date"] for s in states] == ["PASSED", None, "2026-02-16"]
        assert [s["days_until_pnr"] for s in states] == [-1, None, 14]

    def test_idempotent(self):
        s = subject("ML", 45, 60, total=80, per_week=5)
        assert engine.calculate_subject_state(s, 4, TODAY) == engine.calculate_subject_state(s, 4, TODAY)
        assert engine.simulate_skip(s.attendance, 80, 2) == engine.simulate_skip(s.attendance, 80, 2)


# ----------------------------
# AGGREGATOR
# ----------------------------

SAFE_SUBJECT = subject("A", 60, 64)
CRITICAL_SUBJECT = subject("B", 28, 41)
TENSION_SUBJECT = subject("D", 57, 75)


class TestGlobalStatus:
    def test_empty_is_safe(self):
        assert engine.global_status([], TODAY) == engine.SAFE

    def test_any_critical_wins(self):
        assert engine.global_status([SAFE_SUBJECT, CRITICAL_SUBJECT], TODAY) == engine.CRITICAL
        assert engine.global_status([TENSION_SUBJECT, CRITICAL_SUBJECT, SAFE_SUBJECT], TODAY) == engine.CRITICAL

    def test_tension_over_safe(self):
        assert engine.global_status([SAFE_SUBJECT, TENSION_SUBJECT], TODAY) == engine.TENSION

    def test_all_safe(self):
        assert engine.global_status([SAFE_SUBJECT, subject("C", 55, 60)], TODAY) == engine.SAFE


class TestOverall:
    def test_overall_percentage(self):
        assert engine.overall_percentage([SAFE_SUBJECT, CRITICAL_SUBJECT]) == 83.81

    def test_overall_percentage_empty(self):
        assert engine.overall_percentage([]) == 0
        assert engine.overall_percentage([subject("Z", 0, 0)]) == 0

    def test_minimum_buffer(self):
        assert engine.minimum_buffer([SAFE_SUBJECT, TENSION_SUBJECT]) == 2
        assert engine.minimum_buffer([]) == 0

    def test_worst_pnr(self):
        assert engine.worst_pnr([SAFE_SUBJECT], TODAY) == NoPnr()
        assert engine.worst_pnr([SAFE_SUBJECT, subject("C", 55, 60), subject("E", 40, 50)], TODAY) == PnrOnDate(date(2026, 2, 16))
        assert engine.worst_pnr([subject("C", 55, 60), subject("F", 20, 70)], TODAY) == PnrPassed()


class TestPlainData:
    def test_round_trip(self):
        s = subject("ML", 45, 60, total=75, per_week=5)
        assert engine.subject_from_dict(engine.subject_to_dict(s)) == s

    def test_defaults_for_missing_shape(self):
        s = engine.subject_from_dict({"code": "X", "attendance": {"attended": 3, "conducted": 4}})
        assert s.profile.name == "X"
        assert s.profile.total_expected_sessions == 75
        assert s.profile.sessions_per_week == 4

    @pytest.mark.parametrize("bad", [{"attended": 1}, {}])
    def test_partial_attendance(self, bad):
        s = engine.subject_from_dict({"code": "X", "attendance": bad})
        assert s.attendance.conducted == 0
