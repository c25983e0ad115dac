"""Unit tests for monthly panel expansion."""

from datetime import date, timedelta

import pytest

from epts_panel.models.patient import DialysisOnset
from epts_panel.panel.expander import (
    build_monthly_record,
    classify_dialysis_onset,
    expand_patient,
    plan_expansion,
    resolve_end_date,
    whole_months,
)
from epts_panel.utils.exceptions import (
    DataQualityError,
    InvalidTemporalOrderError,
    MissingRequiredFieldError,
)


class TestWholeMonths:
    """Test day to month conversion."""

    @pytest.mark.parametrize(
        "days,expected",
        [(0, 0), (30, 0), (31, 1), (90, 2), (91, 2), (365, 12), (730, 24)],
    )
    def test_floor_of_days_times_12_over_365(self, days, expected):
        """Test months = floor(days * 12 / 365)."""
        assert whole_months(days) == expected

    def test_custom_days_per_year(self):
        """Test a leap-year day count changes the boundary."""
        assert whole_months(365, days_per_year=366) == 11


class TestResolveEndDate:
    """Test end-of-observation resolution."""

    def test_removal_date_wins(self, make_record):
        """Test removal date is used when present."""
        record = make_record(removal_date=date(2020, 6, 1), last_listing_date=date(2020, 3, 1))

        assert resolve_end_date(record) == date(2020, 6, 1)

    def test_falls_back_to_last_listing_date(self, make_record):
        """Test last listing date is used when removal date is missing."""
        record = make_record(removal_date=None, last_listing_date=date(2020, 3, 1))

        assert resolve_end_date(record) == date(2020, 3, 1)

    def test_no_end_date_fails(self, make_record):
        """Test a record with neither date fails instead of defaulting."""
        record = make_record(removal_date=None, last_listing_date=None)

        with pytest.raises(MissingRequiredFieldError) as exc_info:
            resolve_end_date(record)

        assert exc_info.value.reason == "missing_required_field"


class TestClassifyDialysisOnset:
    """Test dialysis onset tagging."""

    def test_start_after_listing_is_during_waitlist(self, make_record):
        """Test a dialysis start after listing is an onset during the waitlist."""
        record = make_record(dialysis_start_date=date(2020, 3, 1))

        assert classify_dialysis_onset(record) is DialysisOnset.DURING_WAITLIST

    def test_on_dialysis_at_listing(self, make_record):
        """Test dialysis at listing without a later start."""
        record = make_record(on_dialysis_at_listing=True, dialysis_duration_at_listing_years=1.0)

        assert classify_dialysis_onset(record) is DialysisOnset.AT_LISTING

    def test_confirmed_not_started(self, make_record):
        """Test a confirmed negative waitlist flag is NOT_STARTED."""
        record = make_record(started_dialysis_on_waitlist=False)

        assert classify_dialysis_onset(record) is DialysisOnset.NOT_STARTED

    def test_unknown_flag(self, make_record):
        """Test a blank waitlist flag is UNKNOWN."""
        record = make_record(started_dialysis_on_waitlist=None)

        assert classify_dialysis_onset(record) is DialysisOnset.UNKNOWN

    def test_flag_without_date_is_ambiguous(self, make_record):
        """Test a positive waitlist flag with no onset date is AMBIGUOUS."""
        record = make_record(started_dialysis_on_waitlist=True, dialysis_start_date=None)

        assert classify_dialysis_onset(record) is DialysisOnset.AMBIGUOUS

    def test_start_before_listing_fails(self, make_record):
        """Test a dialysis start before listing is rejected by default."""
        record = make_record(dialysis_start_date=date(2019, 12, 31))

        with pytest.raises(InvalidTemporalOrderError, match="precedes listing"):
            classify_dialysis_onset(record)

    def test_start_before_listing_within_tolerance(self, make_record):
        """Test a small lead within tolerance is accepted."""
        record = make_record(
            dialysis_start_date=date(2019, 12, 22),
            on_dialysis_at_listing=True,
            dialysis_duration_at_listing_years=0.0,
        )

        assert classify_dialysis_onset(record, tolerance_days=30) is DialysisOnset.AT_LISTING

    def test_start_on_listing_day_is_not_during_waitlist(self, make_record):
        """Test a start on the listing date is not an onset after listing."""
        record = make_record(dialysis_start_date=date(2020, 1, 1), on_dialysis_at_listing=True)

        assert classify_dialysis_onset(record) is DialysisOnset.AT_LISTING


class TestPlanExpansion:
    """Test per-patient validation before row generation."""

    def test_missing_listing_date(self, make_record):
        """Test a record without listing date is rejected."""
        with pytest.raises(MissingRequiredFieldError, match="no listing date"):
            plan_expansion(make_record(listing_date=None))

    def test_missing_age(self, make_record):
        """Test a record without age at listing is rejected."""
        with pytest.raises(MissingRequiredFieldError, match="no age at listing"):
            plan_expansion(make_record(age_at_listing_months=None))

    @pytest.mark.parametrize("duration", [-2.0, float("nan"), float("inf"), float("-inf")])
    def test_invalid_dialysis_duration(self, make_record, duration):
        """Test a negative or non-finite dialysis duration is a data-quality failure."""
        record = make_record(on_dialysis_at_listing=True, dialysis_duration_at_listing_years=duration)

        with pytest.raises(DataQualityError, match="non-negative number of years") as exc_info:
            plan_expansion(record)

        assert exc_info.value.reason == "data_quality"
        assert exc_info.value.patient_id == "P001"

    def test_zero_dialysis_duration_accepted(self, make_record):
        """Test a zero duration at listing is valid."""
        plan = plan_expansion(make_record(dialysis_duration_at_listing_years=0.0))

        assert plan.row_count == 13

    def test_negative_wait_time(self, make_record):
        """Test removal before listing fails fast."""
        record = make_record(removal_date=date(2019, 12, 1))

        with pytest.raises(InvalidTemporalOrderError) as exc_info:
            plan_expansion(record)

        assert exc_info.value.reason == "invalid_temporal_order"
        assert exc_info.value.patient_id == "P001"

    def test_months_until_dialysis(self, make_record):
        """Test onset month index is floor(onset_days * 12 / 365)."""
        record = make_record(
            listing_date=date(2019, 1, 1),
            removal_date=date(2020, 1, 1),
            dialysis_start_date=date(2019, 7, 1),
        )

        plan = plan_expansion(record)

        assert plan.months_until_dialysis == 5
        assert plan.months_total == 12
        assert plan.row_count == 13


class TestExpandPatient:
    """Test the monthly rows of one patient."""

    def test_three_month_scenario(self, make_record):
        """Test 2020-01-01 to 2020-04-01 gives rows 0, 1, 2."""
        record = make_record(listing_date=date(2020, 1, 1), removal_date=date(2020, 4, 1))

        rows, _ = expand_patient(record)

        assert [r.time_index for r in rows] == [0, 1, 2]

    def test_same_day_removal_gives_single_row(self, make_record):
        """Test months_total 0 yields one row."""
        record = make_record(removal_date=date(2020, 1, 1))

        rows, _ = expand_patient(record)

        assert len(rows) == 1
        assert rows[0].time_index == 0

    @pytest.mark.parametrize("wait_days", [0, 15, 45, 200, 365, 1000, 3650])
    def test_row_count_and_contiguous_indexes(self, make_record, wait_days):
        """Test rows are exactly 0..months_total with no gaps."""
        record = make_record(removal_date=date(2020, 1, 1) + timedelta(days=wait_days))

        rows, _ = expand_patient(record)

        months_total = whole_months(wait_days)
        assert len(rows) == months_total + 1
        assert [r.time_index for r in rows] == list(range(months_total + 1))

    def test_age_accrues_one_twelfth_per_month(self, make_record):
        """Test age grows by exactly 1/12 per month starting at months/12 + 1/12."""
        record = make_record(age_at_listing_months=600)

        rows, _ = expand_patient(record)

        assert rows[0].age_years == pytest.approx(50 + 1 / 12)
        for prev, cur in zip(rows, rows[1:]):
            assert cur.age_years > prev.age_years
            assert cur.age_years - prev.age_years == pytest.approx(1 / 12)

    def test_never_dialyzed_scenario(self, make_record):
        """Test a never-dialyzed patient is off dialysis with zero time in every row."""
        record = make_record(dialysis_start_date=None, on_dialysis_at_listing=False)

        rows, issues = expand_patient(record)

        assert all(r.on_dialysis is False for r in rows)
        assert all(r.dialysis_time_years == 0 for r in rows)
        assert all(r.dialysis_onset == "not_started" for r in rows)
        assert issues == []

    def test_pre_emptive_listing_scenario(self, make_record):
        """Test dialysis time stays 0 before onset and accrues (t-5)/12 after."""
        # Arrange
        record = make_record(
            listing_date=date(2019, 1, 1),
            removal_date=date(2020, 1, 1),
            dialysis_start_date=date(2019, 7, 1),
            started_dialysis_on_waitlist=True,
        )

        # Act
        rows, issues = expand_patient(record)

        # Assert
        assert len(rows) == 13
        for row in rows:
            if row.time_index < 5:
                assert row.dialysis_time_years == 0
                assert row.on_dialysis is False
            else:
                assert row.dialysis_time_years == pytest.approx((row.time_index - 5) / 12)
        assert rows[5].on_dialysis is False
        assert all(r.on_dialysis for r in rows[6:])
        assert issues == []

    def test_dialysis_time_non_decreasing(self, make_record):
        """Test dialysis time never decreases across months."""
        record = make_record(
            removal_date=date(2023, 1, 1), dialysis_start_date=date(2021, 2, 10)
        )

        rows, _ = expand_patient(record)

        times = [r.dialysis_time_years for r in rows]
        assert all(a <= b for a, b in zip(times, times[1:]))

    def test_on_dialysis_at_listing(self, make_record):
        """Test dialysis at listing accrues from the listing duration."""
        record = make_record(on_dialysis_at_listing=True, dialysis_duration_at_listing_years=2.5)

        rows, _ = expand_patient(record)

        for row in rows:
            assert row.on_dialysis is True
            assert row.dialysis_time_years == pytest.approx(2.5 + row.time_index / 12)

    def test_unknown_onset_is_tagged_not_reported(self, make_record, caplog):
        """Test unknown waitlist dialysis is tagged on rows without a warning."""
        record = make_record(started_dialysis_on_waitlist=None)

        rows, issues = expand_patient(record)

        assert all(r.dialysis_time_years == 0 for r in rows)
        assert all(r.dialysis_onset == "unknown" for r in rows)
        assert issues == []
        assert "WARNING" not in caplog.text

    def test_unknown_flag_with_start_date_is_not_reported(self, make_record):
        """Test a dated onset with a blank waitlist flag needs no warning."""
        record = make_record(
            dialysis_start_date=date(2020, 3, 1), started_dialysis_on_waitlist=None
        )

        rows, issues = expand_patient(record)

        assert rows[0].dialysis_onset == "during_waitlist"
        assert issues == []

    def test_conflicting_onset_is_reported(self, make_record, caplog):
        """Test a dated onset contradicting a negative waitlist flag is reported."""
        record = make_record(
            dialysis_start_date=date(2020, 3, 1), started_dialysis_on_waitlist=False
        )

        rows, issues = expand_patient(record)

        assert all(r.dialysis_onset == "during_waitlist" for r in rows)
        assert [i.kind for i in issues] == ["conflicting_dialysis_onset"]
        assert "the start date is used" in caplog.text

    def test_ambiguous_onset_is_reported(self, make_record, caplog):
        """Test a flagged onset with no usable date is reported and logged."""
        record = make_record(started_dialysis_on_waitlist=True)

        rows, issues = expand_patient(record)

        assert all(r.dialysis_onset == "ambiguous" for r in rows)
        assert [i.kind for i in issues] == ["ambiguous_dialysis_onset"]
        assert "treated as not started" in caplog.text

    def test_missing_dialysis_duration(self, make_record):
        """Test an unknown duration leaves dialysis time empty."""
        record = make_record(dialysis_duration_at_listing_years=None)

        rows, issues = expand_patient(record)

        assert all(r.dialysis_time_years is None for r in rows)
        assert all(r.on_dialysis is False for r in rows)
        assert "missing_dialysis_duration" in [i.kind for i in issues]

    def test_static_fields_carried_through(self, make_record):
        """Test static covariates appear unchanged on every row."""
        record = make_record(has_diabetes=True, has_previous_transplant=True, race_category="Asian")

        rows, _ = expand_patient(record)

        assert {(r.has_diabetes, r.has_previous_transplant, r.race_category) for r in rows} == {
            (True, True, "Asian")
        }


class TestBuildMonthlyRecord:
    """Test that a single month can be built on its own."""

    def test_month_independent_of_build_order(self, make_record):
        """Test building one month directly equals the same month from a full expansion."""
        record = make_record(dialysis_start_date=date(2020, 4, 15))
        plan = plan_expansion(record)
        rows, _ = expand_patient(record)

        assert build_monthly_record(plan, 7) == rows[7]
        assert build_monthly_record(plan, 2) == rows[2]

    def test_index_beyond_end_is_clamped(self, make_record):
        """Test an index past months_total yields the last month."""
        plan = plan_expansion(make_record())

        row = build_monthly_record(plan, plan.months_total + 10)

        assert row.time_index == plan.months_total

    def test_negative_index_rejected(self, make_record):
        """Test a negative month index is an error."""
        plan = plan_expansion(make_record())

        with pytest.raises(ValueError, match="time_index"):
            build_monthly_record(plan, -1)
