"""Static waitlist record data model.

This module defines the StaticPatientRecord dataclass, one immutable record per
patient at listing, and the DialysisOnset tag that makes the dialysis state of
a record explicit before expansion.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional


class DialysisOnset(Enum):
    """How dialysis onset was resolved for a patient.

    UNKNOWN and AMBIGUOUS are expanded exactly like NOT_STARTED; the tag keeps
    the difference visible in data-quality diagnostics.
    """

    AT_LISTING = "at_listing"
    DURING_WAITLIST = "during_waitlist"
    NOT_STARTED = "not_started"
    UNKNOWN = "unknown"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class StaticPatientRecord:
    """Waitlist candidate as known at listing.

    Attributes:
        patient_id: Unique patient identifier
        listing_date: Earliest listing date across concurrent listings
        last_listing_date: Latest listing date, fallback end of observation
        removal_date: Date of transplant or removal from the waitlist
        age_at_listing_months: Age at listing in whole months
        on_dialysis_at_listing: Whether the patient was on dialysis when listed
        dialysis_duration_at_listing_years: Dialysis time at listing (0 if never dialyzed)
        dialysis_start_date: Dialysis start, present only for onset at or after listing
        has_previous_transplant: Prior solid organ transplant
        has_diabetes: Diabetes at listing
        race_category: Categorical label, carried through to the panel
        started_dialysis_on_waitlist: Source "dialysis during waitlist" flag,
            None when the source leaves it blank
    """

    patient_id: str
    listing_date: Optional[date]
    last_listing_date: Optional[date] = None
    removal_date: Optional[date] = None
    age_at_listing_months: Optional[int] = None
    on_dialysis_at_listing: bool = False
    dialysis_duration_at_listing_years: Optional[float] = 0.0
    dialysis_start_date: Optional[date] = None
    has_previous_transplant: Optional[bool] = None
    has_diabetes: Optional[bool] = None
    race_category: Optional[str] = None
    started_dialysis_on_waitlist: Optional[bool] = None
