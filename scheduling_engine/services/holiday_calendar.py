"""
Organization-wide holiday calendar.

A holiday closes the day for every practitioner. Holidays are loaded once
(from a list or the healthcare.holidays table) and looked up synchronously.
"""

import logging
from datetime import date
from typing import Dict, Iterable, Optional

from supabase import Client

from ..models import Holiday

logger = logging.getLogger(__name__)


class HolidayCalendar:
    """In-memory index of holidays for one country (or all, when country is None)."""

    def __init__(self, holidays: Iterable[Holiday] = (), country: Optional[str] = None):
        self.country = country
        self._by_day: Dict[date, Holiday] = {}
        for holiday in holidays:
            self.add(holiday)

    @classmethod
    def from_supabase(cls, supabase_client: Client, country: Optional[str] = None) -> "HolidayCalendar":
        query = supabase_client.schema('healthcare').table('holidays').select('*')
        if country:
            query = query.eq('country', country)
        result = query.order('day').execute()
        holidays = [Holiday.model_validate(row) for row in result.data or []]
        logger.info(f"Loaded {len(holidays)} holidays (country={country or 'all'})")
        return cls(holidays, country=country)

    def add(self, holiday: Holiday) -> None:
        if self.country and holiday.country and holiday.country.lower() != self.country.lower():
            return
        self._by_day[holiday.day] = holiday

    def holiday_on(self, day: date) -> Optional[Holiday]:
        return self._by_day.get(day)
