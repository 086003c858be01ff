import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from rideshare.config import settings
from rideshare.services.clock import parse_iso

logger = logging.getLogger(__name__)


ARABIC_MONTHS = [
    "يناير", "فبراير", "مارس", "أبريل", "مايو", "يونيو",
    "يوليو", "أغسطس", "سبتمبر", "أكتوبر", "نوفمبر", "ديسمبر",
]

# indexed by datetime.weekday(), Monday first
ARABIC_WEEKDAYS = ["الاثنين", "الثلاثاء", "الأربعاء", "الخميس", "الجمعة", "السبت", "الأحد"]

GOVERNORATES = {
    "amman": "عمان",
    "irbid": "إربد",
    "zarqa": "الزرقاء",
    "mafraq": "المفرق",
    "aqaba": "العقبة",
    "salt": "السلط",
    "balqa": "البلقاء",
    "madaba": "مادبا",
    "karak": "الكرك",
    "tafila": "الطفيلة",
    "tafilah": "الطفيلة",
    "maan": "معان",
    "jerash": "جرش",
    "ajloun": "عجلون",
    "northern-valleys": "الأغوار الشمالية",
    "southern-valleys": "الأغوار الجنوبية",
}

NOT_AVAILABLE = "N/A"


class DisplayFormatter(ABC):
    """Locale rendering of booking fields. Subclass for other locales."""

    @abstractmethod
    def format_date(self, iso_value: str) -> str:
        raise NotImplementedError()

    @abstractmethod
    def format_time(self, iso_value: str) -> str:
        raise NotImplementedError()

    @abstractmethod
    def day_of_week(self, iso_value: str) -> str:
        raise NotImplementedError()

    def city_name(self, value: str) -> str:
        return value


class ArabicDisplayFormatter(DisplayFormatter):
    def __init__(self, tz_name: Optional[str] = None):
        self.tz = ZoneInfo(tz_name or settings.DISPLAY_TIMEZONE)

    def _local(self, iso_value: str) -> Optional[datetime]:
        dt = parse_iso(iso_value)
        if dt is None:
            logger.warning("Cannot format timestamp %r", iso_value)
            return None
        return dt.astimezone(self.tz)

    def format_date(self, iso_value):
        dt = self._local(iso_value)
        if dt is None:
            return NOT_AVAILABLE
        return f"{dt.day} {ARABIC_MONTHS[dt.month - 1]} {dt.year}"

    def format_time(self, iso_value):
        dt = self._local(iso_value)
        if dt is None:
            return NOT_AVAILABLE
        period = "م" if dt.hour >= 12 else "ص"
        hours = dt.hour % 12 or 12
        return f"{hours}:{dt.minute:02d} {period}"

    def day_of_week(self, iso_value):
        dt = self._local(iso_value)
        if dt is None:
            return NOT_AVAILABLE
        return ARABIC_WEEKDAYS[dt.weekday()]

    def city_name(self, value):
        return GOVERNORATES.get(value, value)
