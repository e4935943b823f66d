"""
Admissions Shared Helpers

Small pure functions shared by the service, the state machine and the
stores: slot keys, application ids, profile completion and display names.
"""

from collections.abc import Iterable, Mapping
from datetime import date

from app.modules.admissions.models import ProfileSection

REQUIRED_PROFILE_SECTIONS: tuple[ProfileSection, ...] = tuple(ProfileSection)


def format_slot_key(slot_date: date, period: str) -> str:
    """Return the booking key for a slot, e.g. '2025-01-10/AM'."""
    return f"{slot_date.isoformat()}/{period}"


def parse_slot_key(key: str) -> tuple[date, str]:
    """
    Split a slot key into its date and period.

    Raises:
        ValueError: If the key is not of the form YYYY-MM-DD/<period>
    """
    raw_date, separator, period = key.partition("/")
    period = period.strip()
    if not separator or not period:
        raise ValueError(f"Malformed slot key: {key!r}")
    return date.fromisoformat(raw_date.strip()), period


def _sequence_of(application_id: str) -> int:
    try:
        return int(application_id.rsplit("/", 1)[-1])
    except ValueError:
        return 0


def next_application_id(prefix: str, year: int, existing: Iterable[str]) -> str:
    """
    Generate the next human-readable application id for an account.

    The sequence continues from the highest existing one, so deleting an
    application never causes an id to be reused.

    Example:
        next_application_id("202509C329110/CC", 2025, ["202509C329110/CC/2025/01"])
        -> "202509C329110/CC/2025/02"
    """
    sequence = max((_sequence_of(app_id) for app_id in existing), default=0) + 1
    return f"{prefix}/{year}/{sequence:02d}"


def missing_profile_sections(profile: Mapping[str, object]) -> list[str]:
    """Return required profile sections that have not been saved, in form order."""
    return [section.value for section in REQUIRED_PROFILE_SECTIONS if section.value not in profile]


def profile_completion(profile: Mapping[str, object]) -> int:
    """Percentage (0-100) of required profile sections saved."""
    total = len(REQUIRED_PROFILE_SECTIONS)
    done = total - len(missing_profile_sections(profile))
    return round(100 * done / total)


def display_name(profile: Mapping[str, object]) -> str | None:
    """Join the first, middle and last names of the primary section, if any."""
    primary = profile.get(ProfileSection.PRIMARY.value)
    if not isinstance(primary, Mapping):
        return None
    parts = [primary.get(key) for key in ("first_name", "middle_name", "last_name")]
    name = " ".join(str(part).strip() for part in parts if part and str(part).strip())
    return name or None
