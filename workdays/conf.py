from django.conf import settings

DEFAULTS = {
    "ALLOW_OVERLAPPING_WORKDAYS": False,
    "STALE_ACTIVE_DAYS": 3,
    "MIN_REJECTION_REASON_LENGTH": 10,
}


def workday_setting(name: str):
    """Look up a key of the WORKDAYS settings dict, falling back to DEFAULTS."""
    return getattr(settings, "WORKDAYS", {}).get(name, DEFAULTS[name])
