"""Server profile configuration and parsing.

This module handles the server profile configuration which determines which
parts of the platform a process runs: the patient write path, the billing
account service, the analytics consumer, or any combination.
"""

from functools import lru_cache

from patient_hub.constants import PROFILE_ANALYTICS, PROFILE_BILLING, PROFILE_PATIENT

VALID_PROFILES = frozenset({PROFILE_PATIENT, PROFILE_BILLING, PROFILE_ANALYTICS})


class ProfileManager:
    """Holds the profiles active in this process."""

    def __init__(self):
        self._active_profiles: set[str] | None = None

    def set_active_profiles(self, profiles: set[str]) -> None:
        self._active_profiles = profiles

    def get_active_profiles(self) -> set[str]:
        """Get the active profiles set.

        Note:
            If profiles haven't been set yet, they are parsed from the cached settings.
        """
        if self._active_profiles is None:
            from patient_hub.settings import get_settings

            return parse_profile(get_settings().profiles)
        return self._active_profiles


@lru_cache
def get_profile_manager() -> ProfileManager:
    """Get or create the singleton ProfileManager instance."""
    return ProfileManager()


def set_active_profiles(profiles: set[str]) -> None:
    get_profile_manager().set_active_profiles(profiles)


def get_active_profiles() -> set[str]:
    return get_profile_manager().get_active_profiles()


def parse_profile(config: str | None) -> set[str]:
    """Parse server profile configuration.

    Args:
        config: Comma-separated profile names (case-insensitive), None, or empty string.
               None or empty string enables all profiles.

    Returns:
        Set of enabled profiles in lowercase

    Raises:
        ValueError: If invalid profile component provided

    Examples:
        >>> sorted(parse_profile(None))
        ['analytics', 'billing', 'patient']
        >>> parse_profile("Billing")
        {'billing'}
    """
    if not config or not config.strip():
        return set(VALID_PROFILES)

    profiles = {p.strip().lower() for p in config.split(",") if p.strip()}

    invalid = profiles - VALID_PROFILES
    if invalid:
        raise ValueError(f"Invalid profile components: {invalid}. Valid: {', '.join(sorted(VALID_PROFILES))}")

    return profiles


__all__ = ["VALID_PROFILES", "parse_profile", "get_active_profiles", "set_active_profiles", "get_profile_manager"]
