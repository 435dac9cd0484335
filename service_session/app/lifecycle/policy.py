"""
Session lifecycle policy.

Decides whether a session token must be reissued at the end of a request:
either the session content changed, or an expiring session is old enough
that its expiry clock should slide forward.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping, Optional, Union

from shared.errors import ConfigurationError

DEFAULT_REFRESH_INTERVAL = 300

REISSUE_CHANGED = "changed"
REISSUE_REFRESH = "refresh"


def as_seconds(value: Optional[Union[int, float, timedelta]], name: str) -> Optional[float]:
    """Normalize a duration to seconds, rejecting non-positive values."""
    if value is None:
        return None
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if seconds <= 0:
        raise ConfigurationError(
            f"{name} must be a positive duration",
            details={name: seconds}
        )
    return seconds


@dataclass(frozen=True)
class LifecyclePolicy:
    """
    Expiry and renewal settings for session tokens.

    ``expire_after`` bounds how long a token stays valid after it was issued;
    ``None`` means tokens never expire and carry no timestamp.
    ``refresh_interval`` only matters when ``expire_after`` is set.
    """

    expire_after: Optional[float] = None
    refresh_interval: Optional[float] = DEFAULT_REFRESH_INTERVAL

    def __post_init__(self):
        object.__setattr__(self, "expire_after", as_seconds(self.expire_after, "expire_after"))
        object.__setattr__(self, "refresh_interval", as_seconds(self.refresh_interval, "refresh_interval"))

    def reissue_reason(
        self,
        original: Optional[Mapping[str, Any]],
        current: Optional[Mapping[str, Any]],
        original_timestamp: Optional[int],
        now: float,
    ) -> Optional[str]:
        """Return why a new token is needed, or ``None`` to keep the client's token."""
        if (current or {}) != (original or {}):
            return REISSUE_CHANGED

        if (
            self.expire_after is not None
            and self.refresh_interval is not None
            and original_timestamp is not None
            and now >= original_timestamp + self.refresh_interval
        ):
            return REISSUE_REFRESH

        return None

    def should_reissue(
        self,
        original: Optional[Mapping[str, Any]],
        current: Optional[Mapping[str, Any]],
        original_timestamp: Optional[int],
        now: float,
    ) -> bool:
        return self.reissue_reason(original, current, original_timestamp, now) is not None

    def cookie_max_age(self) -> Optional[int]:
        """Cookie ``Max-Age`` matching the token expiry, ``None`` for a browser-session cookie."""
        if self.expire_after is None:
            return None
        return int(self.expire_after)
