"""
Lifecycle package.

Holds the policy that decides when a session token is reissued: on any
content change, and periodically for expiring sessions so their expiry
slides forward while they stay in use.
"""

from .policy import LifecyclePolicy, REISSUE_CHANGED, REISSUE_REFRESH

__all__ = [
    "LifecyclePolicy",
    "REISSUE_CHANGED",
    "REISSUE_REFRESH",
]
