"""
Reaper module.
Contains the reaper that reclaims stale leases.
"""

from leasequeue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
