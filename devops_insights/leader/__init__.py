"""Single-poller-per-fleet leader election over a Redis lease.

Components:
- LeaderLock: try_acquire / renew / release primitives (SET NX PX + Lua)
- LeaderElection: retry loop, renewal, and loss detection for one holder
- LeaderConfig: ``LEADER_*`` settings
"""

from devops_insights.leader.config import LeaderConfig
from devops_insights.leader.election import LeaderElection
from devops_insights.leader.lock import LEASE_BACKEND_ERRORS, LeaderLock, make_holder_id

__all__ = [
    "LEASE_BACKEND_ERRORS",
    "LeaderConfig",
    "LeaderElection",
    "LeaderLock",
    "make_holder_id",
]
