"""State store: ORM tables, repositories, and engine/session helpers."""

from clubhouse_core.state.database import get_engine, get_session
from clubhouse_core.state.repository import (
    AuditRepository,
    ConsentRepository,
    EmailVerificationRepository,
    InviteRepository,
    JoinRequestRepository,
    MembershipRepository,
    ParentLinkRepository,
    SubscriptionRepository,
    TenantRepository,
    UserRepository,
)

__all__ = [
    "AuditRepository",
    "ConsentRepository",
    "EmailVerificationRepository",
    "InviteRepository",
    "JoinRequestRepository",
    "MembershipRepository",
    "ParentLinkRepository",
    "SubscriptionRepository",
    "TenantRepository",
    "UserRepository",
    "get_engine",
    "get_session",
]
