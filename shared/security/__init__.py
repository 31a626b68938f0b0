"""
Security Infrastructure

Pre-authenticated actor identity and the ownership checks the core enforces.
"""

from shared.security.access import AccessPolicy, Actor, Role, access_policy

__all__ = [
    "AccessPolicy",
    "Actor",
    "Role",
    "access_policy",
]
