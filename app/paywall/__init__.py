"""
Paywall: access decisions for purchased folders (internal library).
Decision only; serving the notes is up to the caller after a positive decision.
"""
from app.paywall.access import can_access, decide_access
from app.paywall.audit import record_access_denied
from app.paywall.models import AccessDecision

__all__ = [
    "AccessDecision",
    "can_access",
    "decide_access",
    "record_access_denied",
]
