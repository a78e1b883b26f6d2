"""Ledger runtime services: capability checks for privileged operations."""

from ledger_services.rbac_authority import (
    ActorContext,
    check_capability,
    requires_capability,
)

__all__ = ["ActorContext", "check_capability", "requires_capability"]
