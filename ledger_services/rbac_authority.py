"""
ledger_services.rbac_authority -- capability checks at the service boundary.

Responsibility:
    Decide whether an actor may perform a privileged ledger operation
    (approve a refund, apply someone else's credit note, bulk-change tax
    methods ...) from the role -> capability grants in configuration.

Architecture position:
    Services layer.  Consumes ``RbacConfig`` from ``ledger_config``.
    Called by module services through ``@requires_capability`` before any
    database work.

Invariants:
    - The ledger never resolves identity; the caller supplies an
      ``ActorContext`` (actor id plus roles) from its auth layer.
    - Fail-closed: an actor with no roles has no capabilities.
    - A denied call performs no reads or writes.
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from ledger_config.schema import RbacConfig
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.rbac")


@dataclass(frozen=True)
class ActorContext:
    """Who is calling, as established by the external auth layer."""

    actor_id: UUID
    roles: tuple[str, ...] = ()

    def has_role(self, role: str) -> bool:
        return role in self.roles


def check_capability(
    rbac: RbacConfig,
    actor: ActorContext,
    capability: str,
) -> tuple[bool, str]:
    """Check whether ``actor`` holds ``capability``.

    Returns:
        (allowed, reason).  reason is empty when allowed, or a short
        message when denied.
    """
    if not actor.roles:
        return (False, f"RBAC: actor has no roles; '{capability}' not granted")

    if capability not in rbac.capabilities_for(actor.roles):
        return (False, f"RBAC: capability '{capability}' not granted to actor")

    return (True, "")


def requires_capability(
    capability: str,
    denied: Callable[..., Any],
) -> Callable:
    """Guard a service method with a capability check.

    The wrapped method must take an ``actor: ActorContext`` argument and
    belong to an object exposing ``_config.rbac``.  On denial the method
    body never runs; ``denied(reason, *args, **kwargs)`` builds the
    declined result instead.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            bound = signature.bind(self, *args, **kwargs)
            actor = bound.arguments.get("actor")
            if not isinstance(actor, ActorContext):
                raise TypeError(f"{func.__qualname__} requires an ActorContext 'actor' argument")

            allowed, reason = check_capability(self._config.rbac, actor, capability)
            if not allowed:
                logger.warning(
                    "capability_denied",
                    extra={
                        "actor_id": str(actor.actor_id),
                        "capability": capability,
                        "operation": func.__qualname__,
                        "reason": reason,
                    },
                )
                return denied(reason, *args, **kwargs)
            return func(self, *args, **kwargs)

        return wrapper

    return decorator
