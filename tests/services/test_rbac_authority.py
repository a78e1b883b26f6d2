"""
Tests for capability checks at the service boundary.

Validates:
- check_capability is fail-closed and unions role grants
- @requires_capability short-circuits to the denied builder without
  running the method body, and logs the denial
- Positional and keyword actor arguments are both honoured
"""

from dataclasses import dataclass
from uuid import uuid4

import pytest

from ledger_config.schema import RbacConfig
from ledger_services.rbac_authority import ActorContext, check_capability, requires_capability

RBAC = RbacConfig(role_capabilities=(
    ("auditor", frozenset({"reconciliation.manage"})),
    ("clerk", frozenset({"refund.process"})),
))


@dataclass(frozen=True)
class _Config:
    rbac: RbacConfig


def _denied(reason, *args, **kwargs):
    return ("denied", reason, args, kwargs)


class _Service:

    def __init__(self):
        self._config = _Config(RBAC)
        self.calls = []

    @requires_capability("refund.process", denied=_denied)
    def process(self, item_id, actor: ActorContext, note=None):
        self.calls.append(item_id)
        return ("ok", item_id, note)

    @requires_capability("refund.process", denied=_denied)
    def no_actor(self, item_id):
        return item_id


class TestCheckCapability:

    def test_no_roles_fails_closed(self):
        allowed, reason = check_capability(RBAC, ActorContext(uuid4()), "refund.process")
        assert not allowed
        assert "no roles" in reason

    def test_role_grants(self):
        actor = ActorContext(uuid4(), roles=("clerk",))
        assert check_capability(RBAC, actor, "refund.process") == (True, "")
        allowed, reason = check_capability(RBAC, actor, "reconciliation.manage")
        assert not allowed
        assert "reconciliation.manage" in reason

    def test_union_across_roles(self):
        actor = ActorContext(uuid4(), roles=("clerk", "auditor"))
        assert check_capability(RBAC, actor, "reconciliation.manage")[0]
        assert actor.has_role("auditor")


class TestRequiresCapability:

    def test_allowed_runs_method(self):
        service = _Service()
        actor = ActorContext(uuid4(), roles=("clerk",))

        assert service.process("item-1", actor, note="n") == ("ok", "item-1", "n")
        assert service.calls == ["item-1"]

    def test_denied_skips_body(self):
        service = _Service()
        actor = ActorContext(uuid4(), roles=("auditor",))

        status, reason, args, kwargs = service.process("item-1", actor=actor)

        assert status == "denied"
        assert "refund.process" in reason
        assert args == ("item-1",)
        assert kwargs == {"actor": actor}
        assert service.calls == []

    def test_denial_logged(self, captured_logs):
        actor = ActorContext(uuid4())
        _Service().process("item-1", actor)

        (record,) = [r for r in captured_logs() if r["message"] == "capability_denied"]
        assert record["capability"] == "refund.process"
        assert record["actor_id"] == str(actor.actor_id)
        assert record["operation"] == "_Service.process"

    def test_missing_actor_is_a_programming_error(self):
        with pytest.raises(TypeError):
            _Service().no_actor("item-1")
