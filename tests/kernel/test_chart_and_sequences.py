"""
Tests for ChartOfAccounts seeding/mapping and SequenceService.
"""

from uuid import uuid4

import pytest

from ledger_config.schema import AccountDef
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.models.account import AccountType, NormalBalance, normal_balance_for
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.sequence_service import SequenceService


class TestChartOfAccounts:

    def test_seed_is_idempotent(self, chart, test_actor_id):
        assert chart.seed(test_actor_id) == 0

    def test_seeded_hierarchy(self, chart):
        children = [a.code for a in chart.children("1110")]
        assert children == ["1111", "1112", "1113", "1114"]

    def test_normal_balance_by_type(self, chart):
        assert chart.get("1120").normal_balance == NormalBalance.DEBIT.value
        assert chart.get("2110").normal_balance == NormalBalance.CREDIT.value
        assert normal_balance_for(AccountType.EXPENSE) == NormalBalance.DEBIT

    def test_seed_orders_parents_before_children(self, session, config, test_actor_id):
        coa = ChartOfAccounts(session, config)
        defs = (
            AccountDef(code="9110", name="Child", account_type="asset", parent_code="9100"),
            AccountDef(code="9100", name="Parent", account_type="asset"),
        )
        assert coa.seed(test_actor_id, defs) == 2
        assert coa.get("9110").parent_code == "9100"

    def test_seed_with_missing_parent_fails(self, session, config, test_actor_id):
        coa = ChartOfAccounts(session, config)
        defs = (AccountDef(code="9210", name="Orphan", account_type="asset", parent_code="9200"),)
        with pytest.raises(AccountNotFoundError):
            coa.seed(test_actor_id, defs)

    @pytest.mark.parametrize(
        "payment_type, gateway, expected",
        [
            ("customer_payment", "stripe", ("1112", "1120")),
            ("customer_payment", "payu", ("1111", "1120")),
            ("customer_payment", None, ("1113", "1120")),
            ("refund", "esewa", ("5200", "1114")),
            ("partial_refund", "stripe", ("5200", "1112")),
            ("credit_applied", None, ("2110", "1120")),
            ("write_off", None, ("1120", "4100")),
        ],
    )
    def test_resolve_payment_accounts(self, chart, payment_type, gateway, expected):
        assert chart.resolve_payment_accounts(payment_type, gateway) == expected

    def test_unknown_gateway_uses_default_account(self, chart):
        assert chart.resolve_payment_accounts("customer_payment", "paypal")[0] == "1113"


class TestSequenceService:

    def test_first_value_is_one(self, session):
        seq = SequenceService(session)
        name = f"test:{uuid4().hex[:8]}"
        assert seq.current_value(name) is None
        assert seq.next_value(name) == 1
        assert seq.current_value(name) == 1

    def test_values_strictly_increase(self, session):
        seq = SequenceService(session)
        name = f"test:{uuid4().hex[:8]}"
        values = [seq.next_value(name) for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_sequences_are_independent(self, session):
        seq = SequenceService(session)
        assert seq.next_value(SequenceService.credit_note_sequence(2024)) == 1
        assert seq.next_value(SequenceService.credit_note_sequence(2025)) == 1
        assert seq.next_value(SequenceService.credit_note_sequence(2024)) == 2
