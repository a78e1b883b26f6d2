"""
Module ORM Registry (``ledger_modules._orm_registry``).

Responsibility
--------------
Import every kernel and module ORM model so that ``Base.metadata`` holds
the complete schema, and provide ``create_all_tables()`` as the single
entry point that builds it.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from sibling ``ledger_modules``
packages and from ``ledger_kernel.db.engine`` (allowed: modules -> kernel).
MUST NOT be imported by ``ledger_kernel``.
"""


def import_all_orm_models() -> None:
    """Register kernel models, then every ``ledger_modules.*.orm`` module.

    Idempotent; repeated calls are harmless.
    """
    import ledger_kernel.models  # noqa: F401
    import ledger_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    # fmt: off
    import ledger_modules.payments.orm  # noqa: F401
    import ledger_modules.refunds.orm  # noqa: F401
    import ledger_modules.credit_notes.orm  # noqa: F401
    import ledger_modules.reconciliation.orm  # noqa: F401
    import ledger_modules.tax_method.orm  # noqa: F401  # also installs the audit listener
    import ledger_modules.webhooks.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Register all ORM models and create every table."""
    from ledger_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
