"""
Ledger Modules.

Business services over the ledger kernel and the pure engines.  Each
module has:
- models.py: enums and frozen result DTOs
- orm.py: SQLAlchemy tables
- service.py: the service that owns the transaction boundary

Modules:
- payments: payment ledger, gateway charges, balance sync
- refunds: refund requests, LIFO allocation, atomic gateway refunds
- credit_notes: numbered store credit and its applications
- reconciliation: gateway statement vs. ledger matching sessions
- tax_method: customs-tax method resolution, preferences and audit
- webhooks: atomic payment webhook processing
"""
