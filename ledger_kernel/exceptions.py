"""
Typed Exception Hierarchy for the Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money-moving code must fail precisely.  Callers (checkout, order management,
admin tooling) branch on *what* went wrong: a refund that exceeds the paid
amount is a user-facing decline, a missing account mapping is a deployment
bug.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Services convert these exceptions into declined result objects at their
public boundary; the ``code`` travels on the result as ``error_code``.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |   +-- AccountInactiveError
    |   +-- AccountMappingError
    |
    +-- TransactionError
    |   +-- TransactionNotFoundError
    |   +-- TransactionNotPendingError
    |   +-- TransactionNotPostedError
    |   +-- TransactionAlreadyReversedError
    |   +-- InvalidTransactionAmountError
    |
    +-- QuoteError
    |   +-- QuoteNotFoundError
    |
    +-- LedgerEntryError
    |   +-- LedgerEntryNotFoundError
    |   +-- InvalidPaymentAmountError
    |
    +-- CurrencyError
    |   +-- ExchangeRateNotFoundError
    |
    +-- RefundError
    |   +-- RefundExceedsPaidError
    |   +-- RefundExceedsTransactionError
    |   +-- RefundRequestNotFoundError
    |   +-- RefundRequestStateError
    |   +-- RefundItemNotFoundError
    |   +-- RefundItemStateError
    |   +-- PaymentTransactionNotFoundError
    |
    +-- CreditNoteError
    |   +-- CreditNoteNotFoundError
    |   +-- CreditNoteNotApplicableError
    |   +-- CreditNoteOwnershipError
    |   +-- CreditNoteMinimumOrderError
    |   +-- CreditNoteOverApplicationError
    |   +-- CreditNoteStateError
    |   +-- CreditApplicationNotFoundError
    |   +-- NoApplicableAmountError
    |
    +-- ReconciliationError
    |   +-- ReconciliationSessionNotFoundError
    |   +-- ReconciliationSessionClosedError
    |   +-- ReconciliationItemNotFoundError
    |   +-- ReconciliationItemStateError
    |
    +-- TaxMethodError
    |   +-- InvalidTaxMethodError
    |
    +-- WebhookError
    |   +-- WebhookPayloadError
    |
    +-- AuthorizationError
    |   +-- CapabilityDeniedError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Account         | ACCOUNT_NOT_FOUND             | Account code not in chart
                | ACCOUNT_INACTIVE              | Posting to deactivated account
                | ACCOUNT_MAPPING_INVALID       | Debit and credit resolve to same account
----------------|-------------------------------|---------------------------------------
Transaction     | TRANSACTION_NOT_FOUND         | Transaction id doesn't exist
                | TRANSACTION_NOT_PENDING       | Posting/voiding a non-pending row
                | TRANSACTION_NOT_POSTED        | Reversing a non-posted row
                | TRANSACTION_ALREADY_REVERSED  | Second reversal attempt
                | INVALID_TRANSACTION_AMOUNT    | Amount <= 0
----------------|-------------------------------|---------------------------------------
Quote           | QUOTE_NOT_FOUND               | Order aggregate missing
Ledger          | LEDGER_ENTRY_NOT_FOUND        | Ledger entry id doesn't exist
                | INVALID_PAYMENT_AMOUNT        | Amount <= 0
Currency        | EXCHANGE_RATE_NOT_FOUND       | No configured rate for currency
----------------|-------------------------------|---------------------------------------
Refund          | REFUND_EXCEEDS_PAID           | Requested > total paid
                | REFUND_EXCEEDS_TRANSACTION    | Cumulative refund > original charge
                | REFUND_REQUEST_NOT_FOUND      |
                | REFUND_REQUEST_STATE          | Illegal request transition
                | REFUND_ITEM_NOT_FOUND         |
                | REFUND_ITEM_STATE             | Item already terminal
                | PAYMENT_TRANSACTION_NOT_FOUND | No completed charge to refund
----------------|-------------------------------|---------------------------------------
Credit note     | CREDIT_NOTE_NOT_FOUND         |
                | CREDIT_NOTE_NOT_APPLICABLE    | Inactive or outside validity window
                | CREDIT_NOTE_NOT_OWNED         | Caller is not the note's customer
                | CREDIT_NOTE_MINIMUM_ORDER     | Order below minimum order value
                | CREDIT_NOTE_OVER_APPLICATION  | Requested > available
                | CREDIT_NOTE_STATE             | Illegal note transition
                | CREDIT_APPLICATION_NOT_FOUND  |
                | NO_APPLICABLE_AMOUNT          | Computed application <= 0
----------------|-------------------------------|---------------------------------------
Reconciliation  | RECONCILIATION_SESSION_NOT_FOUND |
                | RECONCILIATION_SESSION_CLOSED | Session not in progress
                | RECONCILIATION_ITEM_NOT_FOUND |
                | RECONCILIATION_ITEM_STATE     | Item matched already or wrong side
----------------|-------------------------------|---------------------------------------
Tax method      | INVALID_TAX_METHOD            | Unknown calculation/valuation method
Webhook         | WEBHOOK_PAYLOAD_INVALID       | Required payment fields missing
Authorization   | CAPABILITY_DENIED             | Actor lacks capability
Configuration   | CONFIGURATION_ERROR           | Invalid configuration

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError: domain errors are catchable as a
   group without mixing in programming errors.
2. ``code`` is a class attribute: readable without instantiation and usable
   for API documentation.
3. All context is stored as attributes: structured log payloads pick them
   up (see ``StructuredFormatter``).

===============================================================================
"""

from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Account-related exceptions


class AccountError(LedgerError):
    """Base exception for account-related errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Account was not found in the chart of accounts."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account not found: {account_code}")


class AccountInactiveError(AccountError):
    """Account is not active for posting."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account is inactive: {account_code}")


class AccountMappingError(AccountError):
    """Debit and credit resolved to the same account."""

    code: str = "ACCOUNT_MAPPING_INVALID"

    def __init__(self, debit_account: str, credit_account: str):
        self.debit_account = debit_account
        self.credit_account = credit_account
        super().__init__(
            f"Debit and credit accounts must differ: {debit_account} / {credit_account}"
        )


# Financial transaction exceptions


class TransactionError(LedgerError):
    """Base exception for journal transaction errors."""

    code: str = "TRANSACTION_ERROR"


class TransactionNotFoundError(TransactionError):
    """Financial transaction was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Financial transaction not found: {transaction_id}")


class TransactionNotPendingError(TransactionError):
    """Only pending transactions can be posted or voided."""

    code: str = "TRANSACTION_NOT_PENDING"

    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            f"Transaction {transaction_id} is {status}, expected pending"
        )


class TransactionNotPostedError(TransactionError):
    """Only posted transactions can be reversed."""

    code: str = "TRANSACTION_NOT_POSTED"

    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            f"Transaction {transaction_id} is {status}, only posted transactions can be reversed"
        )


class TransactionAlreadyReversedError(TransactionError):
    """Transaction already has a reversal."""

    code: str = "TRANSACTION_ALREADY_REVERSED"

    def __init__(self, transaction_id: str, reversal_id: str | None = None):
        self.transaction_id = transaction_id
        self.reversal_id = reversal_id
        super().__init__(f"Transaction {transaction_id} is already reversed")


class InvalidTransactionAmountError(TransactionError):
    """Journal amounts must be strictly positive."""

    code: str = "INVALID_TRANSACTION_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"Transaction amount must be positive, got {amount}")


# Order aggregate exceptions


class QuoteError(LedgerError):
    """Base exception for order aggregate errors."""

    code: str = "QUOTE_ERROR"


class QuoteNotFoundError(QuoteError):
    """Quote (order) was not found."""

    code: str = "QUOTE_NOT_FOUND"

    def __init__(self, quote_id: str):
        self.quote_id = quote_id
        super().__init__(f"Quote not found: {quote_id}")


# Payment ledger exceptions


class LedgerEntryError(LedgerError):
    """Base exception for payment ledger errors."""

    code: str = "LEDGER_ENTRY_ERROR"


class LedgerEntryNotFoundError(LedgerEntryError):
    """Payment ledger entry was not found."""

    code: str = "LEDGER_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Payment ledger entry not found: {entry_id}")


class InvalidPaymentAmountError(LedgerEntryError):
    """Payment amounts must be strictly positive."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"Payment amount must be positive, got {amount}")


# Currency exceptions


class CurrencyError(LedgerError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class ExchangeRateNotFoundError(CurrencyError):
    """No configured exchange rate for the currency."""

    code: str = "EXCHANGE_RATE_NOT_FOUND"

    def __init__(self, currency: str, base_currency: str):
        self.currency = currency
        self.base_currency = base_currency
        super().__init__(
            f"No exchange rate configured for {currency}/{base_currency}"
        )


# Refund exceptions


class RefundError(LedgerError):
    """Base exception for refund errors."""

    code: str = "REFUND_ERROR"


class RefundExceedsPaidError(RefundError):
    """Requested refund is larger than the net amount paid."""

    code: str = "REFUND_EXCEEDS_PAID"

    def __init__(self, quote_id: str, requested: Decimal, total_paid: Decimal):
        self.quote_id = quote_id
        self.requested = requested
        self.total_paid = total_paid
        super().__init__("Refund amount exceeds total paid amount")


class RefundExceedsTransactionError(RefundError):
    """Cumulative refunds would exceed the original charge."""

    code: str = "REFUND_EXCEEDS_TRANSACTION"

    def __init__(
        self,
        payment_transaction_id: str,
        requested: Decimal,
        refundable: Decimal,
    ):
        self.payment_transaction_id = payment_transaction_id
        self.requested = requested
        self.refundable = refundable
        super().__init__("Refund amount exceeds original transaction amount")


class RefundAlreadyRecordedError(RefundError):
    """A refund ledger entry with this gateway refund id already exists."""

    code: str = "REFUND_ALREADY_RECORDED"

    def __init__(self, gateway_refund_id: str | None, ledger_entry_id: str):
        self.gateway_refund_id = gateway_refund_id
        self.ledger_entry_id = ledger_entry_id
        super().__init__(
            f"Refund {gateway_refund_id} is already recorded as ledger entry {ledger_entry_id}"
        )


class RefundRequestNotFoundError(RefundError):
    """Refund request was not found."""

    code: str = "REFUND_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Refund request not found: {request_id}")


class RefundRequestStateError(RefundError):
    """Refund request is not in a state that allows the transition."""

    code: str = "REFUND_REQUEST_STATE"

    def __init__(self, request_id: str, status: str, expected: str):
        self.request_id = request_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Refund request {request_id} is {status}, expected {expected}"
        )


class RefundItemNotFoundError(RefundError):
    """Refund item was not found."""

    code: str = "REFUND_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Refund item not found: {item_id}")


class RefundItemStateError(RefundError):
    """Refund item is already terminal."""

    code: str = "REFUND_ITEM_STATE"

    def __init__(self, item_id: str, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Refund item {item_id} is already {status}")


class PaymentTransactionNotFoundError(RefundError):
    """No payment transaction matches the lookup."""

    code: str = "PAYMENT_TRANSACTION_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"No completed payment transaction found for {reference}")


# Credit note exceptions


class CreditNoteError(LedgerError):
    """Base exception for credit note errors."""

    code: str = "CREDIT_NOTE_ERROR"


class CreditNoteNotFoundError(CreditNoteError):
    """Credit note was not found."""

    code: str = "CREDIT_NOTE_NOT_FOUND"

    def __init__(self, credit_note_id: str):
        self.credit_note_id = credit_note_id
        super().__init__(f"Credit note not found: {credit_note_id}")


class CreditNoteNotApplicableError(CreditNoteError):
    """Credit note is not active or is outside its validity window."""

    code: str = "CREDIT_NOTE_NOT_APPLICABLE"

    def __init__(self, credit_note_id: str, status: str):
        self.credit_note_id = credit_note_id
        self.status = status
        super().__init__("Credit note not found, not active, or expired")


class CreditNoteOwnershipError(CreditNoteError):
    """Actor does not own the credit note."""

    code: str = "CREDIT_NOTE_NOT_OWNED"

    def __init__(self, credit_note_id: str, actor_id: str):
        self.credit_note_id = credit_note_id
        self.actor_id = actor_id
        super().__init__("Unauthorized to use this credit note")


class CreditNoteMinimumOrderError(CreditNoteError):
    """Order value is below the note's minimum order value."""

    code: str = "CREDIT_NOTE_MINIMUM_ORDER"

    def __init__(self, credit_note_id: str, minimum: Decimal, order_total: Decimal):
        self.credit_note_id = credit_note_id
        self.minimum = minimum
        self.order_total = order_total
        super().__init__(f"Order value below minimum required: {minimum}")


class CreditNoteOverApplicationError(CreditNoteError):
    """Requested application exceeds the note's available balance."""

    code: str = "CREDIT_NOTE_OVER_APPLICATION"

    def __init__(self, credit_note_id: str, requested: Decimal, available: Decimal):
        self.credit_note_id = credit_note_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} exceeds available credit {available}"
        )


class CreditNoteStateError(CreditNoteError):
    """Credit note is not in a state that allows the transition."""

    code: str = "CREDIT_NOTE_STATE"

    def __init__(self, credit_note_id: str, status: str, expected: str):
        self.credit_note_id = credit_note_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Credit note {credit_note_id} is {status}, expected {expected}"
        )


class CreditApplicationNotFoundError(CreditNoteError):
    """Credit note application was not found."""

    code: str = "CREDIT_APPLICATION_NOT_FOUND"

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Credit note application not found: {application_id}")


class NoApplicableAmountError(CreditNoteError):
    """Nothing left to apply (note exhausted or order settled)."""

    code: str = "NO_APPLICABLE_AMOUNT"

    def __init__(self, credit_note_id: str, quote_id: str):
        self.credit_note_id = credit_note_id
        self.quote_id = quote_id
        super().__init__("No amount to apply")


# Reconciliation exceptions


class ReconciliationError(LedgerError):
    """Base exception for reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class ReconciliationSessionNotFoundError(ReconciliationError):
    """Reconciliation session was not found."""

    code: str = "RECONCILIATION_SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Reconciliation session not found: {session_id}")


class ReconciliationSessionClosedError(ReconciliationError):
    """Reconciliation session is no longer in progress."""

    code: str = "RECONCILIATION_SESSION_CLOSED"

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Reconciliation session {session_id} is {status}, expected in_progress"
        )


class ReconciliationItemNotFoundError(ReconciliationError):
    """Reconciliation item was not found in the session."""

    code: str = "RECONCILIATION_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Reconciliation item not found: {item_id}")


class ReconciliationItemStateError(ReconciliationError):
    """Reconciliation item is already matched or on the wrong side."""

    code: str = "RECONCILIATION_ITEM_STATE"

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Reconciliation item {item_id}: {reason}")


# Tax method exceptions


class TaxMethodError(LedgerError):
    """Base exception for tax method errors."""

    code: str = "TAX_METHOD_ERROR"


class InvalidTaxMethodError(TaxMethodError):
    """Calculation or valuation method is not recognised."""

    code: str = "INVALID_TAX_METHOD"

    def __init__(self, method: str, kind: str = "calculation"):
        self.method = method
        self.kind = kind
        super().__init__(f"Invalid {kind} method: {method}")


# Webhook exceptions


class WebhookError(LedgerError):
    """Base exception for payment webhook errors."""

    code: str = "WEBHOOK_ERROR"


class WebhookPayloadError(WebhookError):
    """Webhook payload lacks required payment fields."""

    code: str = "WEBHOOK_PAYLOAD_INVALID"

    def __init__(self, missing_fields: tuple[str, ...]):
        self.missing_fields = missing_fields
        super().__init__("Missing required payment data fields")


# Authorization exceptions


class AuthorizationError(LedgerError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class CapabilityDeniedError(AuthorizationError):
    """Actor lacks the capability for a privileged operation."""

    code: str = "CAPABILITY_DENIED"

    def __init__(self, actor_id: str, capability: str, reason: str = ""):
        self.actor_id = actor_id
        self.capability = capability
        self.reason = reason
        super().__init__(reason or f"Actor {actor_id} lacks capability {capability}")


# Configuration exceptions


class ConfigurationError(LedgerError):
    """Configuration is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"
