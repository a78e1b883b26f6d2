"""Payment status vocabulary shared by the order aggregate and the engines."""

from enum import Enum


class PaymentStatus(str, Enum):
    """Derived payment status of an order."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERPAID = "overpaid"
