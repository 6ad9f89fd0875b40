from src.modules.escrow.models import EscrowAccount, EscrowStatus, Payment, PaymentKind

__all__ = [
    "EscrowAccount",
    "EscrowStatus",
    "Payment",
    "PaymentKind",
]
