"""Database model exports."""

from .ledger import TRANSACTION_TYPES, Holding, Transaction

__all__ = ["TRANSACTION_TYPES", "Holding", "Transaction"]
