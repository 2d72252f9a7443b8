from finhealth.models.account import Account, AccountBalanceAdjustment
from finhealth.models.category import Category
from finhealth.models.enums import TransactionType
from finhealth.models.fx_rate import FxUsdRate
from finhealth.models.transaction import Transaction
from finhealth.models.user import User

__all__ = [
    "Account",
    "AccountBalanceAdjustment",
    "Category",
    "TransactionType",
    "FxUsdRate",
    "Transaction",
    "User",
]
