from .user import User
from .payment import Payment
from .token import Token
from .referral import Referral
from .notification import Notification
from .credit_entry import CreditEntry
from .package import Package
from .censored_word import CensoredWord
from .app_setting import AppSetting

__all__ = [
    "User",
    "Payment",
    "Token",
    "Referral",
    "Notification",
    "CreditEntry",
    "Package",
    "CensoredWord",
    "AppSetting",
]
