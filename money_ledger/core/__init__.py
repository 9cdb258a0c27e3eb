# Core money services
from .storage import MoneyStorage

__all__ = [
    "MoneyStorage",
]
