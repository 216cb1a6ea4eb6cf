from .accounts import Account, SessionToken, ResetRequest
from .ledger import Transaction, TransactionPromotion
from .promotions import Promotion, PromotionConsumption
from .events import Event, EventOrganizer, EventGuest

__all__ = [
    'Account', 'SessionToken', 'ResetRequest',
    'Transaction', 'TransactionPromotion',
    'Promotion', 'PromotionConsumption',
    'Event', 'EventOrganizer', 'EventGuest',
]
