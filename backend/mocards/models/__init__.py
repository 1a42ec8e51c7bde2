from .clinics import Clinic
from .cards import CardBatch, Card, CardPerk
from .sales import ClinicSale, PerkRedemption
from .ledger import CardTransaction

__all__ = [
    'Clinic',
    'CardBatch', 'Card', 'CardPerk',
    'ClinicSale', 'PerkRedemption',
    'CardTransaction',
]
