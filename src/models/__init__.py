from src.models.outbox import OutboxEvent
from src.models.payment import LedgerTransaction, Payment, Refund
from src.models.promotion import Promotion, PromotionRedemption
from src.models.reservation import Reservation
from src.models.vehicle import AvailabilityBlock, Vehicle

__all__ = [
    "Vehicle",
    "AvailabilityBlock",
    "Reservation",
    "Promotion",
    "PromotionRedemption",
    "Payment",
    "Refund",
    "LedgerTransaction",
    "OutboxEvent",
]
