# Ledger Models
from booking_engine.models.ledger import (
    Property, Room, RatePlan, Guest, InventoryRecord, Booking,
    BookingStatus, PaymentStatus
)

__all__ = [
    'Property', 'Room', 'RatePlan', 'Guest', 'InventoryRecord', 'Booking',
    'BookingStatus', 'PaymentStatus'
]
