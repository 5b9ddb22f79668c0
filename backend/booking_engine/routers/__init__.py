# API Routers
from booking_engine.routers import availability, bookings, inventory

__all__ = ['availability', 'bookings', 'inventory']
