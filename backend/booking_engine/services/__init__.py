# Business Services
from booking_engine.services.inventory_ledger import InventoryLedger
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.booking_service import BookingService
from booking_engine.services.cancellation_service import CancellationService
from booking_engine.services.bulk_inventory_service import BulkInventoryService
from booking_engine.services.pricing import PricingConfig

__all__ = [
    'InventoryLedger', 'AvailabilityService', 'BookingService',
    'CancellationService', 'BulkInventoryService', 'PricingConfig'
]
