from .reference import Location, Brand, PhoneModel
from .stock import StockEvent, StockEntry
from .audit import AdminAuditEvent

__all__ = [
    'Location', 'Brand', 'PhoneModel',
    'StockEvent', 'StockEntry',
    'AdminAuditEvent',
]
