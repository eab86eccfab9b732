from .staff import StaffMember
from .customers import Firm, Customer
from .inventory import InventoryItem, InventoryLog, PortalLink, PortalLinkItem
from .orders import Order, OrderItem
from .returns import GoodsReturn, GoodsReturnLine, StockRoomRemoval
from .reconciliation import ReconciliationIntent

__all__ = [
    'StaffMember',
    'Firm', 'Customer',
    'InventoryItem', 'InventoryLog', 'PortalLink', 'PortalLinkItem',
    'Order', 'OrderItem',
    'GoodsReturn', 'GoodsReturnLine', 'StockRoomRemoval',
    'ReconciliationIntent',
]
