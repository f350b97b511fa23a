from .auth import User, UserRole, RefreshToken
from .inventory import Item, Movement, MovementType, StockStatus, ImmutableLedgerError
from .audit import AuditLog, AuditAction

__all__ = [
    'User', 'UserRole', 'RefreshToken',
    'Item', 'Movement', 'MovementType', 'StockStatus', 'ImmutableLedgerError',
    'AuditLog', 'AuditAction',
]
