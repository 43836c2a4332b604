from .customers import Customer, CustomerCylinderBalance
from .catalog import Product
from .ledger import Invoice, InvoiceLine, Repayment, CylinderTransaction
from .settings import AppSetting
from .sync import SyncOutboxEntry

__all__ = [
    'Customer', 'CustomerCylinderBalance',
    'Product',
    'Invoice', 'InvoiceLine', 'Repayment', 'CylinderTransaction',
    'AppSetting',
    'SyncOutboxEntry',
]
