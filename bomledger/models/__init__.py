from bomledger.models.company import Company
from bomledger.models.location import Location
from bomledger.models.component import Component, Lot
from bomledger.models.sku import SKU, BOMLine, BOMVersion
from bomledger.models.transaction import (
    FinishedGoodsLine,
    Transaction,
    TransactionLine,
    TransactionStatus,
    TransactionType,
)
from bomledger.models.audit_log import AuditLog
