"""
Source row models for the operational tables consumed by the loaders.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

SaleStatus = Literal["pending", "processing", "completed", "cancelled", "refunded"]


class SourceCustomer(BaseModel):
    """
    A row of the operational customers table, joined to its tier name.
    """

    customer_id: int
    name: str
    email: str
    phone: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    tier_name: str | None = None
    total_spent: Decimal = Decimal("0")
    updated_at: datetime


class SourceProduct(BaseModel):
    """
    A row of the operational products table, joined to its category name.
    """

    product_id: int
    sku: str | None = None
    name: str
    category_id: int | None = None
    category_name: str | None = None
    price: Decimal = Field(..., ge=0)
    cost_price: Decimal | None = None
    updated_at: datetime


class SourceTransaction(BaseModel):
    """
    One sale line: a sales_details row joined to its sales header.

    Attributes:
        transaction_id: sales_details.sale_detail_id, monotonically increasing
        sale_id: Order header id
        discount_pct: Line discount in percent
        line_total: Net line amount (computed from price, quantity and discount when absent)
        cost_price: Unit cost of the product at extraction time
    """

    transaction_id: int = Field(..., gt=0)
    sale_id: int
    customer_id: int
    product_id: int
    employee_id: int | None = None
    payment_method_id: int | None = None
    sale_date: datetime
    status: SaleStatus = "completed"
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    discount_pct: Decimal = Decimal("0")
    line_total: Decimal | None = None
    cost_price: Decimal = Decimal("0")

    @property
    def effective_line_total(self) -> Decimal:
        if self.line_total is not None:
            return self.line_total
        gross = self.unit_price * self.quantity
        return gross - gross * self.discount_pct / 100
