"""
Fact models for the sales star schema.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class SalesFact(BaseModel):
    """
    One immutable sales fact row at sale-line grain.

    Attributes:
        sale_key: Warehouse-generated key (None until persisted)
        date_key: Sale date as YYYYMMDD
        time_key: Sale time as HHMM
        customer_key: Surrogate key of the customer version current at load time
        product_key: Surrogate key of the product version current at load time
        employee_key: Selling employee (pass-through, optional)
        payment_key: Payment method (pass-through, optional)
        geo_key: Geography of the customer at load time
        transaction_id: Degenerate key, the source sale line id
        sale_id: Source order header id
        quantity/unit_price/line_total: Source measures
        discount_amount/tax_amount/cost_amount/profit_amount: Derived measures
    """

    sale_key: int | None = None
    date_key: int
    time_key: int
    customer_key: int
    product_key: int
    employee_key: int | None = None
    payment_key: int | None = None
    geo_key: int | None = None
    transaction_id: int = Field(..., gt=0)
    sale_id: int
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    line_total: Decimal
    cost_amount: Decimal = Decimal("0")
    profit_amount: Decimal = Decimal("0")


class DailySalesSummary(BaseModel):
    """
    Aggregated daily sales per geography, rebuilt by delete and reinsert.
    """

    date_key: int
    geo_key: int | None = None
    total_transactions: int = 0
    total_customers: int = 0
    total_products_sold: int = 0
    gross_sales: Decimal = Decimal("0")
    total_discount: Decimal = Decimal("0")
    net_sales: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    gross_profit: Decimal = Decimal("0")
    avg_transaction_value: Decimal = Decimal("0")
