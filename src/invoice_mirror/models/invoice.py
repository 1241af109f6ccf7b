"""Mirrored ERP data models: invoices and the employees they reference."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel


class Invoice(SQLModel, table=True):
    """
    One row per ERP invoice, keyed by the ERP-assigned id.

    created_at is the first time the mirror saw this invoice and is never
    overwritten by a later sync; every other column is refreshed each run.
    """

    id: int = Field(primary_key=True)  # ERP id, not autoincrement
    invoice_number: str
    customer_name: str = "Unknown Customer"
    currency: str = Field(default="USD", index=True)
    description: Optional[str] = None

    # Money
    total: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)
    paid: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)
    unpaid: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)

    # "Invoiced", "Cancelled", "Unknown", raw ERP status or "Active"
    status: str = "Active"
    invoice_status: Optional[int] = None
    delivery_status: Optional[int] = None

    employee_id: Optional[int] = Field(default=None, index=True)
    salesperson_name: str = "No Salesperson"

    locked: bool = False
    sent: bool = False
    sent_at: Optional[datetime] = None

    invoice_date: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)
    synced_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Employee(SQLModel, table=True):
    """ERP employee, used to denormalize salesperson names onto invoices."""

    id: int = Field(primary_key=True)
    first_name: str = "Unknown"
    last_name: str = "Employee"
    email: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    is_active: bool = True

    synced_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
