"""Catalog models — the rows the entity sync handlers read and stamp."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Numeric, String

from ..database import UTCDateTime
from .base import Base


def _now():
    return datetime.now(timezone.utc)


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    sku = Column(String(100), nullable=False, unique=True)
    barcode = Column(String(100))
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), default=0)
    cost = Column(Numeric(12, 2))
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    __table_args__ = (Index("ix_products_updated", "updated_at"),)


class BranchInventory(Base):
    """Stock level of one product at one branch."""

    __tablename__ = "branch_inventory"
    id = Column(Integer, primary_key=True)
    branch_id = Column(String(64), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, default=0)
    last_updated = Column(UTCDateTime, default=_now)

    __table_args__ = (
        Index("ix_inventory_branch_product", "branch_id", "product_id", unique=True),
        Index("ix_inventory_last_updated", "last_updated"),
    )


class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True)
    branch_id = Column(String(64), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="completed")
    created_at = Column(UTCDateTime, default=_now)

    __table_args__ = (Index("ix_transactions_branch_time", "branch_id", "created_at"),)


class Employee(Base):
    __tablename__ = "employees"
    id = Column(Integer, primary_key=True)
    branch_id = Column(String(64), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False)
    employee_id = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(50))
    status = Column(String(20), nullable=False, default="active")
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    __table_args__ = (Index("ix_employees_branch", "branch_id", "employee_id", unique=True),)
