from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from repairshop.auth import PortalMode, Role

# BIGINT primary keys only autoincrement on SQLite when declared INTEGER.
Id = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class TicketStatus(str, Enum):
    INTAKE = 'intake'
    DIAGNOSING = 'diagnosing'
    WAITING_PARTS = 'waiting_parts'
    REPAIRING = 'repairing'
    READY_PICKUP = 'ready_pickup'
    COMPLETED = 'completed'


class EstimateStatus(str, Enum):
    NONE = 'none'
    SENT = 'sent'
    APPROVED = 'approved'


class PartsOrderStatus(str, Enum):
    ORDERED = 'ordered'
    SHIPPED = 'shipped'
    RECEIVED = 'received'


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Profile(Base):
    __tablename__ = 'profiles'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(Text)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[Role] = mapped_column(
        SQLEnum(Role, name='profile_role', values_callable=_enum_values),
        nullable=False,
        default=Role.CUSTOMER,
        server_default=Role.CUSTOMER.value,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    principal_id: Mapped[int] = mapped_column(Id, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    attempted_email: Mapped[str] = mapped_column(String(320), nullable=False)
    portal: Mapped[PortalMode] = mapped_column(
        SQLEnum(PortalMode, name='portal_mode', values_callable=_enum_values), nullable=False
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(64))
    principal_id: Mapped[int | None] = mapped_column(Id, ForeignKey('profiles.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32))
    email: Mapped[str | None] = mapped_column(String(320))
    total_repairs: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Ticket(Base):
    __tablename__ = 'tickets'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    customer_id: Mapped[int | None] = mapped_column(Id, ForeignKey('customers.id', ondelete='SET NULL'))
    customer_name: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(32))
    brand: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(Text, nullable=False)
    serial_number: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        SQLEnum(TicketStatus, name='ticket_status', values_callable=_enum_values),
        nullable=False,
        default=TicketStatus.INTAKE,
        server_default=TicketStatus.INTAKE.value,
    )
    is_backordered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    estimate_status: Mapped[EstimateStatus] = mapped_column(
        SQLEnum(EstimateStatus, name='estimate_status', values_callable=_enum_values),
        nullable=False,
        default=EstimateStatus.NONE,
        server_default=EstimateStatus.NONE.value,
    )
    estimate_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0'
    )
    assigned_to: Mapped[int | None] = mapped_column(Id, ForeignKey('profiles.id', ondelete='SET NULL'))
    last_part_search: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class EstimateItem(Base):
    __tablename__ = 'estimate_items'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(Id, ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    part_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    labor_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    inventory_id: Mapped[int | None] = mapped_column(Id, ForeignKey('inventory.id', ondelete='SET NULL'))
    sku: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class EstimateApproval(Base):
    __tablename__ = 'estimate_approvals'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    approval_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    ticket_id: Mapped[int] = mapped_column(Id, ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False)
    approved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    actor_name: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PartsOrder(Base):
    __tablename__ = 'parts_orders'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(Id, ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False)
    part_name: Mapped[str] = mapped_column(Text, nullable=False)
    vendor: Mapped[str | None] = mapped_column(Text)
    order_number: Mapped[str | None] = mapped_column(Text)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    status: Mapped[PartsOrderStatus] = mapped_column(
        SQLEnum(PartsOrderStatus, name='parts_order_status', values_callable=_enum_values),
        nullable=False,
        default=PartsOrderStatus.ORDERED,
        server_default=PartsOrderStatus.ORDERED.value,
    )
    tracking_number: Mapped[str | None] = mapped_column(Text)
    tracking_link: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(Id, ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False)
    actor_name: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryItem(Base):
    __tablename__ = 'inventory'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    manufacturer: Mapped[str | None] = mapped_column(Text)
    sku: Mapped[str | None] = mapped_column(Text)
    bin_location: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    supplier: Mapped[str | None] = mapped_column(Text)
    min_quantity: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ShopSettings(Base):
    __tablename__ = 'shop_settings'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    shop_name: Mapped[str | None] = mapped_column(Text)
    shop_address: Mapped[str | None] = mapped_column(Text)
    shop_phone: Mapped[str | None] = mapped_column(String(32))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(7, 5), nullable=False, default=Decimal('0.07'), server_default='0.07')
    default_labor_rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal('85'), server_default='85'
    )
    receipt_disclaimer: Mapped[str | None] = mapped_column(Text)
    business_hours: Mapped[str | None] = mapped_column(Text)
    quick_replies: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TicketMessage(Base):
    __tablename__ = 'ticket_messages'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(Id, ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False)
    sender_name: Mapped[str] = mapped_column(Text, nullable=False)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DeviceCatalogEntry(Base):
    __tablename__ = 'device_catalog'
    __table_args__ = (UniqueConstraint('brand', 'model', name='uq_device_catalog_brand_model'),)

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    brand: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(Text, nullable=False)
