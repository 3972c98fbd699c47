"""ORM Models for the Land Development Portal — SQLAlchemy 2.0"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    String, Text, Integer, Numeric, DateTime,
    ForeignKey, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base


def _created():
    return mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


def _updated():
    return mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


# ── ORGANISATION HIERARCHY ────────────────────────────────────────────────────
class Company(Base):
    __tablename__ = "companies"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    abn: Mapped[Optional[str]] = mapped_column(Text)
    owners: Mapped[Optional[str]] = mapped_column(Text)
    # Null for legacy/system companies
    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    projects: Mapped[list["Project"]] = relationship(
        "Project", back_populates="company", cascade="all, delete-orphan", passive_deletes=True
    )


class Project(Base):
    __tablename__ = "projects"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    company: Mapped["Company"] = relationship("Company", back_populates="projects")
    precincts: Mapped[list["Precinct"]] = relationship(
        "Precinct", back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )


class Precinct(Base):
    __tablename__ = "precincts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    project: Mapped["Project"] = relationship("Project", back_populates="precincts")
    stages: Mapped[list["Stage"]] = relationship(
        "Stage", back_populates="precinct", cascade="all, delete-orphan", passive_deletes=True
    )


class Stage(Base):
    __tablename__ = "stages"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    precinct_id: Mapped[int] = mapped_column(Integer, ForeignKey("precincts.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    registration_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # 0 = forecast/pending, 1 = actual confirmed
    registration_date_actual: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    settlement_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    settlement_date_actual: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    precinct: Mapped["Precinct"] = relationship("Precinct", back_populates="stages")
    permits: Mapped[list["Permit"]] = relationship(
        "Permit", back_populates="stage", cascade="all, delete-orphan", passive_deletes=True
    )
    approvals: Mapped[list["Approval"]] = relationship(
        "Approval", back_populates="stage", cascade="all, delete-orphan", passive_deletes=True
    )
    invoices: Mapped[list["Invoice"]] = relationship(
        "Invoice", back_populates="stage", cascade="all, delete-orphan", passive_deletes=True
    )
    lots: Mapped[list["Lot"]] = relationship(
        "Lot", back_populates="stage", cascade="all, delete-orphan", passive_deletes=True
    )


# ── STAGE ITEMS ───────────────────────────────────────────────────────────────
class Permit(Base):
    __tablename__ = "permits"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stage_id: Mapped[int] = mapped_column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    permit_number: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    stage: Mapped["Stage"] = relationship("Stage", back_populates="permits")


class Approval(Base):
    __tablename__ = "approvals"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stage_id: Mapped[int] = mapped_column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    approval_number: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    stage: Mapped["Stage"] = relationship("Stage", back_populates="approvals")


class Invoice(Base):
    __tablename__ = "invoices"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stage_id: Mapped[int] = mapped_column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), nullable=False)
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    status: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    stage: Mapped["Stage"] = relationship("Stage", back_populates="invoices")


# ── LOTS ──────────────────────────────────────────────────────────────────────
class Lot(Base):
    __tablename__ = "lots"
    __table_args__ = (Index("ix_lots_stage_id", "stage_id"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stage_id: Mapped[int] = mapped_column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), nullable=False)
    lot_number: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text)
    area: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    frontage: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    depth: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    street_name: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    price_per_sqm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    custom_data: Mapped[Optional[str]] = mapped_column(Text)  # JSON blob keyed by custom_fields.field_key
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    stage: Mapped["Stage"] = relationship("Stage", back_populates="lots")
    subgroups: Mapped[list["LotSubgroup"]] = relationship(
        "LotSubgroup", back_populates="lot", cascade="all, delete-orphan", passive_deletes=True
    )


class LotSubgroup(Base):
    __tablename__ = "lot_subgroups"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lot_id: Mapped[int] = mapped_column(Integer, ForeignKey("lots.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
    lot: Mapped["Lot"] = relationship("Lot", back_populates="subgroups")


class CustomField(Base):
    __tablename__ = "custom_fields"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    field_key: Mapped[str] = mapped_column(Text, nullable=False)
    field_label: Mapped[str] = mapped_column(Text, nullable=False)
    field_type: Mapped[Optional[str]] = mapped_column(Text, default="text")
    is_active: Mapped[Optional[int]] = mapped_column(Integer, default=1)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()


# ── DOCUMENTS ─────────────────────────────────────────────────────────────────
class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (Index("ix_documents_entity", "entity_type", "entity_id"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    # Stored file name under UPLOAD_DIR, or an absolute http(s) URL
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    document_type: Mapped[Optional[str]] = mapped_column(Text, default="other")  # permit_plan | plan_subdivision | other
    extracted_data: Mapped[Optional[str]] = mapped_column(Text)
    ai_processed: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = _created()


# ── AUTH ──────────────────────────────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_master: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    is_active: Mapped[Optional[int]] = mapped_column(Integer, default=1)
    theme: Mapped[Optional[str]] = mapped_column(Text, default="default")
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()


class Session(Base):
    __tablename__ = "sessions"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # uuid4
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = _created()


class Role(Base):
    __tablename__ = "roles"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    can_view: Mapped[Optional[int]] = mapped_column(Integer, default=1)
    can_edit: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    can_delete: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    can_invite: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    can_manage_roles: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()


class UserAccess(Base):
    __tablename__ = "user_access"
    __table_args__ = (Index("ix_user_access_user", "user_id"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)  # company | project | precinct | ...
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    granted_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"))
    created_at: Mapped[datetime] = _created()


class PasswordReset(Base):
    __tablename__ = "password_resets"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = _created()


class Invitation(Base):
    __tablename__ = "invitations"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    token: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    invited_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = _created()


# ── PREFERENCES & AUDIT ───────────────────────────────────────────────────────
class UserPreference(Base):
    __tablename__ = "user_preferences"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    pref_key: Mapped[str] = mapped_column(Text, nullable=False)  # showForecastTool, showSummary, ...
    pref_value: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()


class ActivityLog(Base):
    __tablename__ = "activity_log"
    __table_args__ = (Index("ix_activity_log_created_at", "created_at"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    action: Mapped[str] = mapped_column(Text, nullable=False)  # create | update | delete | login | invite
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[Optional[int]] = mapped_column(Integer)
    details: Mapped[Optional[str]] = mapped_column(Text)
    ip_address: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = _created()


# ── LAND BUDGET & PRICING ─────────────────────────────────────────────────────
class LandBudgetItem(Base):
    """Editable per stage, aggregated per precinct."""
    __tablename__ = "land_budget_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    precinct_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("precincts.id", ondelete="CASCADE"))
    stage_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("stages.id", ondelete="CASCADE"))
    category: Mapped[str] = mapped_column(Text, nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(Text)
    custom_name: Mapped[Optional[str]] = mapped_column(Text)
    area_ha: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    is_custom: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()


class ProductPricing(Base):
    __tablename__ = "product_pricing"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    frontage: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    depth: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    base_area: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_per_sqm: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    balance_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), default=Decimal("50"))
    sort_order: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created()
    updated_at: Mapped[datetime] = _updated()
