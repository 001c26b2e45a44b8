from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from bulkops.db.session import Base
from bulkops.domain.models import utcnow
from bulkops.domain.states import OperationStatus

# JSONB on Postgres, plain JSON text elsewhere (SQLite for local runs and tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")

class BulkOperation(Base):
    __tablename__ = "bulk_operations"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    operation_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Request (write-once)
    items: Mapped[list[Any]] = mapped_column(JsonColumn, nullable=False)
    options: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)

    # Progress
    status: Mapped[OperationStatus] = mapped_column(String(20), default=OperationStatus.PENDING, nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Outcome
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, nullable=False, default=list)
    rollback_data: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    rollback_errors: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, nullable=False, default=list)
    can_rollback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Audit
    owner: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    # Touched on every progress write, so it doubles as the executor heartbeat
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rolled_back_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_bulk_operations_status", "status"),
        Index("ix_bulk_operations_owner", "owner"),
        Index("ix_bulk_operations_started_at", "started_at"),
        Index("ix_bulk_operations_operation_type", "operation_type"),
        Index("ix_bulk_operations_can_rollback", "can_rollback"),
    )

class VanityCode(Base):
    __tablename__ = "vanity_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vanity_code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    discount_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    discount_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversion_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revenue_generated: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

class AuthorizedDomain(Base):
    __tablename__ = "authorized_domains"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    api_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    suspended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    suspended_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    verification_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    last_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
