"""Tuning file processing state and the append-only audit trail."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.fulfillment_service.models.enums import (
    AuditEntityType,
    FileStatus,
    enum_values,
)
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column


class TuningFile(Base):
    """Customer-uploaded file moving through RECEIVED -> PENDING -> READY."""

    __tablename__ = "fulfillment_tuning_files"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[FileStatus] = mapped_column(
        SAEnum(
            FileStatus,
            values_callable=enum_values,
            name="fulfillment_file_status_enum",
        ),
        default=FileStatus.RECEIVED,
        server_default="received",
    )
    estimated_processing_time: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # minutes
    estimated_processing_time_set_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<TuningFile {self.original_filename} status={self.status}>"


class AuditLog(Base):
    """Append-only audit trail of status changes. Rows are never updated."""

    __tablename__ = "fulfillment_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    entity_type: Mapped[AuditEntityType] = mapped_column(
        SAEnum(
            AuditEntityType,
            values_callable=enum_values,
            name="fulfillment_audit_entity_type_enum",
        ),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Authenticated user id, or a system actor such as "file-admin-bot"
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index("ix_fulfillment_audit_logs_entity", "entity_type", "entity_id"),
    )

    def __repr__(self):
        return f"<AuditLog {self.entity_type}:{self.entity_id} {self.action}>"
