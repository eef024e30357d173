"""
SQLAlchemy ORM models for the PJN pipeline
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Column,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from pjn_sync.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Enums
# ============================================================================

class NaturalezaJuridica(str, enum.Enum):
    """Natural person vs. legal entity"""
    humana = "humana"
    juridica = "juridica"


class LinkType(str, enum.Enum):
    """Participant to client link state"""
    AUTO_HIGH_CONFIDENCE = "AUTO_HIGH_CONFIDENCE"
    AUTO_LOW_CONFIDENCE = "AUTO_LOW_CONFIDENCE"
    CONFIRMED = "CONFIRMED"
    MANUAL = "MANUAL"
    IGNORED = "IGNORED"


class LinkAuditAction(str, enum.Enum):
    AUTO_LINKED = "AUTO_LINKED"
    CONFIRMED = "CONFIRMED"
    MANUAL_LINKED = "MANUAL_LINKED"
    UNLINKED = "UNLINKED"
    IGNORED = "IGNORED"
    CLIENT_CREATED = "CLIENT_CREATED"


class RelatedCaseStatus(str, enum.Enum):
    pending = "pending"
    linked = "linked"


class DocumentSource(str, enum.Enum):
    actuaciones = "actuaciones"
    doc_digitales = "doc_digitales"
    notification = "notification"


# ============================================================================
# Accounts
# ============================================================================

class PjnAccount(Base):
    """Stored PJN credentials and sync/auth status, one per user"""
    __tablename__ = "pjn_accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(100), unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=False)
    encrypted_password = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Session / auth status
    session_valid = Column(Boolean, nullable=False, default=False)
    needs_reauth = Column(Boolean, nullable=False, default=False)
    last_auth_at = Column(TIMESTAMP, nullable=True)

    # Notification sync watermark
    last_synced_at = Column(TIMESTAMP, nullable=True)
    last_event_id = Column(String(100), nullable=True)

    # Error tracking
    sync_error_count = Column(Integer, nullable=False, default=0)
    last_error_at = Column(TIMESTAMP, nullable=True)
    last_error_reason = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ============================================================================
# Cases and clients
# ============================================================================

class Case(Base):
    """Case as known to the surrounding application; only the fields the sync needs"""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=_uuid)
    fre = Column(String(100), nullable=True, index=True)
    title = Column(Text, nullable=True)
    assigned_lawyer_id = Column(String(100), nullable=True)
    last_pjn_history_sync_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    participants = relationship("CaseParticipant", back_populates="case", cascade="all, delete-orphan")
    movements = relationship("PjnMovement", back_populates="case", cascade="all, delete-orphan")


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=_uuid)
    naturaleza_juridica = Column(SQLEnum(NaturalezaJuridica), nullable=False, default=NaturalezaJuridica.humana)
    nombre = Column(String(255), nullable=True)
    apellido = Column(String(255), nullable=True)
    razon_social = Column(String(500), nullable=True)
    dni = Column(String(20), nullable=True, index=True)
    cuit = Column(String(20), nullable=True, index=True)
    display_name = Column(String(500), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(100), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class ClientCase(Base):
    __tablename__ = "client_cases"
    __table_args__ = (
        UniqueConstraint("client_id", "case_id", name="uq_client_cases_client_case"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(50), nullable=True)
    added_by = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    source = Column(String(20), nullable=True)
    source_participant_id = Column(String(36), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)


# ============================================================================
# Scraped records
# ============================================================================

class PjnDocument(Base):
    """PDF stored in blob storage. One row per (case, object key)."""
    __tablename__ = "pjn_documents"
    __table_args__ = (
        UniqueConstraint("case_id", "storage_key", name="uq_pjn_documents_case_key"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    storage_key = Column(String(1000), nullable=False)
    pjn_doc_id = Column(String(100), nullable=True)
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    doc_date = Column(String(50), nullable=True)
    source = Column(SQLEnum(DocumentSource), nullable=False, default=DocumentSource.actuaciones)
    original_file_name = Column(String(255), nullable=True)
    created_by = Column(String(100), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)


class PjnMovement(Base):
    """Docket movement (actuación)"""
    __tablename__ = "pjn_movements"
    __table_args__ = (
        UniqueConstraint("case_id", "pjn_movement_id", name="uq_pjn_movements_case_movement"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    pjn_movement_id = Column(String(100), nullable=False)
    fre = Column(String(100), nullable=True)
    movement_date = Column(TIMESTAMP, nullable=True)
    raw_date = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    has_document = Column(Boolean, nullable=False, default=False)
    document_source = Column(SQLEnum(DocumentSource), nullable=True)
    doc_ref = Column(Text, nullable=True)
    storage_key = Column(String(1000), nullable=True)
    document_id = Column(String(36), ForeignKey("pjn_documents.id", ondelete="SET NULL"), nullable=True)
    origin = Column(String(50), nullable=False, default="history_sync")
    synced_at = Column(TIMESTAMP, nullable=True)

    case = relationship("Case", back_populates="movements")


class CaseParticipant(Base):
    """Interviniente listed on a case"""
    __tablename__ = "case_participants"
    __table_args__ = (
        UniqueConstraint("case_id", "pjn_participant_id", name="uq_case_participants_case_pjn"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    pjn_participant_id = Column(String(100), nullable=False)
    role = Column(String(255), nullable=True)
    name = Column(String(500), nullable=False)
    details = Column(Text, nullable=True)
    identifier_raw = Column(String(255), nullable=True)
    document_type = Column(String(20), nullable=True)
    document_number = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    synced_at = Column(TIMESTAMP, nullable=True)

    case = relationship("Case", back_populates="participants")


class CaseAppeal(Base):
    """Recurso"""
    __tablename__ = "case_appeals"
    __table_args__ = (
        UniqueConstraint("case_id", "pjn_appeal_id", name="uq_case_appeals_case_pjn"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    pjn_appeal_id = Column(String(100), nullable=False)
    appeal_type = Column(String(255), nullable=True)
    filed_date = Column(String(50), nullable=True)
    status = Column(String(255), nullable=True)
    court = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    synced_at = Column(TIMESTAMP, nullable=True)


class RelatedCase(Base):
    """Vinculado"""
    __tablename__ = "related_cases"
    __table_args__ = (
        UniqueConstraint("case_id", "pjn_relation_id", name="uq_related_cases_case_pjn"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    pjn_relation_id = Column(String(100), nullable=False)
    related_fre = Column(String(100), nullable=False, index=True)
    raw_expediente = Column(String(255), nullable=True)
    relationship_type = Column(String(255), nullable=True)
    caratula = Column(Text, nullable=True)
    court = Column(String(500), nullable=True)
    related_case_id = Column(String(36), ForeignKey("cases.id", ondelete="SET NULL"), nullable=True)
    status = Column(SQLEnum(RelatedCaseStatus), nullable=False, default=RelatedCaseStatus.pending)
    synced_at = Column(TIMESTAMP, nullable=True)


# ============================================================================
# Participant / client links
# ============================================================================

class ParticipantClientLink(Base):
    __tablename__ = "participant_client_links"

    id = Column(String(36), primary_key=True, default=_uuid)
    participant_id = Column(
        String(36), ForeignKey("case_participants.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    local_role = Column(String(50), nullable=True)
    link_type = Column(SQLEnum(LinkType), nullable=False)
    confidence = Column(Float, nullable=True)
    match_reason = Column(Text, nullable=True)
    confirmed_by = Column(String(100), nullable=True)
    confirmed_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class LinkAudit(Base):
    """Append-only history of link decisions"""
    __tablename__ = "link_audits"

    id = Column(String(36), primary_key=True, default=_uuid)
    participant_id = Column(String(36), nullable=False, index=True)
    client_id = Column(String(36), nullable=True)
    case_id = Column(String(36), nullable=False, index=True)
    action = Column(SQLEnum(LinkAuditAction), nullable=False)
    previous_link_type = Column(SQLEnum(LinkType), nullable=True)
    new_link_type = Column(SQLEnum(LinkType), nullable=True)
    match_reason = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)
    performed_by = Column(String(100), nullable=True)
    performed_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)


# ============================================================================
# Activity log
# ============================================================================

class PjnActivityLog(Base):
    __tablename__ = "pjn_activity_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(100), nullable=True, index=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(100), nullable=False)
    source = Column(String(50), nullable=False, default="PJN-Portal")
    pjn_event_id = Column(String(100), unique=True, nullable=True)
    pjn_movement_id = Column(String(100), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    timestamp = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
