"""
Pydantic validation schemas
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from pjn_sync.db.models import LinkAuditAction, LinkType
from pjn_sync.utils.case_keys import JURISDICTION_CODES

# ============================================================================
# Session
# ============================================================================

class SessionState(BaseModel):
    """Authenticated PJN session persisted per user by the session store."""
    cookies: List[str] = Field(default_factory=list)  # "name=value"
    headers: Dict[str, str] = Field(default_factory=dict)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    username: Optional[str] = None
    user_id: Optional[str] = None
    authenticated_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def cookie_header(self) -> str:
        return "; ".join(self.cookies)


class TokenSet(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 300


# ============================================================================
# Normalized portal records
# ============================================================================

class NormalizedCaseCandidate(BaseModel):
    fre: str
    raw_fre: str
    jurisdiction: Optional[str] = None
    case_number: Optional[str] = None
    year: Optional[str] = None
    caratula: Optional[str] = None
    dependencia: Optional[str] = None
    situacion: Optional[str] = None
    last_action_date: Optional[str] = None
    row_index: int
    page: int = 1


class NormalizedMovement(BaseModel):
    movement_id: str
    fre: Optional[str] = None
    date: str
    description: str
    has_document: bool = False
    document_source: Literal["actuaciones", "doc_digitales"] = "actuaciones"
    doc_ref: Optional[str] = None
    storage_key: Optional[str] = None
    raw_html: Optional[str] = None


class NormalizedDigitalDocument(BaseModel):
    doc_id: str
    fre: Optional[str] = None
    date: str
    description: str
    source: Literal["actuaciones", "doc_digitales"] = "doc_digitales"
    doc_ref: Optional[str] = None
    storage_key: Optional[str] = None
    raw_html: Optional[str] = None


class NormalizedParticipant(BaseModel):
    participant_id: str
    role: str
    name: str
    details: Optional[str] = None
    raw_html: Optional[str] = None


class NormalizedAppeal(BaseModel):
    appeal_id: str
    appeal_type: str
    filed_date: Optional[str] = None
    status: Optional[str] = None
    court: Optional[str] = None
    description: Optional[str] = None
    raw_html: Optional[str] = None


class NormalizedRelatedCase(BaseModel):
    relation_id: str
    related_fre: str
    raw_expediente: str
    jurisdiction: Optional[str] = None
    case_number: Optional[str] = None
    year: Optional[str] = None
    relationship_type: str = ""
    caratula: Optional[str] = None
    court: Optional[str] = None
    raw_html: Optional[str] = None


class NormalizedEvent(BaseModel):
    pjn_event_id: str
    fre: Optional[str] = None
    timestamp: str
    category: str = "judicial"
    description: str = ""
    pdf_url: Optional[str] = None
    storage_key: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)


class CaseHistoryStats(BaseModel):
    movements_count: int = 0
    documents_count: int = 0
    download_errors: int = 0
    duration_ms: int = 0


class CaseHistoryDetails(BaseModel):
    fre: str
    cid: Optional[str] = None
    candidate: Optional[NormalizedCaseCandidate] = None
    movements: List[NormalizedMovement] = Field(default_factory=list)
    documents: List[NormalizedDigitalDocument] = Field(default_factory=list)
    participants: List[NormalizedParticipant] = Field(default_factory=list)
    appeals: List[NormalizedAppeal] = Field(default_factory=list)
    related_cases: List[NormalizedRelatedCase] = Field(default_factory=list)
    stats: CaseHistoryStats = Field(default_factory=CaseHistoryStats)


# ============================================================================
# Scraper requests
# ============================================================================

class ReauthRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ConnectAccountRequest(ReauthRequest):
    """Same shape as a reauth; credentials are stored once the login succeeds."""


class ScrapeEventsRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    since: Optional[datetime] = None
    last_event_id: Optional[str] = None


class CaseHistorySearchRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    jurisdiction: str = Field(..., min_length=2, max_length=4)
    case_number: str = Field(..., pattern=r"^\d+$")
    year: int = Field(..., ge=1900, le=2100)

    @field_validator("jurisdiction")
    @classmethod
    def known_jurisdiction(cls, v: str) -> str:
        code = v.strip().upper()
        if code not in JURISDICTION_CODES:
            raise ValueError(f"Unknown jurisdiction code: {v}")
        return code


class CaseHistoryDetailsRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    fre: str = Field(..., min_length=5)
    include_movements: bool = True
    include_documents: bool = True
    include_participants: bool = True
    include_appeals: bool = True
    include_related_cases: bool = True
    max_movements: Optional[int] = Field(None, ge=1)
    max_documents: Optional[int] = Field(None, ge=1)
    download_pdfs: bool = True


class CaseHistorySyncRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    background: bool = False


class NotificationSyncRequest(BaseModel):
    background: bool = False


# ============================================================================
# Matching / links
# ============================================================================

class ParticipantCreate(BaseModel):
    case_id: str
    participant_id: str = Field(..., min_length=1)
    role: str = ""
    name: str = Field(..., min_length=1)
    details: Optional[str] = None


class ManualLinkRequest(BaseModel):
    client_id: str
    role: Optional[str] = None
    performed_by: Optional[str] = None


class ConfirmLinkRequest(BaseModel):
    performed_by: Optional[str] = None


class IgnoreParticipantRequest(BaseModel):
    performed_by: Optional[str] = None
    reason: Optional[str] = None


class CreateClientFromParticipantRequest(BaseModel):
    naturaleza_juridica: Literal["humana", "juridica"]
    nombre: Optional[str] = None
    apellido: Optional[str] = None
    razon_social: Optional[str] = None
    dni: Optional[str] = None
    cuit: Optional[str] = None
    performed_by: Optional[str] = None


class ClientCaseRelationRequest(BaseModel):
    client_id: str
    participant_id: str
    role: str


class LinkAuditResponse(BaseModel):
    id: str
    participant_id: str
    client_id: Optional[str]
    case_id: str
    action: LinkAuditAction
    previous_link_type: Optional[LinkType]
    new_link_type: Optional[LinkType]
    match_reason: Optional[str]
    confidence: Optional[float]
    performed_by: Optional[str]
    performed_at: datetime

    class Config:
        from_attributes = True


class AccountStatusResponse(BaseModel):
    user_id: str
    username: str
    is_active: bool
    session_valid: bool
    needs_reauth: bool
    last_auth_at: Optional[datetime]
    last_synced_at: Optional[datetime]
    last_event_id: Optional[str]
    sync_error_count: int
    last_error_at: Optional[datetime]
    last_error_reason: Optional[str]

    class Config:
        from_attributes = True
