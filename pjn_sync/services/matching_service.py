"""
Participant (interviniente) to client matching.

Signals, best score wins per client:
  1. DNI equal to the participant's document          -> 1.0
  2. DNI equal to the DNI embedded in a CUIT/CUIL     -> 0.98
  3. CUIT equal to the participant's document         -> 1.0
  4. Normalized name equal                            -> 0.95 (never lowers a document score)
  5. Jaro-Winkler on normalized names >= medium       -> the similarity itself

The best candidate decides the link type (>= high threshold is
AUTO_HIGH_CONFIDENCE, otherwise AUTO_LOW_CONFIDENCE). With no candidate
above the medium threshold a non-judicial participant gets a client created
for it. Every link change appends a LinkAudit row.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.models import (
    Case,
    CaseParticipant,
    Client,
    ClientCase,
    LinkAudit,
    LinkAuditAction,
    LinkType,
    NaturalezaJuridica,
    ParticipantClientLink,
)
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import CreateClientFromParticipantRequest, NormalizedParticipant
from pjn_sync.utils.exceptions import RecordNotFoundError
from pjn_sync.utils.identifier_parser import (
    CUIL,
    CUIT,
    DNI,
    extract_identifier_value,
    jaro_winkler_similarity,
    normalize_name,
    parse_identifier,
)
from pjn_sync.utils.role_mapping import is_judicial_role, is_party_role, map_pjn_role

COMPANY_KEYWORDS = [
    "S.A",
    "SA",
    "S.R.L",
    "SRL",
    "SAS",
    "S.A.S",
    "SOCIEDAD",
    "COOPERATIVA",
    "ASOCIACION",
    "FUNDACION",
    "COMPANIA",
    "COMPAÑIA",
    "LTDA",
]

AUTO_CREATED_REASON = "Cliente creado automaticamente para interviniente sin coincidencias"
MANUAL_LINK_REASON = "Vinculación manual"
CLIENT_FROM_PARTICIPANT_REASON = "Cliente creado desde interviniente"

NAME_SEARCH_CANDIDATE_LIMIT = 10
NAME_SEARCH_RESULTS = 20

_DOC_SEPARATORS = re.compile(r"[-.\s]")


@dataclass
class ScoredCandidate:
    client_id: str
    confidence: float
    match_reason: str
    match_type: str  # DNI | CUIT | NAME_EXACT | NAME_FUZZY


def infer_naturaleza_juridica(name: str) -> NaturalezaJuridica:
    upper = (name or "").upper()
    if any(keyword in upper for keyword in COMPANY_KEYWORDS):
        return NaturalezaJuridica.juridica
    return NaturalezaJuridica.humana


def split_human_name(name: str) -> Dict[str, Optional[str]]:
    """``"PEREZ, JUAN"`` and ``"PEREZ GOMEZ JUAN"`` both become apellido/nombre."""
    trimmed = (name or "").strip()
    if not trimmed:
        return {"nombre": None, "apellido": None, "display_name": name}

    if "," in trimmed:
        apellido, _, nombre = trimmed.partition(",")
        apellido, nombre = apellido.strip(), nombre.strip()
        if apellido and nombre:
            return {"nombre": nombre, "apellido": apellido, "display_name": f"{apellido}, {nombre}"}

    tokens = trimmed.split()
    if len(tokens) >= 2:
        apellido = " ".join(tokens[:-1])
        nombre = tokens[-1]
        return {"nombre": nombre, "apellido": apellido, "display_name": f"{apellido}, {nombre}"}

    return {"nombre": trimmed, "apellido": None, "display_name": trimmed}


def _digits(value: Optional[str]) -> str:
    return _DOC_SEPARATORS.sub("", value or "")


def _client_name(client: Client) -> str:
    if client.display_name:
        return client.display_name
    if client.apellido and client.nombre:
        return f"{client.apellido}, {client.nombre}"
    return client.razon_social or ""


def score_candidate(
    participant: CaseParticipant,
    client: Client,
    high_threshold: float,
    medium_threshold: float,
) -> Optional[ScoredCandidate]:
    best_score = 0.0
    best_reason = ""
    best_type = "NAME_FUZZY"

    document = _digits(participant.document_number)
    if document:
        if client.dni:
            client_dni = _digits(client.dni)
            if client_dni == document:
                best_score, best_reason, best_type = 1.0, f"DNI exacto: {client.dni}", "DNI"
            elif participant.document_type in (CUIT, CUIL) and client_dni == document[2:10]:
                best_score = 0.98
                best_reason = f"DNI extraído de {participant.document_type}: {document}"
                best_type = "DNI"

        if client.cuit and best_score < 1.0 and _digits(client.cuit) == document:
            best_score, best_reason, best_type = 1.0, f"CUIT exacto: {client.cuit}", "CUIT"

    if best_score < high_threshold:
        participant_name = normalize_name(participant.name)
        client_name = _client_name(client)
        normalized_client = normalize_name(client_name)
        if participant_name and normalized_client:
            if participant_name == normalized_client:
                score = max(best_score, 0.95)
                if score > best_score:
                    best_score, best_reason, best_type = score, f"Nombre exacto: {client_name}", "NAME_EXACT"
            else:
                similarity = jaro_winkler_similarity(participant_name, normalized_client)
                if similarity > best_score and similarity >= medium_threshold:
                    best_score = similarity
                    best_reason = f"Similitud de nombre: {similarity * 100:.0f}%"
                    best_type = "NAME_FUZZY"

    if best_score < medium_threshold:
        return None
    return ScoredCandidate(client.id, best_score, best_reason, best_type)


class MatchingService:
    def __init__(
        self,
        repository_factory: Optional[Callable[[], PjnRepository]] = None,
        high_threshold: Optional[float] = None,
        medium_threshold: Optional[float] = None,
    ):
        self.repository_factory = repository_factory or PjnRepository.open
        self.high_threshold = settings.MATCH_HIGH_CONFIDENCE_THRESHOLD if high_threshold is None else high_threshold
        self.medium_threshold = (
            settings.MATCH_MEDIUM_CONFIDENCE_THRESHOLD if medium_threshold is None else medium_threshold
        )

    # ── Participants ─────────────────────────────────────────────────────────

    def create_participant_entry(
        self, repo: PjnRepository, case_id: str, participant: NormalizedParticipant
    ) -> Dict[str, Any]:
        """
        Find-or-create by (case, portal id). The document type/number are
        kept only when the identifier in ``details`` validates.
        """
        existing = repo.find_one(CaseParticipant, case_id=case_id, pjn_participant_id=participant.participant_id)
        if existing is not None:
            return {"participant_id": existing.id, "is_new": False}

        identifier_raw = extract_identifier_value(participant.details)
        parsed = parse_identifier(identifier_raw) if identifier_raw else None
        row = repo.insert(
            CaseParticipant,
            case_id=case_id,
            pjn_participant_id=participant.participant_id,
            role=participant.role,
            name=participant.name,
            details=participant.details,
            identifier_raw=identifier_raw,
            document_type=parsed.type if parsed and parsed.valid else None,
            document_number=parsed.number if parsed and parsed.valid else None,
            is_active=True,
            synced_at=datetime.utcnow(),
        )
        return {"participant_id": row.id, "is_new": True}

    def trigger_matching(self, queue, participant_id: str, case_id: str) -> str:
        """Schedule matching; the participant id is the dedupe key."""
        return queue.enqueue(
            "match_participant",
            f"match_participant:{participant_id}",
            self.run_matching_task,
            participant_id=participant_id,
        )

    def run_matching_task(self, participant_id: str) -> Dict[str, Any]:
        repo = self.repository_factory()
        try:
            return self.match_participant(repo, participant_id)
        except Exception:
            repo.rollback()
            raise
        finally:
            repo.close()

    # ── Candidate search ─────────────────────────────────────────────────────

    def find_candidate_clients(self, repo: PjnRepository, participant: CaseParticipant) -> List[Client]:
        candidates: List[Client] = []
        seen = set()

        def add(clients) -> None:
            for client in clients:
                if client.id not in seen and client.is_active:
                    seen.add(client.id)
                    candidates.append(client)

        document = participant.document_number
        if document:
            add(repo.find_all(Client, dni=document, is_active=True))
            add(repo.find_all(Client, cuit=document, is_active=True))
            if len(document) == 11 and participant.document_type in (CUIT, CUIL):
                add(repo.find_all(Client, dni=document[2:10], is_active=True))

        case_client_ids = [
            cc.client_id for cc in repo.find_all(ClientCase, case_id=participant.case_id, is_active=True)
        ]
        if case_client_ids:
            add(repo.query(Client).filter(Client.id.in_(case_client_ids)).all())

        if len(candidates) < NAME_SEARCH_CANDIDATE_LIMIT and participant.name:
            add(self._search_by_name(repo, participant.name))

        return candidates

    @staticmethod
    def _search_by_name(repo: PjnRepository, name: str) -> List[Client]:
        tokens = [t for t in normalize_name(name).split() if len(t) > 2]
        if not tokens:
            return []
        query = repo.query(Client).filter(Client.is_active.is_(True))
        conditions = [Client.display_name.ilike(f"%{token}%") for token in tokens]
        conditions += [Client.razon_social.ilike(f"%{token}%") for token in tokens]
        conditions += [Client.apellido.ilike(f"%{token}%") for token in tokens]
        return query.filter(or_(*conditions)).limit(NAME_SEARCH_RESULTS).all()

    # ── Matching ─────────────────────────────────────────────────────────────

    def match_participant(self, repo: PjnRepository, participant_id: str) -> Dict[str, Any]:
        participant = repo.get(CaseParticipant, participant_id)
        if participant is None:
            return {"status": "PARTICIPANT_NOT_FOUND"}

        case_id = participant.case_id
        role = map_pjn_role(participant.role or "")
        existing = repo.find_one(ParticipantClientLink, participant_id=participant.id)

        if existing is not None and existing.link_type != LinkType.AUTO_LOW_CONFIDENCE:
            if existing.link_type != LinkType.IGNORED and existing.client_id:
                self.ensure_client_case_relation(repo, existing.client_id, case_id, participant.id, role.local_role)
                repo.commit()
            return {"status": "ALREADY_LINKED", "link_id": existing.id, "client_id": existing.client_id}

        can_auto_create = not is_judicial_role(role.local_role)
        candidates = self.find_candidate_clients(repo, participant)

        scored: List[ScoredCandidate] = []
        for client in candidates:
            result = score_candidate(participant, client, self.high_threshold, self.medium_threshold)
            if result is not None:
                scored.append(result)
        scored.sort(key=lambda c: c.confidence, reverse=True)

        # A suggestion is only replaced by a strictly better match.
        if existing is not None and (not scored or scored[0].confidence <= (existing.confidence or 0.0)):
            logger.debug("Keeping low confidence link", extra={"participant_id": participant.id, "link_id": existing.id})
            return {
                "status": existing.link_type.value,
                "link_id": existing.id,
                "client_id": existing.client_id,
                "confidence": existing.confidence,
                "match_reason": existing.match_reason,
            }

        if not scored:
            if not can_auto_create:
                status = "NO_CANDIDATES" if not candidates else "NO_MATCH"
                logger.info("No client match for judicial participant", extra={"participant_id": participant.id, "status": status})
                return {"status": status}

            case = repo.get(Case, case_id)
            if case is None:
                return {"status": "CASE_NOT_FOUND"}
            client = self._auto_create_client(repo, participant, created_by=case.assigned_lawyer_id)
            best = ScoredCandidate(client.id, 1.0, AUTO_CREATED_REASON, "CREATED")
            link_type = LinkType.AUTO_HIGH_CONFIDENCE
        else:
            best = scored[0]
            link_type = (
                LinkType.AUTO_HIGH_CONFIDENCE
                if best.confidence >= self.high_threshold
                else LinkType.AUTO_LOW_CONFIDENCE
            )

        link = self._write_link(
            repo,
            participant,
            existing,
            client_id=best.client_id,
            link_type=link_type,
            confidence=best.confidence,
            match_reason=best.match_reason,
            local_role=role.local_role,
            action=LinkAuditAction.AUTO_LINKED,
        )
        self.ensure_client_case_relation(repo, best.client_id, case_id, participant.id, role.local_role)
        repo.commit()

        logger.info(
            "Participant matched",
            extra={
                "participant_id": participant.id,
                "client_id": best.client_id,
                "link_type": link_type.value,
                "confidence": best.confidence,
            },
        )
        return {
            "status": link_type.value,
            "link_id": link.id,
            "client_id": best.client_id,
            "confidence": best.confidence,
            "match_reason": best.match_reason,
        }

    def _auto_create_client(self, repo: PjnRepository, participant: CaseParticipant, created_by: Optional[str]) -> Client:
        naturaleza = infer_naturaleza_juridica(participant.name)
        name = participant.name.strip()
        dni = participant.document_number if participant.document_type == DNI else None
        cuit = participant.document_number if participant.document_type in (CUIT, CUIL) else None

        if naturaleza == NaturalezaJuridica.humana:
            parts = split_human_name(name)
            values = {"nombre": parts["nombre"], "apellido": parts["apellido"], "display_name": parts["display_name"]}
        else:
            values = {"razon_social": name, "display_name": name}

        client = repo.insert(
            Client,
            naturaleza_juridica=naturaleza,
            dni=dni,
            cuit=cuit,
            is_active=True,
            created_by=created_by,
            **values,
        )
        logger.info("Client auto-created for participant", extra={"participant_id": participant.id, "client_id": client.id})
        return client

    def _write_link(
        self,
        repo: PjnRepository,
        participant: CaseParticipant,
        existing: Optional[ParticipantClientLink],
        client_id: Optional[str],
        link_type: LinkType,
        confidence: Optional[float],
        match_reason: Optional[str],
        local_role: Optional[str],
        action: LinkAuditAction,
        performed_by: Optional[str] = None,
        confirmed: bool = False,
    ) -> ParticipantClientLink:
        now = datetime.utcnow()
        values: Dict[str, Any] = {
            "client_id": client_id,
            "link_type": link_type,
            "confidence": confidence,
            "match_reason": match_reason,
            "local_role": local_role,
        }
        if confirmed:
            values["confirmed_by"] = performed_by
            values["confirmed_at"] = now

        previous = existing.link_type if existing is not None else None
        if existing is not None:
            link = repo.update(existing, **values)
        else:
            link = repo.insert(ParticipantClientLink, participant_id=participant.id, case_id=participant.case_id, **values)

        self._audit(
            repo,
            participant_id=participant.id,
            client_id=client_id,
            case_id=participant.case_id,
            action=action,
            previous_link_type=previous,
            new_link_type=link_type,
            match_reason=match_reason,
            confidence=confidence,
            performed_by=performed_by,
        )
        return link

    @staticmethod
    def _audit(repo: PjnRepository, **values: Any) -> LinkAudit:
        return repo.insert(LinkAudit, performed_at=datetime.utcnow(), **values)

    # ── Client / case relation ───────────────────────────────────────────────

    def ensure_client_case_relation(
        self,
        repo: PjnRepository,
        client_id: str,
        case_id: str,
        participant_id: str,
        role: str,
    ) -> Optional[ClientCase]:
        """Create the client-case row, or reactivate it and fill in the PJN source."""
        existing = repo.find_one(ClientCase, client_id=client_id, case_id=case_id)
        if existing is not None:
            values: Dict[str, Any] = {}
            if existing.is_active is False:
                values["is_active"] = True
            if not existing.source_participant_id:
                values["source"] = "PJN"
                values["source_participant_id"] = participant_id
            if values:
                values["role"] = existing.role or role
                repo.update(existing, **values)
            return existing

        case = repo.get(Case, case_id)
        if case is None:
            return None
        return repo.insert(
            ClientCase,
            client_id=client_id,
            case_id=case_id,
            role=role,
            added_by=case.assigned_lawyer_id,
            is_active=True,
            source="PJN",
            source_participant_id=participant_id,
        )

    # ── Human decisions ──────────────────────────────────────────────────────

    def _participant_or_404(self, repo: PjnRepository, participant_id: str) -> CaseParticipant:
        participant = repo.get(CaseParticipant, participant_id)
        if participant is None:
            raise RecordNotFoundError("Participant", participant_id)
        return participant

    def confirm_link(self, repo: PjnRepository, link_id: str, performed_by: Optional[str] = None) -> Dict[str, Any]:
        link = repo.get(ParticipantClientLink, link_id)
        if link is None:
            raise RecordNotFoundError("Link", link_id)

        now = datetime.utcnow()
        previous = link.link_type
        repo.update(link, link_type=LinkType.CONFIRMED, confirmed_by=performed_by, confirmed_at=now)
        self._audit(
            repo,
            participant_id=link.participant_id,
            client_id=link.client_id,
            case_id=link.case_id,
            action=LinkAuditAction.CONFIRMED,
            previous_link_type=previous,
            new_link_type=LinkType.CONFIRMED,
            performed_by=performed_by,
        )

        participant = repo.get(CaseParticipant, link.participant_id)
        if participant is not None and link.client_id:
            role = map_pjn_role(participant.role or "")
            if is_party_role(role.local_role):
                self.ensure_client_case_relation(
                    repo, link.client_id, link.case_id, participant.id, link.local_role or role.local_role
                )
        repo.commit()
        return {"success": True}

    def manual_link(
        self,
        repo: PjnRepository,
        participant_id: str,
        client_id: str,
        role: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        participant = self._participant_or_404(repo, participant_id)
        client = repo.get(Client, client_id)
        if client is None:
            raise RecordNotFoundError("Client", client_id)

        mapping = map_pjn_role(participant.role or "")
        local_role = role or mapping.local_role
        existing = repo.find_one(ParticipantClientLink, participant_id=participant.id)
        link = self._write_link(
            repo,
            participant,
            existing,
            client_id=client.id,
            link_type=LinkType.MANUAL,
            confidence=1.0,
            match_reason=MANUAL_LINK_REASON,
            local_role=local_role,
            action=LinkAuditAction.MANUAL_LINKED,
            performed_by=performed_by,
            confirmed=True,
        )
        if is_party_role(mapping.local_role):
            self.ensure_client_case_relation(repo, client.id, participant.case_id, participant.id, local_role)
        repo.commit()
        return {"success": True, "link_id": link.id}

    def unlink(self, repo: PjnRepository, link_id: str, performed_by: Optional[str] = None) -> Dict[str, Any]:
        """Deletes the link; the client stays on the case."""
        link = repo.get(ParticipantClientLink, link_id)
        if link is None:
            raise RecordNotFoundError("Link", link_id)

        self._audit(
            repo,
            participant_id=link.participant_id,
            client_id=link.client_id,
            case_id=link.case_id,
            action=LinkAuditAction.UNLINKED,
            previous_link_type=link.link_type,
            performed_by=performed_by,
        )
        repo.delete(link)
        repo.commit()
        return {"success": True}

    def ignore_participant(
        self,
        repo: PjnRepository,
        participant_id: str,
        performed_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        participant = self._participant_or_404(repo, participant_id)
        existing = repo.find_one(ParticipantClientLink, participant_id=participant.id)
        mapping = map_pjn_role(participant.role or "")
        self._write_link(
            repo,
            participant,
            existing,
            client_id=existing.client_id if existing is not None else None,
            link_type=LinkType.IGNORED,
            confidence=existing.confidence if existing is not None else None,
            match_reason=reason or (existing.match_reason if existing is not None else None),
            local_role=existing.local_role if existing is not None else mapping.local_role,
            action=LinkAuditAction.IGNORED,
            performed_by=performed_by,
            confirmed=True,
        )
        repo.commit()
        return {"success": True}

    def create_client_from_participant(
        self,
        repo: PjnRepository,
        participant_id: str,
        request: CreateClientFromParticipantRequest,
    ) -> Dict[str, Any]:
        participant = self._participant_or_404(repo, participant_id)

        if request.naturaleza_juridica == "humana":
            if not request.nombre or not request.apellido:
                raise ValueError("Nombre y apellido son requeridos")
            display_name = f"{request.apellido.strip()}, {request.nombre.strip()}"
        else:
            if not request.razon_social:
                raise ValueError("Razón social es requerida")
            display_name = request.razon_social.strip()

        client = repo.insert(
            Client,
            naturaleza_juridica=NaturalezaJuridica(request.naturaleza_juridica),
            nombre=request.nombre,
            apellido=request.apellido,
            razon_social=request.razon_social,
            dni=request.dni,
            cuit=request.cuit,
            display_name=display_name,
            is_active=True,
            created_by=request.performed_by,
        )
        self._audit(
            repo,
            participant_id=participant.id,
            client_id=client.id,
            case_id=participant.case_id,
            action=LinkAuditAction.CLIENT_CREATED,
            match_reason=CLIENT_FROM_PARTICIPANT_REASON,
            performed_by=request.performed_by,
        )

        mapping = map_pjn_role(participant.role or "")
        existing = repo.find_one(ParticipantClientLink, participant_id=participant.id)
        link = self._write_link(
            repo,
            participant,
            existing,
            client_id=client.id,
            link_type=LinkType.MANUAL,
            confidence=1.0,
            match_reason=CLIENT_FROM_PARTICIPANT_REASON,
            local_role=mapping.local_role,
            action=LinkAuditAction.MANUAL_LINKED,
            performed_by=request.performed_by,
            confirmed=True,
        )
        if is_party_role(mapping.local_role):
            self.ensure_client_case_relation(repo, client.id, participant.case_id, participant.id, mapping.local_role)
        repo.commit()
        return {"success": True, "client_id": client.id, "link_id": link.id}

    # ── Batch ────────────────────────────────────────────────────────────────

    def rematch_all_for_case(self, repo: PjnRepository, case_id: str) -> Dict[str, Any]:
        """Sequential, so two writers never race on one participant's link."""
        participants = repo.find_all(CaseParticipant, order_by=CaseParticipant.pjn_participant_id, case_id=case_id)
        processed = linked = suggested = 0
        for participant in participants:
            if participant.is_active is False:
                continue
            result = self.match_participant(repo, participant.id)
            processed += 1
            if result["status"] == LinkType.AUTO_HIGH_CONFIDENCE.value:
                linked += 1
            elif result["status"] == LinkType.AUTO_LOW_CONFIDENCE.value:
                suggested += 1

        logger.info(
            "Case participants rematched",
            extra={"case_id": case_id, "processed": processed, "linked": linked, "suggested": suggested},
        )
        return {"success": True, "processed": processed, "linked": linked, "suggested": suggested}

    # ── Queries ──────────────────────────────────────────────────────────────

    def get_link_audit(self, repo: PjnRepository, participant_id: str) -> List[LinkAudit]:
        self._participant_or_404(repo, participant_id)
        return (
            repo.query(LinkAudit)
            .filter(LinkAudit.participant_id == participant_id)
            .order_by(LinkAudit.performed_at.desc())
            .all()
        )

    def get_participants_for_case(self, repo: PjnRepository, case_id: str) -> Dict[str, Any]:
        """Participants with their link, plus linked/suggested/unlinked counts."""
        participants = [
            p for p in repo.find_all(CaseParticipant, order_by=CaseParticipant.name, case_id=case_id)
            if p.is_active is not False
        ]
        links = {link.participant_id: link for link in repo.find_all(ParticipantClientLink, case_id=case_id)}

        items: List[Dict[str, Any]] = []
        linked = suggested = unlinked = 0
        for participant in participants:
            link = links.get(participant.id)
            mapping = map_pjn_role(participant.role or "")
            link_data = None
            if link is not None:
                client = repo.get(Client, link.client_id)
                link_data = {
                    "id": link.id,
                    "client_id": link.client_id,
                    "client_name": _client_name(client) if client is not None else None,
                    "local_role": link.local_role,
                    "link_type": link.link_type.value,
                    "confidence": link.confidence,
                    "match_reason": link.match_reason,
                    "confirmed_by": link.confirmed_by,
                    "confirmed_at": link.confirmed_at,
                }
                if link.link_type in (LinkType.AUTO_HIGH_CONFIDENCE, LinkType.CONFIRMED, LinkType.MANUAL):
                    linked += 1
                elif link.link_type == LinkType.AUTO_LOW_CONFIDENCE:
                    suggested += 1
                else:
                    unlinked += 1
            else:
                unlinked += 1

            items.append(
                {
                    "id": participant.id,
                    "pjn_participant_id": participant.pjn_participant_id,
                    "role": participant.role,
                    "name": participant.name,
                    "details": participant.details,
                    "document_type": participant.document_type,
                    "document_number": participant.document_number,
                    "synced_at": participant.synced_at,
                    "link": link_data,
                    "mapped_role": {
                        "local_role": mapping.local_role,
                        "side": mapping.side,
                        "display_name_es": mapping.display_name_es,
                        "raw_role": mapping.raw_role,
                    },
                }
            )

        return {
            "participants": items,
            "summary": {"total": len(items), "linked": linked, "suggested": suggested, "unlinked": unlinked},
        }


matching_service = MatchingService()
