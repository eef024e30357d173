"""
Maps PJN interviniente role labels to local client roles.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List

ACTOR_SIDE = "ACTOR_SIDE"
DEMANDADO_SIDE = "DEMANDADO_SIDE"
NEUTRAL = "NEUTRAL"
JUDICIAL = "JUDICIAL"

PARTY_ROLES = ("ACTOR", "DEMANDADO", "QUERELLANTE", "IMPUTADO", "TERCERO")
ATTORNEY_ROLES = ("ABOGADO_ACTOR", "ABOGADO_DEMANDADO", "DEFENSOR")
JUDICIAL_ROLES = ("JUEZ", "FISCAL")


@dataclass(frozen=True)
class RoleMapping:
    local_role: str
    side: str
    display_name: str
    display_name_es: str
    raw_role: str = ""


def _m(local_role: str, side: str, display_name: str, display_name_es: str) -> RoleMapping:
    return RoleMapping(local_role, side, display_name, display_name_es)


# Keys are uppercase, trimmed PJN labels.
PJN_ROLE_MAPPING: Dict[str, RoleMapping] = {
    # Actor side
    "ACTOR": _m("ACTOR", ACTOR_SIDE, "Plaintiff", "Actor"),
    "ACTORA": _m("ACTOR", ACTOR_SIDE, "Plaintiff", "Actora"),
    "PARTE ACTORA": _m("ACTOR", ACTOR_SIDE, "Plaintiff", "Parte Actora"),
    "QUERELLANTE": _m("QUERELLANTE", ACTOR_SIDE, "Private Prosecutor", "Querellante"),
    "DENUNCIANTE": _m("ACTOR", ACTOR_SIDE, "Complainant", "Denunciante"),
    "RECLAMANTE": _m("ACTOR", ACTOR_SIDE, "Claimant", "Reclamante"),
    "DEMANDANTE": _m("ACTOR", ACTOR_SIDE, "Plaintiff", "Demandante"),
    "ABOGADO ACTOR": _m("ABOGADO_ACTOR", ACTOR_SIDE, "Plaintiff's Attorney", "Abogado Actor"),
    "ABOGADO ACTORA": _m("ABOGADO_ACTOR", ACTOR_SIDE, "Plaintiff's Attorney", "Abogado Actora"),
    "ABOGADO DE LA PARTE ACTORA": _m("ABOGADO_ACTOR", ACTOR_SIDE, "Plaintiff's Attorney", "Abogado de la Parte Actora"),
    "ABOGADO QUERELLANTE": _m("ABOGADO_ACTOR", ACTOR_SIDE, "Prosecutor's Attorney", "Abogado Querellante"),
    "APODERADO ACTOR": _m("ABOGADO_ACTOR", ACTOR_SIDE, "Plaintiff's Representative", "Apoderado Actor"),
    "LETRADO ACTOR": _m("ABOGADO_ACTOR", ACTOR_SIDE, "Plaintiff's Lawyer", "Letrado Actor"),
    "PATROCINANTE ACTOR": _m("ABOGADO_ACTOR", ACTOR_SIDE, "Sponsoring Attorney (Plaintiff)", "Patrocinante Actor"),
    # Defendant side
    "DEMANDADO": _m("DEMANDADO", DEMANDADO_SIDE, "Defendant", "Demandado"),
    "DEMANDADA": _m("DEMANDADO", DEMANDADO_SIDE, "Defendant", "Demandada"),
    "PARTE DEMANDADA": _m("DEMANDADO", DEMANDADO_SIDE, "Defendant", "Parte Demandada"),
    "IMPUTADO": _m("IMPUTADO", DEMANDADO_SIDE, "Accused", "Imputado"),
    "IMPUTADA": _m("IMPUTADO", DEMANDADO_SIDE, "Accused", "Imputada"),
    "ACUSADO": _m("IMPUTADO", DEMANDADO_SIDE, "Accused", "Acusado"),
    "ACUSADA": _m("IMPUTADO", DEMANDADO_SIDE, "Accused", "Acusada"),
    "PROCESADO": _m("IMPUTADO", DEMANDADO_SIDE, "Indicted", "Procesado"),
    "ABOGADO DEMANDADO": _m("ABOGADO_DEMANDADO", DEMANDADO_SIDE, "Defendant's Attorney", "Abogado Demandado"),
    "ABOGADO DEMANDADA": _m("ABOGADO_DEMANDADO", DEMANDADO_SIDE, "Defendant's Attorney", "Abogado Demandada"),
    "ABOGADO DE LA PARTE DEMANDADA": _m("ABOGADO_DEMANDADO", DEMANDADO_SIDE, "Defendant's Attorney", "Abogado de la Parte Demandada"),
    "APODERADO DEMANDADO": _m("ABOGADO_DEMANDADO", DEMANDADO_SIDE, "Defendant's Representative", "Apoderado Demandado"),
    "LETRADO DEMANDADO": _m("ABOGADO_DEMANDADO", DEMANDADO_SIDE, "Defendant's Lawyer", "Letrado Demandado"),
    "PATROCINANTE DEMANDADO": _m("ABOGADO_DEMANDADO", DEMANDADO_SIDE, "Sponsoring Attorney (Defendant)", "Patrocinante Demandado"),
    "DEFENSOR": _m("DEFENSOR", DEMANDADO_SIDE, "Public Defender", "Defensor"),
    "DEFENSOR OFICIAL": _m("DEFENSOR", DEMANDADO_SIDE, "Official Public Defender", "Defensor Oficial"),
    "DEFENSOR PARTICULAR": _m("ABOGADO_DEMANDADO", DEMANDADO_SIDE, "Private Defense Attorney", "Defensor Particular"),
    # Third parties
    "TERCERO": _m("TERCERO", NEUTRAL, "Third Party", "Tercero"),
    "TERCERO CITADO": _m("TERCERO", NEUTRAL, "Summoned Third Party", "Tercero Citado"),
    "TERCERO INTERESADO": _m("TERCERO", NEUTRAL, "Interested Third Party", "Tercero Interesado"),
    "CITADO EN GARANTIA": _m("TERCERO", NEUTRAL, "Guarantor", "Citado en Garantía"),
    "ASEGURADORA": _m("TERCERO", NEUTRAL, "Insurance Company", "Aseguradora"),
    "ART": _m("TERCERO", NEUTRAL, "Workers' Comp Insurer", "ART"),
    # Judicial / prosecution
    "JUEZ": _m("JUEZ", JUDICIAL, "Judge", "Juez"),
    "JUEZA": _m("JUEZ", JUDICIAL, "Judge", "Jueza"),
    "MAGISTRADO": _m("JUEZ", JUDICIAL, "Magistrate", "Magistrado"),
    "FISCAL": _m("FISCAL", JUDICIAL, "Prosecutor", "Fiscal"),
    "FISCAL GENERAL": _m("FISCAL", JUDICIAL, "Attorney General", "Fiscal General"),
    "MINISTERIO PUBLICO": _m("FISCAL", JUDICIAL, "Public Ministry", "Ministerio Público"),
    "MINISTERIO PUBLICO FISCAL": _m("FISCAL", JUDICIAL, "Public Prosecutor's Office", "Ministerio Público Fiscal"),
    # Experts and witnesses
    "PERITO": _m("PERITO", NEUTRAL, "Expert Witness", "Perito"),
    "PERITO MEDICO": _m("PERITO", NEUTRAL, "Medical Expert", "Perito Médico"),
    "PERITO CONTADOR": _m("PERITO", NEUTRAL, "Accounting Expert", "Perito Contador"),
    "PERITO CALIGRAFO": _m("PERITO", NEUTRAL, "Handwriting Expert", "Perito Calígrafo"),
    "TESTIGO": _m("TESTIGO", NEUTRAL, "Witness", "Testigo"),
    # Attorneys whose side the portal does not state
    "ABOGADO": _m("OTRO", NEUTRAL, "Attorney", "Abogado"),
    "ABOGADA": _m("OTRO", NEUTRAL, "Attorney", "Abogada"),
    "LETRADO": _m("OTRO", NEUTRAL, "Lawyer", "Letrado"),
    "APODERADO": _m("OTRO", NEUTRAL, "Representative", "Apoderado"),
    "PATROCINANTE": _m("OTRO", NEUTRAL, "Sponsoring Attorney", "Patrocinante"),
}

DEFAULT_ROLE_MAPPING = _m("OTRO", NEUTRAL, "Other", "Otro")


def map_pjn_role(pjn_role: str) -> RoleMapping:
    mapping = PJN_ROLE_MAPPING.get((pjn_role or "").strip().upper(), DEFAULT_ROLE_MAPPING)
    return replace(mapping, raw_role=pjn_role or "")


def get_roles_by_side(side: str) -> List[str]:
    return [label for label, mapping in PJN_ROLE_MAPPING.items() if mapping.side == side]


def is_party_role(local_role: str) -> bool:
    return local_role in PARTY_ROLES


def is_attorney_role(local_role: str) -> bool:
    return local_role in ATTORNEY_ROLES


def is_judicial_role(local_role: str) -> bool:
    return local_role in JUDICIAL_ROLES
