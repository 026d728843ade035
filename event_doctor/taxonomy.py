"""
Shared event-doctor vocabulary.

Canonical categories, target fields and field-error definitions live here so
the materializer, the CLI and the reconcilers do not drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class InterventionType(str, Enum):
    # Case-specific types
    HOME_VISIT = "Visita Domiciliaria"
    PHONE_CALL = "Llamada Telefónica"
    MEETING = "Entrevista"
    WORKSHOP = "Taller"
    ADMINISTRATIVE = "Gestión Administrativa"
    COORDINATION = "Coordinación"
    PSYCHOLOGICAL_SUPPORT = "Apoyo Psicológico"
    GROUP_SESSION = "Sesión Grupal"
    ACCOMPANIMENT = "Acompañamiento Externo"
    OTHER = "Otro"

    # General types
    REUNION = "Reunión"
    ASSESSMENT_INTERVIEW = "Entrevista de Valoración"
    ELABORAR_MEMORIA = "Elaborar Memoria"
    ELABORAR_DOCUMENTO = "Elaborar Documento"
    FIESTA = "Fiesta"
    VACACIONES = "Vacaciones"
    VIAJE = "Viaje"
    CURSO_FORMACION = "Curso de Formación"


class InterventionStatus(str, Enum):
    PLANNED = "Planificada"
    COMPLETED = "Completada"
    CANCELLED = "Anulada"


CANONICAL_CATEGORIES = frozenset(member.value for member in InterventionType)

# Task records share the event table but are reclassified one at a time.
RESERVED_LEGACY_CATEGORIES = frozenset({"Tarea"})


def is_canonical_category(value: str | None) -> bool:
    return value in CANONICAL_CATEGORIES


def sorted_categories() -> list[str]:
    return sorted(CANONICAL_CATEGORIES)


@dataclass(frozen=True)
class TargetField:
    key: str
    label: str
    required: bool
    kind: str  # text | date | bool


TARGET_FIELDS = (
    TargetField("title", "Título", True, "text"),
    TargetField("start", "Fecha de Inicio", True, "date"),
    TargetField("end", "Fecha de Fin", False, "date"),
    TargetField("type", "Tipo de Intervención", True, "text"),
    TargetField("notes", "Notas", False, "text"),
    TargetField("linkedEntityId", "Caso (Nombre o ID)", False, "text"),
    TargetField("isAllDay", "Todo el día (true/false)", False, "bool"),
    TargetField("isRegistered", "Registrado en Cuaderno", False, "bool"),
)
FIELD_KEYS = tuple(field.key for field in TARGET_FIELDS)
FIELDS_BY_KEY = {field.key: field for field in TARGET_FIELDS}
REQUIRED_FIELDS = tuple(field.key for field in TARGET_FIELDS if field.required)
DATE_FIELDS = frozenset(field.key for field in TARGET_FIELDS if field.kind == "date")
BOOL_FIELDS = frozenset(field.key for field in TARGET_FIELDS if field.kind == "bool")


ERROR_DEFINITIONS = {
    "required": {
        "message": "{label} is required.",
        "fields": REQUIRED_FIELDS,
    },
    "invalid-date": {
        "message": "Invalid date format.",
        "fields": tuple(sorted(DATE_FIELDS)),
    },
    "end-before-start": {
        "message": "End date cannot be earlier than the start date.",
        "fields": ("end",),
    },
}


def field_label(field: str) -> str:
    target = FIELDS_BY_KEY.get(field)
    return target.label if target else field


def error_message(code: str, field: str) -> str:
    definition = ERROR_DEFINITIONS[code]
    return definition["message"].format(label=field_label(field))
