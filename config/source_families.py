"""Source family configuration for the production database tables.

Production tables are created dynamically (one table per line, shift or
export batch) so the application never names them directly.  Instead each
table is assigned to a *source family* by matching its name against a
pattern.  The family records which physical columns hold the canonical
event fields (the unit identifier is ``ordernum`` in some families and ``PN``
in others) and which reports may read from it.

Deployments can adjust or extend the families through the
``SOURCE_FAMILIES_JSON`` environment variable without touching the
application logic.  Malformed overrides are ignored and the defaults kept.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple

CANONICAL_FIELDS: Tuple[str, ...] = ("unit_id", "datetime", "car_type", "result", "errtype")

UNIT_ROLE = "unit"
DEFECT_ROLE = "defect"
_KNOWN_ROLES = frozenset({UNIT_ROLE, DEFECT_ROLE})


@dataclass(frozen=True)
class SourceFamily:
    """A group of tables sharing a naming convention and column layout."""

    name: str
    table_pattern: str
    fields: Mapping[str, str] = field(default_factory=dict)
    roles: frozenset = frozenset({UNIT_ROLE, DEFECT_ROLE})

    def matches(self, table: str) -> bool:
        return re.search(self.table_pattern, table) is not None

    def column(self, canonical: str) -> str:
        """Return the physical column holding ``canonical`` for this family."""

        return self.fields.get(canonical, canonical)


# Ordered: the first family whose pattern matches a table owns it.
_DEFAULT_SOURCE_FAMILIES: Tuple[SourceFamily, ...] = (
    SourceFamily(
        name="quality",
        table_pattern=r"^Qualitydata_",
        fields={
            "unit_id": "ordernum",
            "datetime": "datetime",
            "car_type": "cartype",
            "result": "result",
            "errtype": "errtype",
        },
        roles=frozenset({UNIT_ROLE}),
    ),
    SourceFamily(
        name="point",
        table_pattern=r"^Pointdata_",
        fields={
            "unit_id": "ordernum",
            "datetime": "datetime",
            "car_type": "cartype",
            "result": "result",
            "errtype": "errtype",
        },
        roles=frozenset({DEFECT_ROLE}),
    ),
    SourceFamily(
        name="line",
        table_pattern=r".",
        fields={
            "unit_id": "PN",
            "datetime": "datetime",
            "car_type": "carType",
            "result": "result",
            "errtype": "errtype",
        },
        roles=frozenset({UNIT_ROLE, DEFECT_ROLE}),
    ),
)


def _normalise_fields(fields: Any) -> dict[str, str]:
    """Return a canonical-to-column mapping restricted to known fields."""

    if not isinstance(fields, Mapping):
        return {}
    return {
        str(canonical): str(column)
        for canonical, column in fields.items()
        if canonical in CANONICAL_FIELDS and isinstance(column, str) and column
    }


def _normalise_roles(roles: Any) -> frozenset:
    if isinstance(roles, str):
        roles = [roles]
    if not isinstance(roles, (list, tuple)):
        return frozenset(_KNOWN_ROLES)
    selected = {role for role in roles if role in _KNOWN_ROLES}
    return frozenset(selected or _KNOWN_ROLES)


def _parse_family(entry: Any) -> Optional[SourceFamily]:
    if not isinstance(entry, Mapping):
        return None

    name = entry.get("name")
    pattern = entry.get("table_pattern")
    if not isinstance(name, str) or not name:
        return None
    if not isinstance(pattern, str) or not pattern:
        return None
    try:
        re.compile(pattern)
    except re.error:
        return None

    return SourceFamily(
        name=name,
        table_pattern=pattern,
        fields=_normalise_fields(entry.get("fields", {})),
        roles=_normalise_roles(entry.get("roles")),
    )


def load_source_families(raw: str | None = None) -> Tuple[SourceFamily, ...]:
    """Build the family list from ``raw`` JSON (or ``SOURCE_FAMILIES_JSON``).

    Overrides replace a default family with the same name in place; new
    families are inserted ahead of the defaults so that their (usually more
    specific) patterns win over the catch-all family.
    """

    families = list(_DEFAULT_SOURCE_FAMILIES)

    if raw is None:
        raw = os.getenv("SOURCE_FAMILIES_JSON")
    if not raw:
        return tuple(families)

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return tuple(families)

    if not isinstance(parsed, list):
        return tuple(families)

    added: List[SourceFamily] = []
    for entry in parsed:
        family = _parse_family(entry)
        if family is None:
            continue
        for index, existing in enumerate(families):
            if existing.name == family.name:
                families[index] = family
                break
        else:
            added.append(family)

    return tuple(added + families)


def family_for_table(
    table: str, families: Iterable[SourceFamily]
) -> Optional[SourceFamily]:
    """Return the first family whose pattern matches ``table``."""

    for family in families:
        if family.matches(table):
            return family
    return None


def families_with_role(
    families: Iterable[SourceFamily], role: str | Iterable[str]
) -> Tuple[SourceFamily, ...]:
    """Return the families serving ``role`` (or any of several roles)."""

    wanted = {role} if isinstance(role, str) else set(role)
    return tuple(family for family in families if family.roles & wanted)


def field_name(family: SourceFamily, canonical: str) -> str:
    """Return the physical column ``family`` uses for ``canonical``."""

    return family.column(canonical)
