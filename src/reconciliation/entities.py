"""Registry of target-system entity tables that can be reconciled.

Each entry maps an entity type (as stored on discrepancies, e.g. ``cars``)
to the RailSync table holding it and the natural key the source system
identifies rows by. Migration runs may name entity types in singular form
(``car``), so entries also carry aliases.

Target tables belong to other parts of the platform; they are addressed
with lightweight ``table()`` constructs rather than ORM models.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from sqlalchemy import DateTime, column, table
from sqlalchemy.sql.expression import TableClause


@dataclass(frozen=True)
class EntityTarget:
    """Where an entity type lives in the target system."""

    name: str
    table_name: str
    natural_key: str
    aliases: tuple[str, ...] = ()
    id_column: str = "id"
    created_column: str = "created_at"

    def clause(self, *columns: str) -> TableClause:
        """Return a table clause exposing the key columns plus ``columns``."""
        names = dict.fromkeys((self.id_column, self.natural_key, self.created_column, *columns))
        return table(
            self.table_name,
            *(column(name, DateTime(timezone=True)) if name == self.created_column else column(name) for name in names),
        )


class EntityRegistry:
    """Lookup of entity targets by name or alias (case-insensitive)."""

    def __init__(self, targets: Iterable[EntityTarget] = ()) -> None:
        self._targets: dict[str, EntityTarget] = {}
        self._aliases: dict[str, str] = {}
        for target in targets:
            self.register(target)

    def register(self, target: EntityTarget) -> None:
        name = target.name.lower()
        self._targets[name] = target
        self._aliases[name] = name
        for alias in target.aliases:
            self._aliases[alias.lower()] = name

    def get(self, entity_type: str) -> EntityTarget | None:
        name = self._aliases.get(entity_type.strip().lower())
        return self._targets.get(name) if name else None

    def __contains__(self, entity_type: object) -> bool:
        return isinstance(entity_type, str) and self.get(entity_type) is not None

    def __iter__(self) -> Iterator[EntityTarget]:
        return iter(self._targets.values())

    def names(self) -> list[str]:
        return sorted(self._targets)


DEFAULT_TARGETS: tuple[EntityTarget, ...] = (
    EntityTarget(name="cars", table_name="cars", natural_key="car_number", aliases=("car",)),
    EntityTarget(name="customers", table_name="customers", natural_key="customer_code", aliases=("customer",)),
    EntityTarget(name="contracts", table_name="master_leases", natural_key="lease_number", aliases=("contract",)),
    EntityTarget(name="invoices", table_name="invoices", natural_key="invoice_number", aliases=("invoice",)),
    EntityTarget(name="allocations", table_name="allocations", natural_key="car_number", aliases=("allocation",)),
)


def default_registry() -> EntityRegistry:
    """Registry of the RailSync tables populated by the migration pipeline."""
    return EntityRegistry(DEFAULT_TARGETS)
