"""Duplicate detection within one target entity type.

Each entity type registers a :class:`Matcher` in a :class:`MatcherRegistry`.
Records are grouped into blocks (exact normalized key, plus name prefixes
for fuzzy key fields) and only pairs sharing a block are scored, so the
detector never builds the full cross product of a table.

Confidence is ``1.0`` for an exact normalized match on every key field.
Any other pair scores ``0.9 * agreeing / compared`` over key and secondary
fields, which stays below ``1.0`` and never drops when another field agrees.

Detection is read-only. Candidates become ``duplicate`` discrepancies only
when a caller promotes them with :func:`candidate_to_draft`.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Protocol

from rapidfuzz import fuzz
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.models import DiscrepancyType, Severity
from src.reconciliation.entities import EntityRegistry, EntityTarget, default_registry
from src.reconciliation.store import DiscrepancyDraft, storage_guard

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]

EXACT_CONFIDENCE = 1.0
PARTIAL_CEILING = 0.9
FUZZY_PREFIX_LENGTH = 3


@dataclass(frozen=True)
class DuplicateCandidate:
    """A possible duplicate pair. Never persisted on its own."""

    entity_type: str
    entity_a_id: str
    entity_b_id: str
    match_confidence: float
    matched_fields: list[str] = field(default_factory=list)
    entity_a_label: str | None = None
    entity_b_label: str | None = None


def normalize_value(value: Any) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if value is None:
        return ""
    return " ".join(str(value).split()).lower()


class Matcher(Protocol):
    """Per-entity matching strategy."""

    @property
    def fields(self) -> tuple[str, ...]: ...

    def normalize(self, record: Record) -> tuple[str, ...]: ...

    def blocks(self, record: Record) -> list[tuple[str, ...]]: ...

    def score(self, a: Record, b: Record) -> tuple[float, list[str]]: ...

    def label(self, record: Record) -> str: ...


@dataclass(frozen=True)
class FieldMatcher:
    """Compare normalized key fields, with optional secondary and fuzzy fields.

    Args:
        key_fields: Fields identifying a record; exact agreement on all of
            them is a certain duplicate.
        secondary_fields: Supporting fields that raise partial confidence.
        fuzzy_fields: Key fields that also agree on a rapidfuzz token-sort
            similarity of at least ``fuzzy_threshold``.
        fuzzy_threshold: Similarity cut-off on rapidfuzz's 0-100 scale.
    """

    key_fields: tuple[str, ...]
    secondary_fields: tuple[str, ...] = ()
    fuzzy_fields: tuple[str, ...] = ()
    fuzzy_threshold: float = 90.0

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys((*self.key_fields, *self.secondary_fields)))

    def normalize(self, record: Record) -> tuple[str, ...]:
        return tuple(normalize_value(record.get(name)) for name in self.key_fields)

    def blocks(self, record: Record) -> list[tuple[str, ...]]:
        key = self.normalize(record)
        result: list[tuple[str, ...]] = []
        if all(key):
            result.append(("key", *key))
        for name in self.fuzzy_fields:
            value = normalize_value(record.get(name))
            if value:
                result.append(("prefix", name, value[:FUZZY_PREFIX_LENGTH]))
        return result

    def _agrees(self, name: str, a: Record, b: Record, *, fuzzy: bool) -> bool:
        left = normalize_value(a.get(name))
        right = normalize_value(b.get(name))
        if not left or not right:
            return False
        if left == right:
            return True
        return fuzzy and fuzz.token_sort_ratio(left, right) >= self.fuzzy_threshold

    def score(self, a: Record, b: Record) -> tuple[float, list[str]]:
        secondary = [name for name in self.secondary_fields if self._agrees(name, a, b, fuzzy=False)]

        key_a = self.normalize(a)
        if all(key_a) and key_a == self.normalize(b):
            return EXACT_CONFIDENCE, [*self.key_fields, *secondary]

        keys = [name for name in self.key_fields if self._agrees(name, a, b, fuzzy=name in self.fuzzy_fields)]
        matched = keys + secondary
        compared = len(self.key_fields) + len(self.secondary_fields)
        return PARTIAL_CEILING * len(matched) / compared, matched

    def label(self, record: Record) -> str:
        keys = " / ".join(str(record.get(name) or "") for name in self.key_fields)
        if not self.secondary_fields:
            return keys
        extra = ", ".join(str(record.get(name) or "N/A") for name in self.secondary_fields)
        return f"{keys} ({extra})"


class MatcherRegistry:
    """Matchers keyed by canonical entity type."""

    def __init__(self, matchers: Mapping[str, Matcher] | None = None) -> None:
        self._matchers: dict[str, Matcher] = {}
        for entity_type, matcher in (matchers or {}).items():
            self.register(entity_type, matcher)

    def register(self, entity_type: str, matcher: Matcher) -> None:
        self._matchers[entity_type.lower()] = matcher

    def get(self, entity_type: str) -> Matcher | None:
        return self._matchers.get(entity_type.lower())

    def names(self) -> list[str]:
        return sorted(self._matchers)

    @classmethod
    def defaults(cls, fuzzy_threshold: float = 90.0) -> MatcherRegistry:
        return cls(
            {
                "customers": FieldMatcher(
                    key_fields=("customer_name",),
                    secondary_fields=("customer_code",),
                    fuzzy_fields=("customer_name",),
                    fuzzy_threshold=fuzzy_threshold,
                ),
                "cars": FieldMatcher(key_fields=("car_number",), secondary_fields=("car_mark",)),
                "contracts": FieldMatcher(key_fields=("lease_number",), secondary_fields=("lease_name",)),
                "invoices": FieldMatcher(key_fields=("invoice_number",), secondary_fields=("vendor_code",)),
                "allocations": FieldMatcher(
                    key_fields=("car_number", "target_month"),
                    secondary_fields=("shop_code",),
                ),
            }
        )


class RecordSource(Protocol):
    """Read access to live target-table rows."""

    async def fetch(self, target: EntityTarget, fields: Sequence[str], limit: int) -> list[dict[str, Any]]: ...


class SqlRecordSource:
    """:class:`RecordSource` reading the target tables with lightweight clauses."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def fetch(self, target: EntityTarget, fields: Sequence[str], limit: int) -> list[dict[str, Any]]:
        tbl = target.clause(*fields)
        columns = [tbl.c[target.id_column], *(tbl.c[name] for name in fields)]
        query = select(*columns).order_by(tbl.c[target.id_column]).limit(limit)
        with storage_guard(f"reading {target.table_name} records"):
            result = await self._session.execute(query)
        return [dict(row) for row in result.mappings().all()]


class DuplicateDetector:
    """Find probable duplicates within one entity type."""

    def __init__(
        self,
        source: RecordSource,
        matchers: MatcherRegistry | None = None,
        settings: Settings | None = None,
        registry: EntityRegistry | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._source = source
        self._matchers = matchers or MatcherRegistry.defaults(self._settings.duplicate_fuzzy_threshold)
        self._registry = registry or default_registry()

    def supports(self, entity_type: str) -> bool:
        target = self._registry.get(entity_type)
        return target is not None and self._matchers.get(target.name) is not None

    async def detect_duplicates(self, entity_type: str) -> list[DuplicateCandidate]:
        """Return candidate pairs ordered by confidence, highest first.

        Unknown entity types and tables with fewer than two rows yield an
        empty list.
        """
        target = self._registry.get(entity_type)
        matcher = self._matchers.get(target.name) if target else None
        if target is None or matcher is None:
            logger.info("No duplicate matcher registered for entity type %s", entity_type)
            return []

        records = await self._source.fetch(target, matcher.fields, self._settings.duplicate_scan_limit)
        if len(records) < 2:
            return []
        if len(records) >= self._settings.duplicate_scan_limit:
            logger.warning(
                "Duplicate scan for %s truncated at %d records",
                target.name,
                self._settings.duplicate_scan_limit,
            )

        blocks: dict[tuple[str, ...], list[int]] = defaultdict(list)
        for index, record in enumerate(records):
            for block in matcher.blocks(record):
                blocks[block].append(index)

        pairs: set[tuple[int, int]] = set()
        for members in blocks.values():
            pairs.update(combinations(members, 2))

        candidates: list[DuplicateCandidate] = []
        for i, j in pairs:
            confidence, matched = matcher.score(records[i], records[j])
            if confidence <= 0.0 or confidence < self._settings.duplicate_min_confidence:
                continue
            a, b = records[i], records[j]
            if str(a[target.id_column]) > str(b[target.id_column]):
                a, b = b, a
            candidates.append(
                DuplicateCandidate(
                    entity_type=target.name,
                    entity_a_id=str(a[target.id_column]),
                    entity_b_id=str(b[target.id_column]),
                    match_confidence=round(confidence, 4),
                    matched_fields=matched,
                    entity_a_label=matcher.label(a),
                    entity_b_label=matcher.label(b),
                )
            )

        candidates.sort(key=lambda c: (-c.match_confidence, c.entity_a_id, c.entity_b_id))
        limited = candidates[: self._settings.duplicate_pair_limit]
        logger.info(
            "Duplicate scan for %s: records=%d pairs=%d candidates=%d",
            target.name,
            len(records),
            len(pairs),
            len(limited),
        )
        return limited


def candidate_to_draft(
    candidate: DuplicateCandidate,
    severity: Severity = Severity.WARNING,
    run_id: str | None = None,
) -> DiscrepancyDraft:
    """Build a ``duplicate`` discrepancy draft from a detected candidate."""
    return DiscrepancyDraft(
        run_id=run_id,
        entity_type=candidate.entity_type,
        entity_id=candidate.entity_a_id,
        discrepancy_type=DiscrepancyType.DUPLICATE,
        severity=severity,
        field_name=",".join(candidate.matched_fields) or None,
        source_value=candidate.entity_a_label,
        target_value=candidate.entity_b_label,
        details={
            "entity_a_id": candidate.entity_a_id,
            "entity_b_id": candidate.entity_b_id,
            "match_confidence": candidate.match_confidence,
            "matched_fields": list(candidate.matched_fields),
        },
    )
