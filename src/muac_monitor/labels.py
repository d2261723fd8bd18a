"""Get-or-create resolution of severity tags and recommendations.

Both label kinds go through :func:`create_or_fetch`: look the label up by
severity code, create it from a fixed template when missing, and if the create
loses a race against a concurrent writer (unique constraint), read once more
and return the row the other writer stored.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import re
from typing import Any, Generic, Protocol, TypeVar
import unicodedata
import uuid

from sqlalchemy.exc import SQLAlchemyError

from .classifier import (
    CODE_FOLLOW_UP,
    CODE_MODERATE,
    CODE_NORMAL,
    CODE_SEVERE,
    COLOR_BLUE,
    COLOR_GRAY,
    COLOR_GREEN,
    COLOR_RED,
    COLOR_YELLOW,
    DEFAULT_THRESHOLDS,
    PRIORITY_ATTENTION,
    PRIORITY_NORMAL,
    PRIORITY_URGENT,
    SEVERITY_CODES,
    Classification,
    ClassificationThresholds,
)
from .errors import ConflictError, StorageError
from .models import Recommendation, SeverityTag
from .observability import log_event

logger = logging.getLogger("muac_monitor.labels")

LabelT = TypeVar("LabelT")


class LabelStore(Protocol):
    """Storage consumed by the resolver for one label kind.

    Stores may additionally expose ``list_active_by_code(code)``; when they do
    the resolver uses it first and scans active rows by name only on a miss.
    """

    def list_active(self) -> list[Any]: ...

    def create(self, label: Any) -> Any: ...

    def update(self, label: Any) -> Any: ...


@dataclass(frozen=True)
class ResolvedLabel(Generic[LabelT]):
    """Label returned by the resolver and how it was obtained."""

    label: LabelT
    created: bool = False
    recovered_conflict: bool = False


@dataclass(frozen=True)
class TagTemplate:
    name: str
    description: str
    color: str
    priority: int


@dataclass(frozen=True)
class RecommendationTemplate:
    name: str
    body: str
    color: str
    priority: int
    min_value: float | None
    max_value: float | None


_MARKUP_RE = re.compile(r"<[^>]*>|[*_`~#]+")
_SPACE_RE = re.compile(r"\s+")


def normalize_label_name(name: str | None) -> str:
    """Reduce a label name to a comparable form.

    Strips HTML/markdown markup, emoji and other symbols, collapses whitespace
    and case-folds, so ``"🚨 **RED ALERT** "`` and ``"red alert"`` compare equal.
    """

    if not name:
        return ""
    text = _MARKUP_RE.sub(" ", name)
    kept = []
    for char in text:
        category = unicodedata.category(char)
        if category[0] in ("L", "N") or char in "-.,:<>=≥%()/":
            kept.append(char)
        else:
            kept.append(" ")
    return _SPACE_RE.sub(" ", "".join(kept)).strip().casefold()


def threshold_text(min_value: float | None, max_value: float | None) -> str:
    if min_value is None and max_value is None:
        return "All measurements"
    if min_value is None:
        return f"< {max_value:.1f} cm"
    if max_value is None:
        return f"≥ {min_value:.1f} cm"
    return f"{min_value:.1f} - {max_value:.1f} cm"


def tag_template(severity_code: str, thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS) -> TagTemplate:
    if severity_code == CODE_SEVERE:
        return TagTemplate(
            name="🚨 RED ALERT",
            description=(
                f"Severe acute malnutrition (SAM) - < {thresholds.severe_threshold:.1f} cm - "
                "requires urgent attention"
            ),
            color=COLOR_RED,
            priority=PRIORITY_URGENT,
        )
    if severity_code == CODE_MODERATE:
        return TagTemplate(
            name="🟡 YELLOW ALERT",
            description=(
                f"Moderate acute malnutrition (MAM) - {thresholds.severe_threshold:.1f}-"
                f"{thresholds.moderate_threshold:.1f} cm - requires follow-up"
            ),
            color=COLOR_YELLOW,
            priority=PRIORITY_ATTENTION,
        )
    if severity_code == CODE_NORMAL:
        return TagTemplate(
            name="✅ GREEN ZONE",
            description=(
                f"Adequate nutritional status - ≥ {thresholds.normal_threshold:.1f} cm - keep current care"
            ),
            color=COLOR_GREEN,
            priority=PRIORITY_NORMAL,
        )
    if severity_code == CODE_FOLLOW_UP:
        return TagTemplate(
            name="📋 FOLLOW-UP",
            description="Patient under post-intervention nutritional follow-up",
            color=COLOR_BLUE,
            priority=PRIORITY_NORMAL,
        )
    return TagTemplate(
        name="⚪ UNCLASSIFIED",
        description="Measurement without a specific MUAC classification",
        color=COLOR_GRAY,
        priority=PRIORITY_NORMAL,
    )


def recommendation_template(
    severity_code: str, thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS
) -> RecommendationTemplate:
    if severity_code == CODE_SEVERE:
        return RecommendationTemplate(
            name="🚨 RED ALERT - Urgent Action Required",
            body=(
                "This measurement indicates SEVERE ACUTE MALNUTRITION (SAM). Refer the child to the "
                "nearest health facility today for clinical assessment and therapeutic feeding. "
                "Check for oedema and danger signs, and keep breastfeeding if the child is under two."
            ),
            color=COLOR_RED,
            priority=PRIORITY_URGENT,
            min_value=None,
            max_value=thresholds.severe_threshold,
        )
    if severity_code == CODE_MODERATE:
        return RecommendationTemplate(
            name="🟡 YELLOW ALERT - Nutritional Risk Zone",
            body=(
                "The child is at NUTRITIONAL RISK (MAM). Add an extra energy-dense meal per day, "
                "include animal-source foods and legumes, and measure again within two weeks."
            ),
            color=COLOR_YELLOW,
            priority=PRIORITY_ATTENTION,
            min_value=thresholds.severe_threshold,
            max_value=thresholds.normal_threshold,
        )
    if severity_code == CODE_NORMAL:
        return RecommendationTemplate(
            name="✅ GREEN ZONE - Adequate Nutritional Status",
            body=(
                "The child has an ADEQUATE NUTRITIONAL STATUS. Keep a varied diet and measure again "
                "at the next routine visit."
            ),
            color=COLOR_GREEN,
            priority=PRIORITY_NORMAL,
            min_value=thresholds.normal_threshold,
            max_value=None,
        )
    return RecommendationTemplate(
        name="📋 General Follow-up",
        body="Measurement recorded. Continue with the established follow-up protocol.",
        color=COLOR_GRAY if severity_code != CODE_FOLLOW_UP else COLOR_BLUE,
        priority=PRIORITY_NORMAL,
        min_value=None,
        max_value=None,
    )


def build_tag(severity_code: str, thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS) -> SeverityTag:
    template = tag_template(severity_code, thresholds)
    return SeverityTag(
        id=str(uuid.uuid4()),
        name=template.name,
        description=template.description,
        color=template.color,
        severity_code=severity_code,
        priority=template.priority,
        active=True,
    )


def build_recommendation(
    severity_code: str, thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS
) -> Recommendation:
    template = recommendation_template(severity_code, thresholds)
    return Recommendation(
        id=str(uuid.uuid4()),
        name=template.name,
        body=template.body,
        threshold_text=threshold_text(template.min_value, template.max_value),
        min_value=template.min_value,
        max_value=template.max_value,
        priority=template.priority,
        color=template.color,
        severity_code=severity_code,
        active=True,
    )


def create_or_fetch(
    lookup: Callable[[], LabelT | None],
    factory: Callable[[], LabelT],
    create: Callable[[LabelT], LabelT],
) -> ResolvedLabel[LabelT]:
    """Return the label found by ``lookup``, creating it when absent.

    A ``ConflictError`` from ``create`` means another writer stored the label
    first; the lookup is repeated once. If that retry still finds nothing the
    store is inconsistent and ``StorageError`` is raised.
    """

    existing = lookup()
    if existing is not None:
        return ResolvedLabel(existing)

    try:
        return ResolvedLabel(create(factory()), created=True)
    except ConflictError as exc:
        existing = lookup()
        if existing is None:
            raise StorageError("label creation conflicted but no existing label was found") from exc
        return ResolvedLabel(existing, recovered_conflict=True)


class LabelResolver:
    """Resolves the severity tag and recommendation for a classification."""

    def __init__(
        self,
        *,
        tag_store: LabelStore,
        recommendation_store: LabelStore,
        thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS,
    ) -> None:
        self._tag_store = tag_store
        self._recommendation_store = recommendation_store
        self._thresholds = thresholds

    def resolve_tag(self, classification: Classification | str) -> ResolvedLabel[SeverityTag]:
        code = _code_of(classification)
        canonical_name = tag_template(code, self._thresholds).name
        resolved = create_or_fetch(
            lambda: self._lookup(self._tag_store, code, canonical_name),
            lambda: build_tag(code, self._thresholds),
            self._tag_store.create,
        )
        self._log_resolution("severity_tag", code, resolved)
        return resolved

    def resolve_recommendation(
        self, classification: Classification | str, value: float | None = None
    ) -> ResolvedLabel[Recommendation]:
        code = _code_of(classification)
        canonical_name = recommendation_template(code, self._thresholds).name
        resolved = create_or_fetch(
            lambda: self._lookup(self._recommendation_store, code, canonical_name, value=value),
            lambda: build_recommendation(code, self._thresholds),
            self._recommendation_store.create,
        )
        self._log_resolution("recommendation", code, resolved)
        return resolved

    def _lookup(self, store: LabelStore, code: str, canonical_name: str, *, value: float | None = None):
        by_code = getattr(store, "list_active_by_code", None)
        active = None
        if by_code is not None:
            found = _prefer_applicable(by_code(code), value)
        else:
            active = store.list_active()
            found = _prefer_applicable([row for row in active if row.severity_code == code], value)
        if found is not None:
            return found

        # Legacy rows predating severity codes are matched by canonical name.
        wanted = normalize_label_name(canonical_name)
        for row in active if active is not None else store.list_active():
            if row.severity_code or normalize_label_name(row.name) != wanted:
                continue
            self._backfill_code(store, row, code)
            return row
        return None

    @staticmethod
    def _backfill_code(store: LabelStore, row, code: str) -> None:
        row.severity_code = code
        try:
            store.update(row)
        except (ConflictError, SQLAlchemyError) as exc:
            log_event(
                logger,
                "label_code_backfill_failed",
                level=logging.WARNING,
                label_id=getattr(row, "id", None),
                severity_code=code,
                error=str(exc),
            )

    @staticmethod
    def _log_resolution(kind: str, code: str, resolved: ResolvedLabel) -> None:
        if resolved.created:
            log_event(logger, "label_created", kind=kind, severity_code=code, label_id=resolved.label.id)
        elif resolved.recovered_conflict:
            log_event(
                logger,
                "label_conflict_recovered",
                level=logging.WARNING,
                kind=kind,
                severity_code=code,
                label_id=resolved.label.id,
            )


def _code_of(classification: Classification | str) -> str:
    if isinstance(classification, Classification):
        return classification.severity_code
    return classification


def _prefer_applicable(rows: list, value: float | None):
    if not rows:
        return None
    if value is not None:
        for row in rows:
            is_applicable = getattr(row, "is_applicable", None)
            if is_applicable is not None and is_applicable(value):
                return row
    return rows[0]


def backfill_label_codes(
    store: LabelStore,
    template_name: Callable[[str], str],
) -> int:
    """Assign severity codes to legacy active rows matched by template name.

    Returns the number of rows updated. Meant to run once as a data migration.
    """

    names = {normalize_label_name(template_name(code)): code for code in SEVERITY_CODES}
    rows = store.list_active()
    taken = {row.severity_code for row in rows if row.severity_code}
    updated = 0
    for row in rows:
        if row.severity_code:
            continue
        code = names.get(normalize_label_name(row.name))
        if code is None or code in taken:
            continue
        row.severity_code = code
        store.update(row)
        taken.add(code)
        updated += 1
        log_event(logger, "label_code_backfilled", label_id=row.id, severity_code=code)
    return updated


def seed_default_labels(resolver: LabelResolver) -> dict[str, int]:
    """Make sure a tag and a recommendation exist for every severity code."""

    created = {"severity_tags": 0, "recommendations": 0}
    for code in SEVERITY_CODES:
        if resolver.resolve_tag(code).created:
            created["severity_tags"] += 1
        if resolver.resolve_recommendation(code).created:
            created["recommendations"] += 1
    return created
