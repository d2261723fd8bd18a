"""Tests for idempotent severity tag and recommendation resolution."""

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from muac_monitor.classifier import CODE_MODERATE, CODE_NORMAL, CODE_SEVERE, classify
from muac_monitor.errors import ConflictError, StorageError
from muac_monitor.labels import (
    LabelResolver,
    backfill_label_codes,
    create_or_fetch,
    normalize_label_name,
    seed_default_labels,
    tag_template,
)
from muac_monitor.migrate import backfill, parse_args
from muac_monitor.models import Recommendation, SeverityTag
from muac_monitor.repositories import RecommendationRepository, SeverityTagRepository


class InMemoryLabelStore:
    """Thread-safe label store enforcing unique names and active codes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rows: list = []
        self.create_calls = 0

    def list_active(self) -> list:
        with self._lock:
            return [row for row in self.rows if row.active]

    def create(self, label):
        with self._lock:
            self.create_calls += 1
            for row in self.rows:
                if row.active and row.name == label.name:
                    raise ConflictError("duplicate name")
                if row.active and label.severity_code and row.severity_code == label.severity_code:
                    raise ConflictError("duplicate active code")
            self.rows.append(label)
            return label

    def update(self, label):
        return label


class CodeLookupStore(InMemoryLabelStore):
    def list_active_by_code(self, severity_code: str) -> list:
        return [row for row in self.list_active() if row.severity_code == severity_code]


class RacingStore(CodeLookupStore):
    """Holds every thread's first lookup until all of them have missed."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self._barrier = threading.Barrier(parties)
        self._local = threading.local()

    def list_active_by_code(self, severity_code: str) -> list:
        rows = super().list_active_by_code(severity_code)
        if not getattr(self._local, "waited", False):
            self._local.waited = True
            self._barrier.wait(timeout=5)
        return rows


class FailingUpdateStore(InMemoryLabelStore):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    def update(self, label):
        raise self.error


class StaleTagRepository(SeverityTagRepository):
    """Misses on the first lookup as if another writer committed meanwhile."""

    def __init__(self, session: Session):
        super().__init__(session)
        self.stale_lookups = 1

    def list_active_by_code(self, severity_code: str) -> list:
        if self.stale_lookups:
            self.stale_lookups -= 1
            return []
        return super().list_active_by_code(severity_code)


def _resolver(tags, recommendations=None) -> LabelResolver:
    return LabelResolver(tag_store=tags, recommendation_store=recommendations or CodeLookupStore())


def test_create_or_fetch_returns_existing_without_creating() -> None:
    created = []
    resolved = create_or_fetch(lambda: "existing", lambda: "new", created.append)
    assert resolved.label == "existing"
    assert not resolved.created
    assert created == []


def test_create_or_fetch_rereads_once_after_conflict() -> None:
    lookups = iter([None, "winner"])

    def create(_label):
        raise ConflictError("taken")

    resolved = create_or_fetch(lambda: next(lookups), lambda: "loser", create)
    assert resolved.label == "winner"
    assert resolved.recovered_conflict
    assert not resolved.created


def test_create_or_fetch_raises_storage_error_when_retry_finds_nothing() -> None:
    def create(_label):
        raise ConflictError("taken")

    with pytest.raises(StorageError):
        create_or_fetch(lambda: None, lambda: "label", create)


def test_resolve_tag_creates_once_then_reuses() -> None:
    tags = CodeLookupStore()
    resolver = _resolver(tags)

    first = resolver.resolve_tag(classify(9.8))
    second = resolver.resolve_tag(CODE_SEVERE)

    assert first.created
    assert not second.created
    assert first.label.id == second.label.id
    assert first.label.name == "🚨 RED ALERT"
    assert first.label.color == "#dc3545"
    assert first.label.priority == 3
    assert len(tags.rows) == 1


def test_concurrent_first_resolutions_store_a_single_tag() -> None:
    workers = 8
    tags = RacingStore(workers)
    resolver = _resolver(tags)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda _: resolver.resolve_tag(CODE_NORMAL), range(workers)))

    assert len(tags.rows) == 1
    assert {result.label.id for result in results} == {tags.rows[0].id}
    assert sum(result.created for result in results) == 1
    assert sum(result.recovered_conflict for result in results) == workers - 1


def test_resolve_recommendation_carries_range_for_moderate_band() -> None:
    recommendations = CodeLookupStore()
    resolver = _resolver(CodeLookupStore(), recommendations)

    resolved = resolver.resolve_recommendation(classify(12.0), 12.0)

    assert resolved.created
    assert resolved.label.severity_code == CODE_MODERATE
    assert resolved.label.min_value == 11.5
    assert resolved.label.max_value == 12.5
    assert resolved.label.threshold_text == "11.5 - 12.5 cm"
    assert resolved.label.is_applicable(12.0)
    assert not resolved.label.is_applicable(12.5)


def test_scan_lookup_matches_legacy_name_and_backfills_code() -> None:
    tags = InMemoryLabelStore()
    legacy = SeverityTag(id="legacy-red", name="**Red Alert** ", color="#dc3545", priority=3, active=True)
    tags.rows.append(legacy)

    resolved = _resolver(tags).resolve_tag(CODE_SEVERE)

    assert resolved.label is legacy
    assert not resolved.created
    assert legacy.severity_code == CODE_SEVERE
    assert tags.create_calls == 0


@pytest.mark.parametrize("error", [ConflictError("update rejected"), SQLAlchemyError("database is locked")])
def test_failed_code_backfill_still_returns_legacy_row(error: Exception) -> None:
    tags = FailingUpdateStore(error)
    legacy = SeverityTag(id="legacy-green", name="green zone", color="#28a745", priority=1, active=True)
    tags.rows.append(legacy)

    resolved = _resolver(tags).resolve_tag(CODE_NORMAL)

    assert resolved.label is legacy
    assert tags.create_calls == 0


def test_normalize_label_name_ignores_markup_emoji_and_case() -> None:
    assert normalize_label_name("🚨 **RED ALERT**") == "red alert"
    assert normalize_label_name("<b>Red   Alert</b>") == "red alert"
    assert normalize_label_name(None) == ""
    assert normalize_label_name(tag_template(CODE_MODERATE).name) == "yellow alert"


def test_sql_conflict_is_recovered_by_rereading(session: Session) -> None:
    existing = _resolver(SeverityTagRepository(session)).resolve_tag(CODE_SEVERE)
    assert existing.created

    stale = StaleTagRepository(session)
    resolved = _resolver(stale).resolve_tag(CODE_SEVERE)

    assert resolved.recovered_conflict
    assert resolved.label.id == existing.label.id
    assert session.scalar(select(func.count(SeverityTag.id))) == 1


def test_deactivated_labels_are_recreated(session: Session) -> None:
    tags = SeverityTagRepository(session)
    recommendations = RecommendationRepository(session)
    resolver = LabelResolver(tag_store=tags, recommendation_store=recommendations)

    old_tag = resolver.resolve_tag(CODE_SEVERE).label
    old_recommendation = resolver.resolve_recommendation(CODE_SEVERE, 10.0).label
    old_tag.active = False
    tags.update(old_tag)
    old_recommendation.active = False
    recommendations.update(old_recommendation)

    tag = resolver.resolve_tag(CODE_SEVERE)
    recommendation = resolver.resolve_recommendation(CODE_SEVERE, 10.0)

    assert tag.created
    assert tag.label.id != old_tag.id
    assert tag.label.name == old_tag.name
    assert tag.label.active
    assert recommendation.created
    assert recommendation.label.id != old_recommendation.id
    assert session.scalar(select(func.count(SeverityTag.id))) == 2
    assert [row.id for row in tags.list_active()] == [tag.label.id]


def test_sql_legacy_row_without_code_is_reused_and_backfilled(session: Session) -> None:
    session.add(SeverityTag(id="legacy-red", name="🚨 RED ALERT", color="#dc3545", priority=3, active=True))
    session.commit()
    tags = SeverityTagRepository(session)

    resolved = _resolver(tags).resolve_tag(CODE_SEVERE)

    assert resolved.label.id == "legacy-red"
    assert not resolved.created
    assert session.scalar(select(func.count(SeverityTag.id))) == 1
    assert [row.id for row in tags.list_active_by_code(CODE_SEVERE)] == ["legacy-red"]


def test_name_fallback_ignores_rows_coded_for_another_severity() -> None:
    tags = CodeLookupStore()
    tags.rows.append(
        SeverityTag(
            id="odd",
            name="RED ALERT",
            severity_code=CODE_MODERATE,
            color="#ffc107",
            priority=2,
            active=True,
        )
    )

    resolved = _resolver(tags).resolve_tag(CODE_SEVERE)

    assert resolved.created
    assert resolved.label.id != "odd"


def test_seed_default_labels_is_idempotent(session: Session) -> None:
    resolver = LabelResolver(
        tag_store=SeverityTagRepository(session),
        recommendation_store=RecommendationRepository(session),
    )

    assert seed_default_labels(resolver) == {"severity_tags": 4, "recommendations": 4}
    assert seed_default_labels(resolver) == {"severity_tags": 0, "recommendations": 0}
    assert session.scalar(select(func.count(Recommendation.id))) == 4


def test_backfill_label_codes_skips_codes_already_taken(session: Session) -> None:
    session.add_all(
        [
            SeverityTag(id="t1", name="RED ALERT", color="#dc3545", priority=3, active=True),
            SeverityTag(id="t2", name="Green Zone", color="#28a745", priority=1, active=True),
            SeverityTag(id="t3", name="green zone", color="#28a745", priority=1, active=True),
            SeverityTag(id="t4", name="Custom", color="#000000", priority=1, active=True),
        ]
    )
    session.commit()

    updated = backfill_label_codes(SeverityTagRepository(session), lambda code: tag_template(code).name)

    assert updated == 2
    codes = {tag.id: tag.severity_code for tag in SeverityTagRepository(session).list_active()}
    assert codes["t1"] == CODE_SEVERE
    assert sorted(code for code in codes.values() if code) == [CODE_NORMAL, CODE_SEVERE]
    assert codes["t4"] is None


def test_migration_backfill_covers_both_label_kinds(session: Session) -> None:
    session.add(
        Recommendation(
            id="r1",
            name="Yellow Alert - Nutritional Risk Zone",
            body="legacy",
            color="#ffc107",
            priority=2,
            active=True,
        )
    )
    session.commit()

    assert backfill(session) == {"severity_tags": 0, "recommendations": 1}
    assert session.get(Recommendation, "r1").severity_code == CODE_MODERATE


def test_migration_cli_rejects_unknown_command() -> None:
    assert parse_args(["seed-labels"]).command == "seed-labels"
    with pytest.raises(SystemExit):
        parse_args(["drop-everything"])
