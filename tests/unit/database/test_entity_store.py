"""Tests for DatabaseEntityStore block writes and flag lookups."""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from dataagents.core.enums import BlockType
from dataagents.core.exceptions import StoreError
from dataagents.core.logging_manager import DataAgentsLogger
from dataagents.database.entity_store import DatabaseEntityStore, snake_case
from dataagents.database.models import as_utc
from dataagents.engine.models import TargetKey


@pytest.fixture
def seeded(entity_db):
    """One event with one edition and one race."""
    event_id = entity_db.add_event("Marathon de Lyon", city="Lyon")
    edition_id = entity_db.add_edition(event_id, year=2024)
    race_id = entity_db.add_race(edition_id, "Marathon", run_distance=42.195)
    return entity_db, TargetKey.of(event_id, edition_id), race_id


def test_snake_case():
    assert snake_case("countrySubdivisionNameLevel1") == "country_subdivision_name_level1"
    assert snake_case("city") == "city"


class TestEventAndEdition:
    def test_update_existing_event(self, seeded):
        store, key, _ = seeded

        result = store.upsert_block(BlockType.EVENT, key, {"city": "Lyon", "websiteUrl": "https://x.fr"})

        assert result.record_id == key.event_id
        assert not result.created
        assert result.changed_fields == ["website_url"]
        assert store.get_event(key.event_id).website_url == "https://x.fr"

    def test_create_event_without_key(self, entity_db):
        result = entity_db.upsert_block(BlockType.EVENT, TargetKey(), {"name": "Trail des Monts", "city": "Albi"})

        assert result.created
        assert entity_db.get_event(result.record_id).city == "Albi"

    def test_new_event_needs_name(self, entity_db):
        with pytest.raises(StoreError) as exc_info:
            entity_db.upsert_block(BlockType.EVENT, TargetKey(), {"city": "Albi"})
        assert exc_info.value.kind == StoreError.CONSTRAINT_VIOLATION

    def test_update_edition_dates(self, seeded):
        store, key, _ = seeded

        store.upsert_block(
            BlockType.EDITION, key, {"year": 2025, "startDate": "2025-06-01T08:00:00Z"}
        )

        edition = store.get_edition(key.edition_id)
        assert edition.year == 2025
        assert as_utc(edition.start_date) == datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)

    def test_create_edition_under_event(self, seeded):
        store, key, _ = seeded

        result = store.upsert_block(BlockType.EDITION, TargetKey.of(key.event_id), {"year": 2026})

        assert result.created
        assert result.record_id != key.edition_id
        assert store.get_edition(result.record_id).event_id == int(key.event_id)

    def test_missing_event_is_not_found(self, entity_db):
        with pytest.raises(StoreError, match="Event not found") as exc_info:
            entity_db.upsert_block(BlockType.EDITION, TargetKey.of("404"), {"year": 2025})
        assert exc_info.value.kind == StoreError.NOT_FOUND

    def test_non_numeric_id_is_not_found(self, entity_db):
        with pytest.raises(StoreError) as exc_info:
            entity_db.upsert_block(BlockType.EVENT, TargetKey.of("abc"), {"city": "Albi"})
        assert exc_info.value.kind == StoreError.NOT_FOUND

    @pytest.mark.parametrize("fields", [{"year": "soon"}, {"banana": 1}, {"year": 2025.5}])
    def test_bad_values_are_constraint_violations(self, seeded, fields):
        store, key, _ = seeded
        with pytest.raises(StoreError) as exc_info:
            store.upsert_block(BlockType.EDITION, key, fields)
        assert exc_info.value.kind == StoreError.CONSTRAINT_VIOLATION

    def test_failed_write_is_rolled_back(self, seeded):
        store, key, _ = seeded
        with pytest.raises(StoreError):
            store.upsert_block(BlockType.EDITION, key, {"year": 2030, "banana": 1})
        assert store.get_edition(key.edition_id).year == 2024


class TestOrganizer:
    def test_create_then_update(self, seeded):
        store, key, _ = seeded

        first = store.upsert_block(
            BlockType.ORGANIZER, key, {"organizer": {"name": "Run Club", "slogan": "Go"}}
        )
        second = store.upsert_block(
            BlockType.ORGANIZER, key, {"organizer": {"email": "hi@run.club"}}
        )

        assert first.created and not second.created
        assert first.record_id == second.record_id
        organizer = store.get_edition(key.edition_id).organizer
        assert (organizer.name, organizer.email) == ("Run Club", "hi@run.club")
        assert organizer.details == {"slogan": "Go"}

    def test_organizer_must_be_mapping(self, seeded):
        store, key, _ = seeded
        with pytest.raises(StoreError) as exc_info:
            store.upsert_block(BlockType.ORGANIZER, key, {"organizer": "Run Club"})
        assert exc_info.value.kind == StoreError.CONSTRAINT_VIOLATION


class TestRaces:
    def test_update_and_add(self, seeded):
        store, key, race_id = seeded

        result = store.upsert_block(
            BlockType.RACES,
            key,
            {"races": [{"id": int(race_id), "price": 45}, {"name": "10K", "distance": 10}]},
        )

        races = store.list_races(key.edition_id)
        assert [(r.name, r.price, r.run_distance) for r in races] == [
            ("Marathon", 45.0, 42.195),
            ("10K", None, 10.0),
        ]
        assert result.created
        assert f"race:{race_id}:price" in result.changed_fields

    def test_rewrite_does_not_duplicate_new_races(self, seeded):
        store, key, _ = seeded
        fields = {"racesToAdd": [{"name": "10K", "price": 15}]}

        store.upsert_block(BlockType.RACES, key, fields)
        again = store.upsert_block(BlockType.RACES, key, fields)

        assert not again.created
        assert [r.name for r in store.list_races(key.edition_id)] == ["Marathon", "10K"]

    def test_update_with_change_objects(self, seeded):
        store, key, race_id = seeded

        store.upsert_block(
            BlockType.RACES,
            key,
            {"racesToUpdate": [{"raceId": race_id, "updates": {"price": {"old": None, "new": 50}}}]},
        )

        assert store.list_races(key.edition_id)[0].price == 50.0

    def test_delete(self, seeded):
        store, key, race_id = seeded

        result = store.upsert_block(BlockType.RACES, key, {"racesToDelete": [int(race_id)]})

        assert store.list_races(key.edition_id) == []
        assert result.changed_fields == [f"race:{race_id}:deleted"]

    def test_unknown_race_is_not_found(self, seeded):
        store, key, _ = seeded
        with pytest.raises(StoreError, match="Race 999 not found") as exc_info:
            store.upsert_block(BlockType.RACES, key, {"races": [{"id": 999, "price": 1}]})
        assert exc_info.value.kind == StoreError.NOT_FOUND

    def test_new_race_needs_name(self, seeded):
        store, key, _ = seeded
        with pytest.raises(StoreError) as exc_info:
            store.upsert_block(BlockType.RACES, key, {"racesToAdd": [{"price": 10}]})
        assert exc_info.value.kind == StoreError.CONSTRAINT_VIOLATION


class TestFlags:
    def test_event_flags(self, entity_db):
        event_id = entity_db.add_event("Featured", is_featured=True)
        assert entity_db.get_event_flags(event_id) == {"is_featured": True}
        assert entity_db.get_event_flags("999") == {}
        assert entity_db.get_event_flags("abc") == {}

    def test_edition_flags(self, seeded):
        store, key, _ = seeded
        edition_id = store.add_edition(key.event_id, customer_type="PREMIUM", registrants_number=120)

        assert store.get_edition_flags(edition_id) == {
            "customer_type": "PREMIUM",
            "registrants_number": 120,
        }
        assert store.get_edition_flags(key.edition_id) == {
            "customer_type": None,
            "registrants_number": None,
        }


def test_writes_are_logged(tmp_dir):
    logger = MagicMock(spec=DataAgentsLogger)
    store = DatabaseEntityStore(tmp_dir / "logged.db", logger=logger)
    try:
        store.upsert_block(BlockType.EVENT, TargetKey(), {"name": "Logged"})
    finally:
        store.engine.dispose()

    name, details = logger.log_operation.call_args[0]
    assert name == "entity_block_written"
    assert details["created"] is True
    assert details["block_type"] == "event"


def test_requires_path_or_engine():
    with pytest.raises(ValueError):
        DatabaseEntityStore()
