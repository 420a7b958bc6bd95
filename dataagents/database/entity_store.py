#!/usr/bin/env python3
"""
entity_store.py
--------------------
SQLAlchemy implementation of the engine's EntityStore.

Writes one block at a time into the downstream event database
(events, editions, organizers, races). Each upsert runs in its own
transaction, so a failing block never undoes an earlier one.

Block writes:
    event      update the target event, or create it when the key has no event
    edition    update the target edition, or create it under the target event
    organizer  create or update the single organizer of the edition
    races      delete (racesToDelete), update (racesToUpdate, races with an id),
               then add (racesToAdd, races without an id; matched by name)

Errors are reported as StoreError:
    constraint_violation  integrity error or a value the column cannot hold
    not_found             target record missing
    unreachable           database unavailable or any other SQLAlchemy error

Usage:
    store = DatabaseEntityStore(ENTITY_DB_PATH, logger=logger)
    result = store.upsert_block(BlockType.EDITION, TargetKey.of(12, 34),
                                {"startDate": "2025-06-01T08:00:00+00:00"})
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import re
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Type, Union

# --- Third party imports ---
from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

# --- Local imports ---
from dataagents.core.enums import BlockType
from dataagents.core.exceptions import StoreError
from dataagents.core.logging_manager import DataAgentsLogger, safe_logger
from dataagents.engine.models import TargetKey, WriteResult

from .models import Edition, EntityBase, Event, Organizer, Race, as_utc


# Race keys that are not columns but identify or wrap a race
_RACE_ID_KEYS = ("raceId", "id")
_RACE_META_KEYS = ("raceId", "id", "raceName", "updates")

# Legacy alias
_COLUMN_ALIASES = {"distance": "run_distance"}


def snake_case(name: str) -> str:
    """``countrySubdivisionNameLevel1`` -> ``country_subdivision_name_level1``."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _new_value(value: Any) -> Any:
    """Unwrap ``{"old": .., "new": ..}`` change objects found inside race updates."""
    if isinstance(value, Mapping) and "new" in value and set(value) <= {"old", "new", "confidence"}:
        return value["new"]
    return value


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    raise ValueError(f"Not a date: {value!r}")


def _parse_id(value: Optional[str], label: str) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise StoreError(f"Invalid {label} id: {value!r}", kind=StoreError.NOT_FOUND)


def _race_id(data: Mapping[str, Any]) -> Optional[int]:
    for key in _RACE_ID_KEYS:
        if data.get(key) not in (None, ""):
            try:
                return int(data[key])
            except (TypeError, ValueError):
                raise ValueError(f"Invalid race id: {data[key]!r}")
    return None


class DatabaseEntityStore:
    """
    EntityStore backed by the downstream SQLite database.

    Attributes:
        engine: SQLAlchemy engine of the entity database
        SessionLocal: Session factory
        logger: Optional logger
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        engine: Optional[Engine] = None,
        logger: Optional[DataAgentsLogger] = None,
        create_schema: bool = True,
    ) -> None:
        """
        Args:
            db_path: SQLite file of the entity database
            engine: Existing engine (takes precedence over ``db_path``)
            logger: Optional logger
            create_schema: Create missing tables on startup
        """
        if engine is None:
            if db_path is None:
                raise ValueError("Either db_path or engine is required")
            path = Path(db_path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{path}",
                future=True,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False},
            )
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)
        self.logger = logger
        if create_schema:
            EntityBase.metadata.create_all(bind=engine)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Transaction translating database errors to StoreError.

        Raises:
            StoreError: constraint_violation or unreachable
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except StoreError:
            session.rollback()
            raise
        except IntegrityError as e:
            session.rollback()
            raise StoreError(
                f"Constraint violation: {e.orig}", kind=StoreError.CONSTRAINT_VIOLATION
            ) from e
        except OperationalError as e:
            session.rollback()
            raise StoreError(f"Entity database unavailable: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Entity database error: {e}") from e
        except (TypeError, ValueError) as e:
            session.rollback()
            raise StoreError(
                f"Invalid value: {e}", kind=StoreError.CONSTRAINT_VIOLATION
            ) from e
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Column helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _coerce(model: Type[EntityBase], column: str, value: Any) -> Any:
        if value is None:
            return None
        python_type = model.__table__.c[column].type.python_type
        if python_type is datetime:
            return _parse_datetime(value)
        if python_type is bool:
            if not isinstance(value, bool):
                raise ValueError(f"{column} expects a boolean, got {value!r}")
            return value
        if python_type is int:
            if isinstance(value, bool) or float(value) != int(float(value)):
                raise ValueError(f"{column} expects an integer, got {value!r}")
            return int(float(value))
        if python_type is float:
            if isinstance(value, bool):
                raise ValueError(f"{column} expects a number, got {value!r}")
            return float(value)
        if python_type is str:
            return str(value)
        return value

    def _assign(
        self,
        record: EntityBase,
        fields: Mapping[str, Any],
        extras: Optional[Dict[str, Any]] = None,
        skip: Tuple[str, ...] = (),
    ) -> List[str]:
        """
        Copy ``fields`` onto ``record``; unknown keys go to ``extras`` when given.

        Returns:
            Names of the columns whose value changed

        Raises:
            ValueError: On an unknown field (without ``extras``) or a bad value
        """
        model = type(record)
        columns = model.__table__.c
        changed = []
        for name, raw in fields.items():
            if name in skip:
                continue
            column = _COLUMN_ALIASES.get(name, snake_case(name))
            if column in ("id", "event_id", "edition_id", "details") or column not in columns:
                if extras is None:
                    raise ValueError(f"Unknown field for {model.__tablename__}: {name}")
                extras[name] = _new_value(raw)
                continue
            value = self._coerce(model, column, _new_value(raw))
            current = getattr(record, column)
            if isinstance(current, datetime):
                current = as_utc(current)
            if current != value:
                setattr(record, column, value)
                changed.append(column)
        return changed

    # -------------------------------------------------------------------------
    # Block writes
    # -------------------------------------------------------------------------

    def _require(self, session: Session, model: Type[EntityBase], raw_id: Optional[str], label: str):
        record = session.get(model, _parse_id(raw_id, label))
        if record is None:
            raise StoreError(f"{label.capitalize()} not found: {raw_id}", kind=StoreError.NOT_FOUND)
        return record

    def _upsert_event(self, session: Session, key: TargetKey, fields: Mapping[str, Any]) -> WriteResult:
        created = key.event_id is None
        if created:
            if not fields.get("name"):
                raise StoreError(
                    "A new event needs a name", kind=StoreError.CONSTRAINT_VIOLATION
                )
            event = Event(name=str(fields["name"]))
            session.add(event)
        else:
            event = self._require(session, Event, key.event_id, "event")
        changed = self._assign(event, fields)
        session.flush()
        return WriteResult(BlockType.EVENT, key, str(event.id), created, changed)

    def _upsert_edition(self, session: Session, key: TargetKey, fields: Mapping[str, Any]) -> WriteResult:
        created = key.edition_id is None
        if created:
            event = self._require(session, Event, key.event_id, "event")
            edition = Edition(event_id=event.id)
            session.add(edition)
        else:
            edition = self._require(session, Edition, key.edition_id, "edition")
        changed = self._assign(edition, fields)
        session.flush()
        return WriteResult(BlockType.EDITION, key, str(edition.id), created, changed)

    def _upsert_organizer(self, session: Session, key: TargetKey, fields: Mapping[str, Any]) -> WriteResult:
        edition = self._require(session, Edition, key.edition_id, "edition")
        data = fields.get("organizer")
        if data is None:
            return WriteResult(BlockType.ORGANIZER, key, None, False, [])
        if not isinstance(data, Mapping):
            raise ValueError(f"organizer expects a mapping, got {type(data).__name__}")

        organizer = edition.organizer
        created = organizer is None
        if created:
            organizer = Organizer(edition_id=edition.id, details={})
            session.add(organizer)
        extras = dict(organizer.details or {})
        changed = self._assign(organizer, data, extras=extras)
        if extras != (organizer.details or {}):
            organizer.details = extras
            changed.append("details")
        session.flush()
        return WriteResult(BlockType.ORGANIZER, key, str(organizer.id), created, changed)

    def _write_race(self, race: Race, data: Mapping[str, Any]) -> List[str]:
        extras = dict(race.details or {})
        changed = self._assign(race, data, extras=extras, skip=_RACE_META_KEYS)
        if extras != (race.details or {}):
            race.details = extras
            changed.append("details")
        return changed

    def _upsert_races(self, session: Session, key: TargetKey, fields: Mapping[str, Any]) -> WriteResult:
        edition = self._require(session, Edition, key.edition_id, "edition")
        by_id = {race.id: race for race in edition.races}
        changed: List[str] = []
        created = False

        # 1. Deletions
        deleted = set()
        for entry in fields.get("racesToDelete") or []:
            race_id = _race_id(entry) if isinstance(entry, Mapping) else int(entry)
            race = by_id.pop(race_id, None)
            if race is not None:
                edition.races.remove(race)
                deleted.add(race_id)
                changed.append(f"race:{race_id}:deleted")

        # 2. Updates
        updates: List[Tuple[int, Mapping[str, Any]]] = []
        for entry in fields.get("racesToUpdate") or []:
            if not isinstance(entry, Mapping):
                raise ValueError(f"racesToUpdate entries must be mappings, got {entry!r}")
            updates.append((_race_id(entry), entry.get("updates") or {}))
        additions: List[Mapping[str, Any]] = list(fields.get("racesToAdd") or [])
        for entry in fields.get("races") or []:
            if not isinstance(entry, Mapping):
                raise ValueError(f"races entries must be mappings, got {entry!r}")
            race_id = _race_id(entry)
            if race_id is None:
                additions.append(entry)
            else:
                updates.append((race_id, entry))

        for race_id, data in updates:
            if race_id in deleted:
                continue
            race = by_id.get(race_id)
            if race is None:
                raise StoreError(
                    f"Race {race_id} not found in edition {edition.id}", kind=StoreError.NOT_FOUND
                )
            changed.extend(f"race:{race_id}:{name}" for name in self._write_race(race, data))

        # 3. Additions, matched by name so that a rewrite does not duplicate races
        by_name = {race.name: race for race in by_id.values()}
        for data in additions:
            if not isinstance(data, Mapping):
                raise ValueError(f"New races must be mappings, got {data!r}")
            name = data.get("name")
            if not name:
                raise StoreError("A new race needs a name", kind=StoreError.CONSTRAINT_VIOLATION)
            race = by_name.get(name)
            if race is None:
                race = Race(name=str(name), details={})
                edition.races.append(race)
                by_name[race.name] = race
                created = True
                session.flush()
                changed.append(f"race:{race.id}:created")
            self._write_race(race, {k: v for k, v in data.items() if k not in _RACE_ID_KEYS})

        session.flush()
        return WriteResult(BlockType.RACES, key, str(edition.id), created, changed)

    def upsert_block(
        self, block_type: BlockType, target_key: TargetKey, fields: Dict[str, Any]
    ) -> WriteResult:
        """
        Create or update the record(s) of ``block_type`` for ``target_key``.

        Raises:
            StoreError: With kind constraint_violation, not_found or unreachable
        """
        writers = {
            BlockType.EVENT: self._upsert_event,
            BlockType.EDITION: self._upsert_edition,
            BlockType.ORGANIZER: self._upsert_organizer,
            BlockType.RACES: self._upsert_races,
        }
        block_type = BlockType(block_type)
        with self.session_scope() as session:
            result = writers[block_type](session, target_key, fields)

        safe_logger(self.logger).log_operation(
            "entity_block_written",
            {
                "block_type": block_type.value,
                "target_key": target_key.as_string(),
                "record_id": result.record_id,
                "created": result.created,
                "changed_fields": result.changed_fields,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Flags used by auto-validation
    # -------------------------------------------------------------------------

    def get_event_flags(self, event_id: str) -> Dict[str, Any]:
        with self.session_scope() as session:
            try:
                event = session.get(Event, int(event_id))
            except (TypeError, ValueError):
                return {}
            if event is None:
                return {}
            return {"is_featured": bool(event.is_featured)}

    def get_edition_flags(self, edition_id: str) -> Dict[str, Any]:
        with self.session_scope() as session:
            try:
                edition = session.get(Edition, int(edition_id))
            except (TypeError, ValueError):
                return {}
            if edition is None:
                return {}
            return {
                "customer_type": edition.customer_type,
                "registrants_number": edition.registrants_number,
            }

    # -------------------------------------------------------------------------
    # Seeding and inspection
    # -------------------------------------------------------------------------

    def add_event(self, name: str, **columns: Any) -> str:
        with self.session_scope() as session:
            event = Event(name=name, **columns)
            session.add(event)
            session.flush()
            return str(event.id)

    def add_edition(self, event_id: str, **columns: Any) -> str:
        with self.session_scope() as session:
            edition = Edition(event_id=int(event_id), **columns)
            session.add(edition)
            session.flush()
            return str(edition.id)

    def add_race(self, edition_id: str, name: str, **columns: Any) -> str:
        with self.session_scope() as session:
            race = Race(edition_id=int(edition_id), name=name, details={}, **columns)
            session.add(race)
            session.flush()
            return str(race.id)

    def get_event(self, event_id: str) -> Optional[Event]:
        with self.session_scope() as session:
            return session.get(Event, int(event_id))

    def get_edition(self, edition_id: str) -> Optional[Edition]:
        with self.session_scope() as session:
            edition = session.get(Edition, int(edition_id))
            if edition is not None:
                # Load relationships before the session closes
                _ = edition.organizer, list(edition.races)
            return edition

    def list_races(self, edition_id: str) -> List[Race]:
        with self.session_scope() as session:
            return (
                session.query(Race)
                .filter(Race.edition_id == int(edition_id))
                .order_by(Race.id)
                .all()
            )
