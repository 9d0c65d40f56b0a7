"""
Versioned Schemas

Every persisted payload (strategy configs, collector configs, run results,
aggregated results, threshold settings) is stored as a ``VersionedRecord``
and read back through a ``Versioned`` descriptor. Older records are migrated
forward one version at a time before validation; newer records fail closed.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError
import structlog

from pulsecheck.errors import MigrationChainError, SchemaError

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

EPHEMERAL_KEY = "x-ephemeral"


class VersionedRecord(BaseModel):
    """Stored envelope for a versioned payload."""

    version: int = Field(..., ge=1)
    data: dict[str, Any] = Field(default_factory=dict)
    migrated_at: datetime | None = None
    original_version: int | None = None


@dataclass(frozen=True)
class Migration:
    """A single forward step from ``from_version`` to ``from_version + 1``."""

    from_version: int
    to_version: int
    description: str
    migrate: Callable[[dict[str, Any]], dict[str, Any]]


def result_field(
    default: Any = ...,
    *,
    label: str | None = None,
    chart: str | None = None,
    unit: str | None = None,
    ephemeral: bool = False,
    **kwargs: Any,
) -> Any:
    """
    Declare a result field with chart and retention annotations.

    Args:
        default: Field default (``...`` for required)
        label: Human readable label
        chart: Chart type hint for the UI (e.g. "line", "gauge", "text")
        unit: Display unit
        ephemeral: Drop the field before the run is persisted

    Returns:
        A pydantic ``FieldInfo``
    """
    extra: dict[str, Any] = {}
    if chart:
        extra["x-chart-type"] = chart
    if label:
        extra["x-chart-label"] = label
    if unit:
        extra["x-chart-unit"] = unit
    if ephemeral:
        extra[EPHEMERAL_KEY] = True
    if "default_factory" not in kwargs:
        kwargs["default"] = default
    return Field(description=label, json_schema_extra=extra or None, **kwargs)


def _field_extra(schema: type[BaseModel], name: str) -> dict[str, Any]:
    extra = schema.model_fields[name].json_schema_extra
    return extra if isinstance(extra, dict) else {}


def strip_ephemeral_fields(data: dict[str, Any], schema: type[BaseModel]) -> dict[str, Any]:
    """
    Remove fields marked ephemeral in ``schema`` from ``data``.

    Keys the schema does not know about are kept.
    """
    ephemeral = {
        name for name in schema.model_fields if _field_extra(schema, name).get(EPHEMERAL_KEY)
    }
    return {k: v for k, v in data.items() if k not in ephemeral}


class Versioned(Generic[M]):
    """
    A schema paired with its current version and migration chain.

    Usage:
        config = Versioned(
            version=2,
            schema=DNSConfig,
            migrations=[Migration(1, 2, "drop hostname", drop_hostname)],
        )
        model = config.parse(stored_record)
    """

    def __init__(
        self,
        version: int,
        schema: type[M],
        migrations: Iterable[Migration] = (),
    ) -> None:
        self.version = version
        self.schema = schema
        self.migrations = sorted(migrations, key=lambda m: m.from_version)
        self._validate_chain()

    def _validate_chain(self) -> None:
        if self.version < 1:
            raise MigrationChainError(f"{self.schema.__name__}: version must be >= 1")
        if not self.migrations:
            return

        previous: Migration | None = None
        for migration in self.migrations:
            if migration.to_version != migration.from_version + 1:
                raise MigrationChainError(
                    f"{self.schema.__name__}: migration {migration.from_version}->"
                    f"{migration.to_version} must increment version by 1"
                )
            if previous is not None and migration.from_version != previous.to_version:
                raise MigrationChainError(
                    f"{self.schema.__name__}: migration chain broken between "
                    f"v{previous.to_version} and v{migration.from_version}"
                )
            previous = migration

        if self.migrations[-1].to_version != self.version:
            raise MigrationChainError(
                f"{self.schema.__name__}: migration chain incomplete, ends at "
                f"v{self.migrations[-1].to_version} but schema is v{self.version}"
            )

    @staticmethod
    def _coerce(record: VersionedRecord | dict[str, Any]) -> VersionedRecord:
        if isinstance(record, VersionedRecord):
            return record
        try:
            return VersionedRecord.model_validate(record)
        except ValidationError as e:
            raise SchemaError(f"Malformed versioned record: {e}") from e

    def needs_migration(self, record: VersionedRecord | dict[str, Any]) -> bool:
        """Check whether a stored record is older than the current version."""
        return self._coerce(record).version < self.version

    def _migrate(self, record: VersionedRecord) -> dict[str, Any]:
        if record.version > self.version:
            raise SchemaError(
                f"{self.schema.__name__}: record version {record.version} is newer "
                f"than supported version {self.version}"
            )

        data = dict(record.data)
        current = record.version
        for migration in self.migrations:
            if migration.from_version < current:
                continue
            if migration.from_version != current:
                break
            try:
                data = migration.migrate(data)
            except Exception as e:
                raise SchemaError(
                    f"{self.schema.__name__}: migration v{migration.from_version}->"
                    f"v{migration.to_version} failed: {e}"
                ) from e
            current = migration.to_version
            logger.debug(
                "Applied migration",
                schema=self.schema.__name__,
                to_version=current,
                description=migration.description,
            )

        if current != self.version:
            raise SchemaError(
                f"{self.schema.__name__}: no migration path from v{record.version} "
                f"to v{self.version}"
            )
        return data

    def validate(self, data: dict[str, Any]) -> M:
        """Validate data against the current schema version."""
        try:
            return self.schema.model_validate(data)
        except ValidationError as e:
            raise SchemaError(f"{self.schema.__name__}: {e}") from e

    def parse(self, record: VersionedRecord | dict[str, Any]) -> M:
        """Migrate a stored record if needed and validate it."""
        return self.validate(self._migrate(self._coerce(record)))

    def upgrade(self, data: dict[str, Any], version: int | None) -> dict[str, Any]:
        """
        Bring stored data written at ``version`` up to the current version.

        Data stamped with the current version (or with no version) is returned
        as is. Older data is migrated and validated; keys the schema does not
        declare are kept. Newer data fails closed like ``parse``.
        """
        if not data or version is None or version == self.version:
            return dict(data)
        migrated = self._migrate(VersionedRecord(version=version, data=data))
        self.validate(migrated)
        return migrated

    def parse_record(self, record: VersionedRecord | dict[str, Any]) -> VersionedRecord:
        """
        Migrate a stored record and return it re-wrapped at the current version.

        The original version and migration timestamp are kept for auditing.
        """
        record = self._coerce(record)
        model = self.parse(record)
        if record.version == self.version:
            return VersionedRecord(
                version=self.version,
                data=model.model_dump(mode="json"),
                migrated_at=record.migrated_at,
                original_version=record.original_version,
            )
        return VersionedRecord(
            version=self.version,
            data=model.model_dump(mode="json"),
            migrated_at=datetime.now(timezone.utc),
            original_version=record.original_version or record.version,
        )

    def create(self, data: dict[str, Any] | M) -> VersionedRecord:
        """Wrap fresh data at the current version after validating it."""
        model = data if isinstance(data, self.schema) else self.validate(data)
        return VersionedRecord(version=self.version, data=model.model_dump(mode="json"))

    def strip_ephemeral(self, data: dict[str, Any]) -> dict[str, Any]:
        """Remove ephemeral fields declared by this schema."""
        return strip_ephemeral_fields(data, self.schema)

    def json_schema(self) -> dict[str, Any]:
        """JSON-Schema document for this version, with ``x-version`` set."""
        document = self.schema.model_json_schema()
        document["x-version"] = self.version
        return document
