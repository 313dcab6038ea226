"""
SQLAlchemy ORM models for the telemetry database.

Organization is the tenant boundary. It owns Users and Devices; a Device
owns Sensors; a Sensor owns at most one DecodingConfig and any number of
Samples. Every ownership edge is ON DELETE CASCADE so deleting a parent
removes everything beneath it. Setting is a process-wide key/value table.

CHANGELOG:
- 2026-10-17: Add version column to DecodingConfig
- 2026-10-17: Initial creation

TODO:
- None
"""

import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Double,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
    true,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    validates,
)

USER_ROLES = ("admin", "user", "viewer")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.UTC)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models."""

    pass


class Organization(Base):
    """Tenant boundary. Owns users and devices.

    Attributes:
        id: Surrogate key.
        name: Unique organization name.
        contact_email: Optional contact email.
        contact_phone: Optional contact phone.
        address: Optional postal address.
        is_active: Deactivation flag (preferred over deletion).
        created_at: Creation timestamp.
    """

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    contact_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=true(), default=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=_utcnow,
    )

    users: Mapped[list["User"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    devices: Mapped[list["Device"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"Organization(id={self.id!r}, name={self.name!r})"


class User(Base):
    """A member of exactly one organization.

    ``organization_id`` cannot change once set.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'user', 'viewer')", name="ck_users_role"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'user'"), default="user"
    )
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=true(), default=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=_utcnow,
    )

    organization: Mapped[Organization] = relationship(back_populates="users")

    @validates("organization_id")
    def _organization_is_immutable(self, key: str, value: int) -> int:
        current = self.__dict__.get("organization_id")
        if current is not None and value != current:
            raise ValueError("organization_id cannot be changed after creation")
        return value

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, email={self.email!r}, role={self.role!r})"


class Device(Base):
    """A field gateway, uniquely named system-wide.

    Attributes:
        name: Name the field unit uses to identify itself when submitting.
        organization_id: Owning tenant.
        ip_address: Optional network address.
        description: Optional free text.
        is_active: Active flag.
        last_seen: Server time of the last accepted batch.
    """

    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ip_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=true(), default=True
    )
    last_seen: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=_utcnow,
    )

    organization: Mapped[Organization] = relationship(back_populates="devices")
    sensors: Mapped[list["Sensor"]] = relationship(
        back_populates="device",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"Device(id={self.id!r}, name={self.name!r})"


class Sensor(Base):
    """A named measurement channel under a device.

    The (device_id, name) unique constraint doubles as the index used by
    ingestion to resolve readings.
    """

    __tablename__ = "sensors"
    __table_args__ = (
        UniqueConstraint("device_id", "name", name="uq_sensors_device_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = mapped_column(
        ForeignKey("devices.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sensor_type: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=true(), default=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=_utcnow,
    )

    device: Mapped[Device] = relationship(back_populates="sensors")
    decoding: Mapped["DecodingConfig | None"] = relationship(
        back_populates="sensor",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    def __repr__(self) -> str:
        return (
            f"Sensor(id={self.id!r}, device_id={self.device_id!r}, "
            f"name={self.name!r})"
        )


class DecodingConfig(Base):
    """Register decoding configuration for one sensor (1:1).

    Attributes:
        sensor_id: Owning sensor (unique).
        address: Modbus register address.
        register_kind: holding, input, coil or discrete.
        encoding: signed16, unsigned16, signed32, unsigned32 or float32.
        scale: Multiplicative factor.
        offset: Additive offset applied after scaling.
        version: Incremented each time the configuration is replaced.
    """

    __tablename__ = "decoding_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sensor_id: Mapped[int] = mapped_column(
        ForeignKey("sensors.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    address: Mapped[int] = mapped_column(Integer, nullable=False)
    register_kind: Mapped[str] = mapped_column(Text, nullable=False)
    encoding: Mapped[str] = mapped_column(Text, nullable=False)
    scale: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("1.0"), default=1.0
    )
    offset: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0.0"), default=0.0
    )
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("1"), default=1
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    sensor: Mapped[Sensor] = relationship(back_populates="decoding")

    def __repr__(self) -> str:
        return (
            f"DecodingConfig(sensor_id={self.sensor_id!r}, "
            f"encoding={self.encoding!r}, scale={self.scale!r}, "
            f"offset={self.offset!r})"
        )


class Sample(Base):
    """One immutable decoded measurement with a server-assigned timestamp."""

    __tablename__ = "samples"
    __table_args__ = (Index("ix_samples_sensor_ts", "sensor_id", "ts"),)

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    sensor_id: Mapped[int] = mapped_column(
        ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False
    )
    value: Mapped[float] = mapped_column(Double, nullable=False)
    ts: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"Sample(sensor_id={self.sensor_id!r}, ts={self.ts!r}, "
            f"value={self.value!r})"
        )


class Setting(Base):
    """Process-wide key/value configuration row."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"Setting(key={self.key!r}, value={self.value!r})"
