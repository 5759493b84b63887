# farmplot/models.py
import uuid
from datetime import datetime, timezone

import shapely
from geoalchemy2 import Geometry as SpatialGeometry
from geoalchemy2.shape import from_shape, to_shape
from pyproj import Geod
from shapely.geometry.polygon import orient
from sqlalchemy import (
    Column, Date, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text, Uuid, event,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from farmplot.db import Base
from farmplot.enums import LandTenureType, ParentEntityType, POIType
from farmplot.geometry import SRID

_geod = Geod(ellps="WGS84")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Geometry(TypeDecorator):
    """
    shapely geometry column, lon/lat in SRID 4326.

    PostgreSQL gets a PostGIS geometry column through geoalchemy2; other
    backends (SQLite in tests and local runs) keep lossless hex WKB text.
    """

    impl = Text
    cache_ok = True

    def __init__(self, geometry_type: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.geometry_type = geometry_type

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(SpatialGeometry(self.geometry_type.upper(), srid=SRID))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.geom_type != self.geometry_type:
            raise ValueError(f"Expected {self.geometry_type} geometry, got {value.geom_type}")
        if dialect.name == "postgresql":
            return from_shape(value, srid=SRID)
        return shapely.to_wkb(value, hex=True)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return to_shape(value)
        return shapely.from_wkb(value)


def geodesic_area_hectares(polygon):
    """Area on the WGS84 ellipsoid; holes are subtracted."""
    if polygon is None or polygon.is_empty:
        return None
    # geod counts counter-clockwise rings as positive, clockwise holes as negative
    area_m2, _ = _geod.geometry_area_perimeter(orient(polygon, sign=1.0))
    return round(abs(area_m2) / 10_000.0, 4)


class Farm(Base):
    __tablename__ = "farms"

    farm_identifier = Column(Uuid, primary_key=True, default=uuid.uuid4)
    farm_name = Column(String(255), nullable=False)
    owner_reference_id = Column(Uuid, nullable=False, index=True)
    country_code = Column(String(2), nullable=False)
    region = Column(String(255), nullable=True)
    general_location_coordinates = Column(Geometry("Point"), nullable=True)
    notes = Column(Text, nullable=True)

    tenant_id = Column(Uuid, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    version = Column(Integer, nullable=False)

    plots = relationship("Plot", back_populates="farm", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Farm {self.farm_identifier} {self.farm_name!r}>"


class Plot(Base):
    __tablename__ = "plots"

    plot_identifier = Column(Uuid, primary_key=True, default=uuid.uuid4)
    farm_identifier = Column(
        Uuid, ForeignKey("farms.farm_identifier", ondelete="CASCADE"), nullable=False, index=True
    )
    plot_name = Column(String(255), nullable=True)
    cultivator_reference_id = Column(Uuid, nullable=True, index=True)
    plot_geometry = Column(Geometry("Polygon"), nullable=False)

    # written only by the mapper events below
    calculated_area_hectares = Column(Float, nullable=True)

    # mirror of LandTenure.tenure_type, kept in sync by the land tenure operations
    land_tenure_type = Column(Enum(LandTenureType, native_enum=False, length=50), nullable=True)

    tenant_id = Column(Uuid, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    version = Column(Integer, nullable=False)

    farm = relationship("Farm", back_populates="plots")
    land_tenure = relationship(
        "LandTenure", back_populates="plot", uselist=False, cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Plot {self.plot_identifier} farm={self.farm_identifier}>"


@event.listens_for(Plot, "before_insert")
@event.listens_for(Plot, "before_update")
def _derive_plot_area(mapper, connection, target):
    target.calculated_area_hectares = geodesic_area_hectares(target.plot_geometry)


class LandTenure(Base):
    __tablename__ = "land_tenures"

    land_tenure_identifier = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # unique: a plot has at most one tenure record
    plot_identifier = Column(
        Uuid, ForeignKey("plots.plot_identifier", ondelete="CASCADE"), nullable=False, unique=True
    )
    tenure_type = Column(Enum(LandTenureType, native_enum=False, length=50), nullable=False)
    lease_start_date = Column(Date, nullable=True)
    lease_end_date = Column(Date, nullable=True)
    owner_details = Column(Text, nullable=True)
    agreement_document_reference = Column(String(255), nullable=True)

    tenant_id = Column(Uuid, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    version = Column(Integer, nullable=False)

    plot = relationship("Plot", back_populates="land_tenure")

    __mapper_args__ = {"version_id_col": version}


class PointOfInterest(Base):
    __tablename__ = "points_of_interest"
    __table_args__ = (
        Index("idx_poi_parent_entity", "parent_entity_identifier", "parent_entity_type"),
    )

    poi_identifier = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # polymorphic parent: no foreign key, the table depends on parent_entity_type
    parent_entity_identifier = Column(Uuid, nullable=False)
    parent_entity_type = Column(Enum(ParentEntityType, native_enum=False, length=10), nullable=False)

    poi_name = Column(String(255), nullable=True)
    poi_type = Column(Enum(POIType, native_enum=False, length=50), nullable=False)
    coordinates = Column(Geometry("Point"), nullable=False)
    notes = Column(Text, nullable=True)

    tenant_id = Column(Uuid, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return (
            f"<PointOfInterest {self.poi_identifier} {self.poi_type} "
            f"parent={self.parent_entity_type}:{self.parent_entity_identifier}>"
        )
