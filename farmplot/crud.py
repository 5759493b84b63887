# farmplot/crud.py
"""
Tenant-scoped entity store.

Every lookup takes the tenant id; a row owned by another tenant is treated
exactly like a missing row. Functions here only stage changes on the
session; the services decide when to commit().
"""
import logging
import re
import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session
from sqlalchemy.orm.exc import StaleDataError

from farmplot import models, schemas
from farmplot.enums import ParentEntityType, POIType
from farmplot.errors import ConflictError, ValidationFailedError
from farmplot.geometry import SRID

logger = logging.getLogger(__name__)

# ---------- tiny, single-purpose helpers ----------

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

FARM_SORTABLE = {"farm_name", "country_code", "region", "created_at", "updated_at"}
PLOT_SORTABLE = {"plot_name", "calculated_area_hectares", "created_at", "updated_at"}
POI_SORTABLE = {"poi_name", "poi_type", "created_at", "updated_at"}


def _snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _order_by(model, sort: Optional[str], sortable: set, default: str) -> tuple:
    """'farmName,desc' -> (Farm.farm_name.desc(), Farm.farm_identifier); only whitelisted columns."""
    field, direction = default, "asc"
    if sort:
        parts = [p.strip() for p in sort.split(",")]
        field = _snake(parts[0])
        if len(parts) > 1 and parts[1]:
            direction = parts[1].lower()
    if field not in sortable:
        raise ValidationFailedError(f"Cannot sort by '{field}'.", [f"sort: allowed fields are {sorted(sortable)}"])
    if direction not in ("asc", "desc"):
        raise ValidationFailedError(f"Unknown sort direction '{direction}'.", ["sort: direction must be asc or desc"])
    column = getattr(model, field)
    ordered = column.desc() if direction == "desc" else column.asc()
    # primary key breaks ties
    return (ordered, *inspect(model).primary_key)


def paginate(
    query: Query,
    model,
    page_request: schemas.PageRequest,
    *,
    sortable: set,
    default_sort: str,
) -> tuple[list, int]:
    total = query.order_by(None).count()
    items = (
        query.order_by(*_order_by(model, page_request.sort, sortable, default_sort))
        .offset(page_request.offset)
        .limit(page_request.size)
        .all()
    )
    return items, total


def apply_partial_update(entity, values: dict, *, cleared_when_absent: Iterable[str] = ()) -> None:
    """
    Copy the values that are present (not None) onto the entity.

    Attributes named in cleared_when_absent are the exception: a missing
    value sets them to None instead of leaving them alone.
    """
    cleared = set(cleared_when_absent)
    for name, value in values.items():
        if value is not None:
            setattr(entity, name, value)
        elif name in cleared:
            setattr(entity, name, None)


def check_version(entity, expected: Optional[int], resource: str) -> None:
    if expected is not None and expected != entity.version:
        raise ConflictError(
            f"{resource} was modified concurrently (expected version {expected}, found {entity.version})."
        )


def add(db: Session, obj):
    db.add(obj)
    return obj


def delete(db: Session, obj) -> None:
    db.delete(obj)


def commit(db: Session) -> None:
    """Commit the unit of work; version and unique violations become ConflictError."""
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning("Optimistic lock failure: %s", e)
        raise ConflictError("The record was modified by another request; reload and retry.") from e
    except IntegrityError as e:
        db.rollback()
        logger.warning("Integrity violation: %s", e.orig)
        raise ConflictError("The request conflicts with an existing record.") from e


def _scoped(db: Session, model, tenant_id: uuid.UUID) -> Query:
    return db.query(model).filter(model.tenant_id == tenant_id)


def _maybe_locked(query: Query, for_update: bool) -> Query:
    # SELECT ... FOR UPDATE on PostgreSQL; SQLite ignores it
    return query.with_for_update() if for_update else query

# ---------- Farm ----------

def find_farm(
    db: Session, farm_identifier: uuid.UUID, tenant_id: uuid.UUID, *, for_update: bool = False
) -> Optional[models.Farm]:
    query = _scoped(db, models.Farm, tenant_id).filter(models.Farm.farm_identifier == farm_identifier)
    return _maybe_locked(query, for_update).one_or_none()


def farm_exists(db: Session, farm_identifier: uuid.UUID, tenant_id: uuid.UUID) -> bool:
    query = _scoped(db, models.Farm, tenant_id).filter(models.Farm.farm_identifier == farm_identifier)
    return db.query(query.exists()).scalar()


def list_farms(
    db: Session,
    tenant_id: uuid.UUID,
    page_request: schemas.PageRequest,
    *,
    name: Optional[str] = None,
    country_code: Optional[str] = None,
    owner_reference_id: Optional[uuid.UUID] = None,
) -> tuple[list[models.Farm], int]:
    query = _scoped(db, models.Farm, tenant_id)
    if name:
        query = query.filter(models.Farm.farm_name.icontains(name, autoescape=True))
    if country_code:
        query = query.filter(models.Farm.country_code == country_code.upper())
    if owner_reference_id:
        query = query.filter(models.Farm.owner_reference_id == owner_reference_id)
    return paginate(query, models.Farm, page_request, sortable=FARM_SORTABLE, default_sort="farm_name")

# ---------- Plot ----------

def find_plot(
    db: Session, plot_identifier: uuid.UUID, tenant_id: uuid.UUID, *, for_update: bool = False
) -> Optional[models.Plot]:
    query = _scoped(db, models.Plot, tenant_id).filter(models.Plot.plot_identifier == plot_identifier)
    return _maybe_locked(query, for_update).one_or_none()


def list_plots(
    db: Session,
    tenant_id: uuid.UUID,
    page_request: schemas.PageRequest,
    *,
    farm_identifier: Optional[uuid.UUID] = None,
    cultivator_reference_id: Optional[uuid.UUID] = None,
) -> tuple[list[models.Plot], int]:
    query = _scoped(db, models.Plot, tenant_id)
    if farm_identifier:
        query = query.filter(models.Plot.farm_identifier == farm_identifier)
    if cultivator_reference_id:
        query = query.filter(models.Plot.cultivator_reference_id == cultivator_reference_id)
    return paginate(query, models.Plot, page_request, sortable=PLOT_SORTABLE, default_sort="plot_name")


def _spatial_sql(db: Session) -> bool:
    # PostGIS evaluates the predicates; other backends filter in shapely
    return db.get_bind().dialect.name == "postgresql"


def _sql_geometry(geometry):
    return func.ST_GeomFromText(geometry.wkt, SRID)


def intersects_clause(geometry):
    return func.ST_Intersects(models.Plot.plot_geometry, _sql_geometry(geometry))


def within_clause(geometry):
    return func.ST_Within(models.PointOfInterest.coordinates, _sql_geometry(geometry))


def find_plots_intersecting(db: Session, tenant_id: uuid.UUID, geometry) -> list[models.Plot]:
    query = _scoped(db, models.Plot, tenant_id).order_by(models.Plot.plot_name, models.Plot.plot_identifier)
    if _spatial_sql(db):
        return query.filter(intersects_clause(geometry)).all()
    return [p for p in query.all() if p.plot_geometry is not None and p.plot_geometry.intersects(geometry)]

# ---------- LandTenure ----------

def find_land_tenure(
    db: Session, plot_identifier: uuid.UUID, tenant_id: uuid.UUID
) -> Optional[models.LandTenure]:
    return (
        _scoped(db, models.LandTenure, tenant_id)
        .filter(models.LandTenure.plot_identifier == plot_identifier)
        .one_or_none()
    )

# ---------- PointOfInterest ----------

def find_poi(db: Session, poi_identifier: uuid.UUID, tenant_id: uuid.UUID) -> Optional[models.PointOfInterest]:
    return (
        _scoped(db, models.PointOfInterest, tenant_id)
        .filter(models.PointOfInterest.poi_identifier == poi_identifier)
        .one_or_none()
    )


def _pois_of_parent(
    db: Session,
    parent_identifier: uuid.UUID,
    parent_type: ParentEntityType,
    tenant_id: uuid.UUID,
    poi_type: Optional[POIType],
) -> Query:
    query = _scoped(db, models.PointOfInterest, tenant_id).filter(
        models.PointOfInterest.parent_entity_identifier == parent_identifier,
        models.PointOfInterest.parent_entity_type == parent_type,
    )
    if poi_type is not None:
        query = query.filter(models.PointOfInterest.poi_type == poi_type)
    return query


def list_pois_by_parent(
    db: Session,
    parent_identifier: uuid.UUID,
    parent_type: ParentEntityType,
    tenant_id: uuid.UUID,
    *,
    poi_type: Optional[POIType] = None,
) -> list[models.PointOfInterest]:
    query = _pois_of_parent(db, parent_identifier, parent_type, tenant_id, poi_type)
    return query.order_by(models.PointOfInterest.created_at, models.PointOfInterest.poi_identifier).all()


def page_pois_by_parent(
    db: Session,
    parent_identifier: uuid.UUID,
    parent_type: ParentEntityType,
    tenant_id: uuid.UUID,
    page_request: schemas.PageRequest,
    *,
    poi_type: Optional[POIType] = None,
) -> tuple[list[models.PointOfInterest], int]:
    query = _pois_of_parent(db, parent_identifier, parent_type, tenant_id, poi_type)
    return paginate(
        query, models.PointOfInterest, page_request, sortable=POI_SORTABLE, default_sort="created_at"
    )


def find_pois_within(db: Session, tenant_id: uuid.UUID, geometry) -> list[models.PointOfInterest]:
    query = _scoped(db, models.PointOfInterest, tenant_id).order_by(
        models.PointOfInterest.created_at, models.PointOfInterest.poi_identifier
    )
    if _spatial_sql(db):
        return query.filter(within_clause(geometry)).all()
    return [p for p in query.all() if p.coordinates is not None and p.coordinates.within(geometry)]


def delete_pois_for_parents(
    db: Session,
    tenant_id: uuid.UUID,
    *,
    farm_identifiers: Sequence[uuid.UUID] = (),
    plot_identifiers: Sequence[uuid.UUID] = (),
) -> int:
    """Remove the POIs hanging off the given farms/plots; returns how many went."""
    removed = 0
    for parent_type, identifiers in (
        (ParentEntityType.FARM, list(farm_identifiers)),
        (ParentEntityType.PLOT, list(plot_identifiers)),
    ):
        if not identifiers:
            continue
        removed += (
            _scoped(db, models.PointOfInterest, tenant_id)
            .filter(
                models.PointOfInterest.parent_entity_type == parent_type,
                models.PointOfInterest.parent_entity_identifier.in_(identifiers),
            )
            .delete(synchronize_session="fetch")
        )
    return removed
