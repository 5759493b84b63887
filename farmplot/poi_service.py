# farmplot/poi_service.py
from __future__ import annotations

import logging
import uuid
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from farmplot import crud, models, schemas
from farmplot.enums import ParentEntityType, POIType
from farmplot.errors import ResourceNotFoundError, ValidationFailedError
from farmplot.geometry import decode_point

logger = logging.getLogger(__name__)

# parent type -> (resource name for errors, tenant-scoped lookup)
ParentLookup = Tuple[str, Callable[..., object]]

DEFAULT_PARENT_LOOKUPS: Dict[ParentEntityType, ParentLookup] = {
    ParentEntityType.FARM: ("Farm", crud.find_farm),
    ParentEntityType.PLOT: ("Plot", crud.find_plot),
}


def _parent_type(value) -> ParentEntityType:
    try:
        return ParentEntityType(value)
    except ValueError:
        raise ValidationFailedError(
            f"Invalid parent entity type: {value}",
            [f"parentEntityType: must be one of {[t.value for t in ParentEntityType]}"],
        ) from None


def _decoded_point(dto):
    point = decode_point(dto)
    if point is None:
        raise ValidationFailedError(
            "Point of interest coordinates are required.",
            ["coordinates: expected [longitude, latitude]"],
        )
    return point


class PointOfInterestService:
    def __init__(self, *, parent_lookups: Dict[ParentEntityType, ParentLookup] | None = None):
        # DI
        self._parent_lookups = parent_lookups or DEFAULT_PARENT_LOOKUPS

    def _require_parent(
        self, parent_identifier: uuid.UUID, parent_type, tenant_id: uuid.UUID, db: Session, **kw
    ) -> ParentEntityType:
        parent_type = _parent_type(parent_type)
        if parent_type not in self._parent_lookups:
            raise ValidationFailedError(f"Invalid parent entity type: {parent_type.value}")
        resource, lookup = self._parent_lookups[parent_type]
        if lookup(db, parent_identifier, tenant_id, **kw) is None:
            raise ResourceNotFoundError(resource, parent_identifier)
        return parent_type

    def _require_poi(self, poi_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> models.PointOfInterest:
        poi = crud.find_poi(db, poi_identifier, tenant_id)
        if poi is None:
            raise ResourceNotFoundError("PointOfInterest", poi_identifier)
        return poi

    def create(
        self,
        parent_identifier: uuid.UUID,
        parent_type,
        tenant_id: uuid.UUID,
        request: schemas.CreatePointOfInterestRequest,
        db: Session,
    ) -> schemas.PointOfInterestResponse:
        parent_type = self._require_parent(parent_identifier, parent_type, tenant_id, db, for_update=True)
        poi = models.PointOfInterest(
            parent_entity_identifier=parent_identifier,
            parent_entity_type=parent_type,
            poi_name=request.poi_name,
            poi_type=request.poi_type,
            coordinates=_decoded_point(request.coordinates),
            notes=request.notes,
            tenant_id=tenant_id,
        )
        crud.add(db, poi)
        crud.commit(db)
        db.refresh(poi)
        logger.info(
            "Created point of interest %s (%s) on %s %s for tenant %s",
            poi.poi_identifier, poi.poi_type.value, parent_type.value, parent_identifier, tenant_id,
        )
        return schemas.PointOfInterestResponse.from_entity(poi)

    def get(self, poi_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> schemas.PointOfInterestResponse:
        return schemas.PointOfInterestResponse.from_entity(self._require_poi(poi_identifier, tenant_id, db))

    def list_by_parent(
        self,
        parent_identifier: uuid.UUID,
        parent_type,
        tenant_id: uuid.UUID,
        db: Session,
        *,
        poi_type: Optional[POIType] = None,
    ) -> list[schemas.PointOfInterestResponse]:
        parent_type = self._require_parent(parent_identifier, parent_type, tenant_id, db)
        pois = crud.list_pois_by_parent(db, parent_identifier, parent_type, tenant_id, poi_type=poi_type)
        return [schemas.PointOfInterestResponse.from_entity(p) for p in pois]

    def list_by_parent_paginated(
        self,
        parent_identifier: uuid.UUID,
        parent_type,
        tenant_id: uuid.UUID,
        page_request: schemas.PageRequest,
        db: Session,
        *,
        poi_type: Optional[POIType] = None,
    ) -> schemas.Page[schemas.PointOfInterestResponse]:
        parent_type = self._require_parent(parent_identifier, parent_type, tenant_id, db)
        pois, total = crud.page_pois_by_parent(
            db, parent_identifier, parent_type, tenant_id, page_request, poi_type=poi_type
        )
        return schemas.Page[schemas.PointOfInterestResponse].of(
            [schemas.PointOfInterestResponse.from_entity(p) for p in pois], total, page_request
        )

    def update(
        self,
        poi_identifier: uuid.UUID,
        request: schemas.UpdatePointOfInterestRequest,
        tenant_id: uuid.UUID,
        db: Session,
    ) -> schemas.PointOfInterestResponse:
        poi = self._require_poi(poi_identifier, tenant_id, db)
        crud.check_version(poi, request.version, "PointOfInterest")
        # parent and tenant are never touched here
        crud.apply_partial_update(
            poi,
            {
                "poi_name": request.poi_name,
                "poi_type": request.poi_type,
                "coordinates": decode_point(request.coordinates),
                "notes": request.notes,
            },
        )
        crud.commit(db)
        db.refresh(poi)
        logger.info("Updated point of interest %s (version %s) for tenant %s", poi_identifier, poi.version, tenant_id)
        return schemas.PointOfInterestResponse.from_entity(poi)

    def delete(self, poi_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> None:
        poi = self._require_poi(poi_identifier, tenant_id, db)
        crud.delete(db, poi)
        crud.commit(db)
        logger.info("Deleted point of interest %s for tenant %s", poi_identifier, tenant_id)

    def find_within(self, bbox, tenant_id: uuid.UUID, db: Session) -> list[schemas.PointOfInterestResponse]:
        return [schemas.PointOfInterestResponse.from_entity(p) for p in crud.find_pois_within(db, tenant_id, bbox)]
