# farmplot/farm_service.py
from __future__ import annotations

import logging
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from farmplot import crud, models, schemas
from farmplot.errors import ResourceNotFoundError
from farmplot.geometry import decode_point

logger = logging.getLogger(__name__)

FindFarm = Callable[..., Optional[models.Farm]]

# absent in an update request means "clear", not "leave as is"
FARM_CLEARED_WHEN_ABSENT = frozenset({"notes"})


class FarmService:
    def __init__(self, *, find: FindFarm | None = None):
        # DI
        self._find = find or crud.find_farm

    def _require(self, farm_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session, **kw) -> models.Farm:
        farm = self._find(db, farm_identifier, tenant_id, **kw)
        if farm is None:
            raise ResourceNotFoundError("Farm", farm_identifier)
        return farm

    @staticmethod
    def _update_values(request: schemas.UpdateFarmRequest) -> dict:
        return {
            "farm_name": request.farm_name,
            "country_code": request.country_code,
            "region": request.region,
            "general_location_coordinates": decode_point(request.general_location_coordinates),
            "notes": request.notes,
        }

    def create(self, request: schemas.CreateFarmRequest, tenant_id: uuid.UUID, db: Session) -> schemas.FarmResponse:
        farm = models.Farm(
            farm_name=request.farm_name,
            owner_reference_id=request.owner_reference_id,
            country_code=request.country_code,
            region=request.region,
            general_location_coordinates=decode_point(request.general_location_coordinates),
            notes=request.notes,
            tenant_id=tenant_id,
        )
        crud.add(db, farm)
        crud.commit(db)
        db.refresh(farm)
        logger.info("Created farm %s for tenant %s", farm.farm_identifier, tenant_id)
        return schemas.FarmResponse.from_entity(farm)

    def get(self, farm_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> schemas.FarmResponse:
        return schemas.FarmResponse.from_entity(self._require(farm_identifier, tenant_id, db))

    def list(
        self,
        tenant_id: uuid.UUID,
        page_request: schemas.PageRequest,
        db: Session,
        *,
        name: Optional[str] = None,
        country_code: Optional[str] = None,
        owner_reference_id: Optional[uuid.UUID] = None,
    ) -> schemas.Page[schemas.FarmResponse]:
        farms, total = crud.list_farms(
            db,
            tenant_id,
            page_request,
            name=name,
            country_code=country_code,
            owner_reference_id=owner_reference_id,
        )
        return schemas.Page[schemas.FarmResponse].of(
            [schemas.FarmResponse.from_entity(f) for f in farms], total, page_request
        )

    def update(
        self,
        farm_identifier: uuid.UUID,
        request: schemas.UpdateFarmRequest,
        tenant_id: uuid.UUID,
        db: Session,
    ) -> schemas.FarmResponse:
        farm = self._require(farm_identifier, tenant_id, db, for_update=True)
        crud.check_version(farm, request.version, "Farm")
        crud.apply_partial_update(farm, self._update_values(request), cleared_when_absent=FARM_CLEARED_WHEN_ABSENT)
        crud.commit(db)
        db.refresh(farm)
        logger.info("Updated farm %s (version %s) for tenant %s", farm_identifier, farm.version, tenant_id)
        return schemas.FarmResponse.from_entity(farm)

    def delete(self, farm_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> None:
        """Remove the farm with its plots, their land tenures and every POI hanging off any of them."""
        farm = self._require(farm_identifier, tenant_id, db, for_update=True)
        plot_ids = [p.plot_identifier for p in farm.plots]
        removed_pois = crud.delete_pois_for_parents(
            db, tenant_id, farm_identifiers=[farm_identifier], plot_identifiers=plot_ids
        )
        crud.delete(db, farm)
        crud.commit(db)
        logger.info(
            "Deleted farm %s for tenant %s (%d plots, %d points of interest)",
            farm_identifier, tenant_id, len(plot_ids), removed_pois,
        )
