# farmplot/plot_service.py
"""
Plots and the land tenure record hanging off each plot.

Plot.land_tenure_type mirrors LandTenure.tenure_type. Only the tenure
operations in this module write it, and they do so in the same commit as
the tenure row itself.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from farmplot import crud, models, schemas
from farmplot.errors import ResourceNotFoundError, ValidationFailedError
from farmplot.geometry import decode_polygon

logger = logging.getLogger(__name__)


def _decoded_polygon(dto):
    polygon = decode_polygon(dto)
    if polygon is None:
        raise ValidationFailedError(
            "Plot geometry is not a usable polygon.",
            ["plotGeometry: the outer ring needs at least 3 distinct positions"],
        )
    return polygon


def _sync_tenure_type(plot: models.Plot, tenure: Optional[models.LandTenure]) -> None:
    plot.land_tenure_type = tenure.tenure_type if tenure is not None else None


def _check_lease_dates(tenure: models.LandTenure) -> None:
    """Lease order on the merged record, stored dates included."""
    start, end = tenure.lease_start_date, tenure.lease_end_date
    if start is not None and end is not None and end < start:
        raise ValidationFailedError(
            "leaseEndDate must not be before leaseStartDate",
            [f"leaseEndDate: {end.isoformat()} is before leaseStartDate {start.isoformat()}"],
        )


class PlotService:
    def _require_farm(self, farm_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session, **kw) -> models.Farm:
        farm = crud.find_farm(db, farm_identifier, tenant_id, **kw)
        if farm is None:
            raise ResourceNotFoundError("Farm", farm_identifier)
        return farm

    def _require_plot(self, plot_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session, **kw) -> models.Plot:
        plot = crud.find_plot(db, plot_identifier, tenant_id, **kw)
        if plot is None:
            raise ResourceNotFoundError("Plot", plot_identifier)
        return plot

    def _require_tenure_plot(self, plot_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session, **kw) -> models.Plot:
        plot = crud.find_plot(db, plot_identifier, tenant_id, **kw)
        if plot is None:
            raise ResourceNotFoundError("LandTenure for Plot", plot_identifier)
        return plot

    # ---------- plots ----------

    def create(self, request: schemas.CreatePlotRequest, tenant_id: uuid.UUID, db: Session) -> schemas.PlotResponse:
        farm = self._require_farm(request.farm_identifier, tenant_id, db, for_update=True)
        plot = models.Plot(
            farm_identifier=farm.farm_identifier,
            plot_name=request.plot_name,
            cultivator_reference_id=request.cultivator_reference_id,
            plot_geometry=_decoded_polygon(request.plot_geometry),
            tenant_id=farm.tenant_id,
        )
        crud.add(db, plot)
        crud.commit(db)
        # re-read so the area computed on insert comes back
        db.refresh(plot)
        logger.info(
            "Created plot %s on farm %s for tenant %s (%.4f ha)",
            plot.plot_identifier, farm.farm_identifier, tenant_id, plot.calculated_area_hectares or 0.0,
        )
        return schemas.PlotResponse.from_entity(plot)

    def get(self, plot_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> schemas.PlotResponse:
        return schemas.PlotResponse.from_entity(self._require_plot(plot_identifier, tenant_id, db))

    def list(
        self,
        tenant_id: uuid.UUID,
        page_request: schemas.PageRequest,
        db: Session,
        *,
        cultivator_reference_id: Optional[uuid.UUID] = None,
    ) -> schemas.Page[schemas.PlotResponse]:
        plots, total = crud.list_plots(db, tenant_id, page_request, cultivator_reference_id=cultivator_reference_id)
        return schemas.Page[schemas.PlotResponse].of(
            [schemas.PlotResponse.from_entity(p) for p in plots], total, page_request
        )

    def list_by_farm(
        self,
        farm_identifier: uuid.UUID,
        tenant_id: uuid.UUID,
        page_request: schemas.PageRequest,
        db: Session,
        *,
        cultivator_reference_id: Optional[uuid.UUID] = None,
    ) -> schemas.Page[schemas.PlotResponse]:
        if not crud.farm_exists(db, farm_identifier, tenant_id):
            raise ResourceNotFoundError("Farm", farm_identifier)
        plots, total = crud.list_plots(
            db,
            tenant_id,
            page_request,
            farm_identifier=farm_identifier,
            cultivator_reference_id=cultivator_reference_id,
        )
        return schemas.Page[schemas.PlotResponse].of(
            [schemas.PlotResponse.from_entity(p) for p in plots], total, page_request
        )

    def update(
        self,
        plot_identifier: uuid.UUID,
        request: schemas.UpdatePlotRequest,
        tenant_id: uuid.UUID,
        db: Session,
    ) -> schemas.PlotResponse:
        plot = self._require_plot(plot_identifier, tenant_id, db, for_update=True)
        crud.check_version(plot, request.version, "Plot")
        values = {
            "plot_name": request.plot_name,
            "cultivator_reference_id": request.cultivator_reference_id,
            "plot_geometry": (
                _decoded_polygon(request.plot_geometry) if request.plot_geometry is not None else None
            ),
        }
        crud.apply_partial_update(plot, values)
        crud.commit(db)
        db.refresh(plot)
        logger.info("Updated plot %s (version %s) for tenant %s", plot_identifier, plot.version, tenant_id)
        return schemas.PlotResponse.from_entity(plot)

    def delete(self, plot_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> None:
        plot = self._require_plot(plot_identifier, tenant_id, db, for_update=True)
        removed_pois = crud.delete_pois_for_parents(db, tenant_id, plot_identifiers=[plot_identifier])
        crud.delete(db, plot)
        crud.commit(db)
        logger.info(
            "Deleted plot %s for tenant %s (%d points of interest)", plot_identifier, tenant_id, removed_pois
        )

    def find_intersecting(self, bbox, tenant_id: uuid.UUID, db: Session) -> list[schemas.PlotResponse]:
        return [schemas.PlotResponse.from_entity(p) for p in crud.find_plots_intersecting(db, tenant_id, bbox)]

    # ---------- land tenure ----------

    def get_land_tenure(
        self, plot_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session
    ) -> schemas.LandTenureResponse:
        self._require_tenure_plot(plot_identifier, tenant_id, db)
        tenure = crud.find_land_tenure(db, plot_identifier, tenant_id)
        if tenure is None:
            raise ResourceNotFoundError("LandTenure for Plot", plot_identifier)
        return schemas.LandTenureResponse.from_entity(tenure)

    def upsert_land_tenure(
        self,
        plot_identifier: uuid.UUID,
        request: schemas.CreateOrUpdateLandTenureRequest,
        tenant_id: uuid.UUID,
        db: Session,
    ) -> schemas.LandTenureResponse:
        plot = self._require_plot(plot_identifier, tenant_id, db, for_update=True)
        tenure = crud.find_land_tenure(db, plot_identifier, tenant_id)
        values = request.model_dump(exclude={"version"})
        if tenure is None:
            tenure = models.LandTenure(plot_identifier=plot.plot_identifier, tenant_id=plot.tenant_id, **values)
            plot.land_tenure = tenure
            action = "Created"
        else:
            crud.check_version(tenure, request.version, "LandTenure")
            crud.apply_partial_update(tenure, values)
            action = "Updated"
        try:
            _check_lease_dates(tenure)
        except ValidationFailedError:
            # discard the staged merge
            db.rollback()
            raise
        _sync_tenure_type(plot, tenure)
        crud.commit(db)
        db.refresh(tenure)
        logger.info(
            "%s land tenure %s (%s) for plot %s, tenant %s",
            action, tenure.land_tenure_identifier, tenure.tenure_type.value, plot_identifier, tenant_id,
        )
        return schemas.LandTenureResponse.from_entity(tenure)

    def delete_land_tenure(self, plot_identifier: uuid.UUID, tenant_id: uuid.UUID, db: Session) -> None:
        plot = self._require_tenure_plot(plot_identifier, tenant_id, db, for_update=True)
        tenure = crud.find_land_tenure(db, plot_identifier, tenant_id)
        if tenure is None:
            raise ResourceNotFoundError("LandTenure for Plot", plot_identifier)
        plot.land_tenure = None
        _sync_tenure_type(plot, None)
        crud.commit(db)
        logger.info("Deleted land tenure of plot %s for tenant %s", plot_identifier, tenant_id)
