# farmplot/main.py
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from farmplot import schemas
from farmplot.config import settings
from farmplot.db import check_db_connection, init_db
from farmplot.deps import (
    get_db,
    get_farm_service,
    get_page_request,
    get_plot_service,
    get_poi_service,
    get_tenant_id,
)
from farmplot.enums import ParentEntityType, POIType
from farmplot.errors import ConflictError, ResourceNotFoundError, ValidationFailedError
from farmplot.farm_service import FarmService
from farmplot.geometry import parse_bbox
from farmplot.plot_service import PlotService
from farmplot.poi_service import PointOfInterestService

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s", settings.app_name)
    init_db()
    if not check_db_connection():
        logger.error("Database connection FAILED")
    yield
    logger.info("Shutting down %s", settings.app_name)


app = FastAPI(title=settings.app_name, lifespan=lifespan)


# ---------- error translation ----------

def _error_body(status: HTTPStatus, message: str, request: Request, errors: Optional[List[str]] = None) -> JSONResponse:
    body = schemas.ErrorResponse(
        timestamp=datetime.now(timezone.utc),
        status=status.value,
        error=status.phrase,
        message=message,
        path=request.url.path,
        validation_errors=errors,
    )
    return JSONResponse(
        status_code=status.value,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def _field_error(err: dict) -> str:
    # drop the "body"/"query"/... prefix FastAPI puts in front of the field path
    loc = [str(part) for part in err.get("loc", ())[1:]] or [str(p) for p in err.get("loc", ())]
    return f"{'.'.join(loc)}: {err.get('msg')}"


@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(request: Request, exc: ResourceNotFoundError):
    logger.warning("%s %s -> %s", request.method, request.url.path, exc.message)
    return _error_body(HTTPStatus.NOT_FOUND, exc.message, request)


@app.exception_handler(ValidationFailedError)
async def validation_failed_handler(request: Request, exc: ValidationFailedError):
    logger.warning("%s %s -> %s", request.method, request.url.path, exc.message)
    return _error_body(HTTPStatus.BAD_REQUEST, exc.message, request, exc.errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [_field_error(e) for e in exc.errors()]
    logger.warning("%s %s -> invalid request: %s", request.method, request.url.path, errors)
    return _error_body(HTTPStatus.BAD_REQUEST, "Validation failed", request, errors)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    logger.warning("%s %s -> %s", request.method, request.url.path, exc.message)
    return _error_body(HTTPStatus.CONFLICT, exc.message, request)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_body(HTTPStatus.INTERNAL_SERVER_ERROR, "An unexpected error occurred.", request)


# ---------- health ----------

@app.get("/health")
def health(db: Session = Depends(get_db)):
    db_ok = check_db_connection(db)
    return {
        "status": "healthy" if db_ok else "unhealthy",
        "database": "connected" if db_ok else "disconnected",
    }


# ---------- farms ----------

@app.post("/farms", response_model=schemas.FarmResponse, status_code=201)
def create_farm(
    request: schemas.CreateFarmRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: FarmService = Depends(get_farm_service),
):
    return svc.create(request, tenant_id, db)


@app.get("/farms", response_model=schemas.Page[schemas.FarmResponse])
def list_farms(
    name: Optional[str] = None,
    country_code: Optional[str] = Query(None, alias="countryCode"),
    owner_reference_id: Optional[uuid.UUID] = Query(None, alias="ownerReferenceId"),
    page_request: schemas.PageRequest = Depends(get_page_request),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: FarmService = Depends(get_farm_service),
):
    return svc.list(
        tenant_id,
        page_request,
        db,
        name=name,
        country_code=country_code,
        owner_reference_id=owner_reference_id,
    )


@app.get("/farms/{farm_id}", response_model=schemas.FarmResponse)
def get_farm(
    farm_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: FarmService = Depends(get_farm_service),
):
    return svc.get(farm_id, tenant_id, db)


@app.put("/farms/{farm_id}", response_model=schemas.FarmResponse)
def update_farm(
    farm_id: uuid.UUID,
    request: schemas.UpdateFarmRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: FarmService = Depends(get_farm_service),
):
    return svc.update(farm_id, request, tenant_id, db)


@app.delete("/farms/{farm_id}", status_code=204)
def delete_farm(
    farm_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: FarmService = Depends(get_farm_service),
):
    svc.delete(farm_id, tenant_id, db)
    return Response(status_code=204)


@app.post("/farms/{farm_id}/pois", response_model=schemas.PointOfInterestResponse, status_code=201)
def create_farm_poi(
    farm_id: uuid.UUID,
    request: schemas.CreatePointOfInterestRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    return svc.create(farm_id, ParentEntityType.FARM, tenant_id, request, db)


@app.get("/farms/{farm_id}/pois", response_model=List[schemas.PointOfInterestResponse])
def list_farm_pois(
    farm_id: uuid.UUID,
    poi_type: Optional[POIType] = Query(None, alias="poiType"),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    return svc.list_by_parent(farm_id, ParentEntityType.FARM, tenant_id, db, poi_type=poi_type)


# ---------- plots ----------

@app.post("/plots", response_model=schemas.PlotResponse, status_code=201)
def create_plot(
    request: schemas.CreatePlotRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    return svc.create(request, tenant_id, db)


@app.get("/plots", response_model=schemas.Page[schemas.PlotResponse])
def list_plots(
    farm_identifier: Optional[uuid.UUID] = Query(None, alias="farmIdentifier"),
    cultivator_reference_id: Optional[uuid.UUID] = Query(None, alias="cultivatorReferenceId"),
    page_request: schemas.PageRequest = Depends(get_page_request),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    if farm_identifier is not None:
        return svc.list_by_farm(
            farm_identifier, tenant_id, page_request, db, cultivator_reference_id=cultivator_reference_id
        )
    return svc.list(tenant_id, page_request, db, cultivator_reference_id=cultivator_reference_id)


# declared before /plots/{plot_id} so "intersecting" is not read as an id
@app.get("/plots/intersecting", response_model=List[schemas.PlotResponse])
def plots_intersecting(
    bbox: Optional[str] = None,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    return svc.find_intersecting(parse_bbox(bbox), tenant_id, db)


@app.get("/plots/{plot_id}", response_model=schemas.PlotResponse)
def get_plot(
    plot_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    return svc.get(plot_id, tenant_id, db)


@app.put("/plots/{plot_id}", response_model=schemas.PlotResponse)
def update_plot(
    plot_id: uuid.UUID,
    request: schemas.UpdatePlotRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    return svc.update(plot_id, request, tenant_id, db)


@app.delete("/plots/{plot_id}", status_code=204)
def delete_plot(
    plot_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    svc.delete(plot_id, tenant_id, db)
    return Response(status_code=204)


@app.get("/plots/{plot_id}/land-tenure", response_model=schemas.LandTenureResponse)
def get_land_tenure(
    plot_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    return svc.get_land_tenure(plot_id, tenant_id, db)


@app.put("/plots/{plot_id}/land-tenure", response_model=schemas.LandTenureResponse)
def upsert_land_tenure(
    plot_id: uuid.UUID,
    request: schemas.CreateOrUpdateLandTenureRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    return svc.upsert_land_tenure(plot_id, request, tenant_id, db)


@app.delete("/plots/{plot_id}/land-tenure", status_code=204)
def delete_land_tenure(
    plot_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PlotService = Depends(get_plot_service),
):
    svc.delete_land_tenure(plot_id, tenant_id, db)
    return Response(status_code=204)


@app.post("/plots/{plot_id}/pois", response_model=schemas.PointOfInterestResponse, status_code=201)
def create_plot_poi(
    plot_id: uuid.UUID,
    request: schemas.CreatePointOfInterestRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    return svc.create(plot_id, ParentEntityType.PLOT, tenant_id, request, db)


@app.get("/plots/{plot_id}/pois", response_model=List[schemas.PointOfInterestResponse])
def list_plot_pois(
    plot_id: uuid.UUID,
    poi_type: Optional[POIType] = Query(None, alias="poiType"),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    return svc.list_by_parent(plot_id, ParentEntityType.PLOT, tenant_id, db, poi_type=poi_type)


# ---------- points of interest ----------

@app.get("/pois/within", response_model=List[schemas.PointOfInterestResponse])
def pois_within(
    bbox: Optional[str] = None,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    return svc.find_within(parse_bbox(bbox), tenant_id, db)


@app.get("/pois/{poi_id}", response_model=schemas.PointOfInterestResponse)
def get_poi(
    poi_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    return svc.get(poi_id, tenant_id, db)


@app.put("/pois/{poi_id}", response_model=schemas.PointOfInterestResponse)
def update_poi(
    poi_id: uuid.UUID,
    request: schemas.UpdatePointOfInterestRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    return svc.update(poi_id, request, tenant_id, db)


@app.delete("/pois/{poi_id}", status_code=204)
def delete_poi(
    poi_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    svc: PointOfInterestService = Depends(get_poi_service),
):
    svc.delete(poi_id, tenant_id, db)
    return Response(status_code=204)
