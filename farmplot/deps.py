# farmplot/deps.py
import uuid
from typing import Optional

from fastapi import Header, Query

from farmplot.config import settings
from farmplot.db import get_db  # noqa: F401  (re-exported for routes and test overrides)
from farmplot.errors import ValidationFailedError
from farmplot.farm_service import FarmService
from farmplot.plot_service import PlotService
from farmplot.poi_service import PointOfInterestService
from farmplot.schemas import PageRequest

_farm_service = FarmService()
_plot_service = PlotService()
_poi_service = PointOfInterestService()


def get_tenant_id(tenant: Optional[str] = Header(None, alias=settings.tenant_header)) -> uuid.UUID:
    if not tenant:
        raise ValidationFailedError(
            "Tenant identifier is required.", [f"{settings.tenant_header}: header is missing"]
        )
    try:
        return uuid.UUID(tenant)
    except ValueError:
        raise ValidationFailedError(
            "Tenant identifier must be a UUID.", [f"{settings.tenant_header}: '{tenant}' is not a UUID"]
        ) from None


def get_page_request(
    page: int = Query(0, ge=0),
    size: int = Query(settings.default_page_size, ge=1),
    sort: Optional[str] = Query(None),
) -> PageRequest:
    return PageRequest(page=page, size=min(size, settings.max_page_size), sort=sort)


def get_farm_service() -> FarmService:
    return _farm_service


def get_plot_service() -> PlotService:
    return _plot_service


def get_poi_service() -> PointOfInterestService:
    return _poi_service
