# farmplot/schemas.py
from __future__ import annotations

import math
import uuid
from datetime import date, datetime, timezone
from typing import Annotated, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

from farmplot.enums import LandTenureType, ParentEntityType, POIType
from farmplot.geometry import encode_point, encode_polygon

T = TypeVar("T")


class ApiModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------- GeoJSON ----------

class PointGeometry(ApiModel):
    type: Literal["Point"] = "Point"
    # [longitude, latitude] or [longitude, latitude, altitude]
    coordinates: List[float] = Field(..., min_length=2, max_length=3)


class PolygonGeometry(ApiModel):
    type: Literal["Polygon"] = "Polygon"
    # rings -> positions -> [longitude, latitude]; first ring is the shell
    coordinates: List[List[List[float]]] = Field(..., min_length=1)


# ---------- Requests ----------

NameStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
CountryCode = Annotated[str, StringConstraints(strip_whitespace=True, to_upper=True, min_length=2, max_length=2)]


class CreateFarmRequest(ApiModel):
    farm_name: NameStr
    owner_reference_id: uuid.UUID
    country_code: CountryCode
    region: Optional[str] = Field(None, max_length=255)
    general_location_coordinates: Optional[PointGeometry] = None
    notes: Optional[str] = None


class UpdateFarmRequest(ApiModel):
    farm_name: Optional[NameStr] = None
    country_code: Optional[CountryCode] = None
    region: Optional[str] = Field(None, max_length=255)
    general_location_coordinates: Optional[PointGeometry] = None
    notes: Optional[str] = None
    # version the client read; a mismatch is a conflict
    version: Optional[int] = None


class CreatePlotRequest(ApiModel):
    farm_identifier: uuid.UUID
    plot_name: Optional[str] = Field(None, max_length=255)
    cultivator_reference_id: Optional[uuid.UUID] = None
    plot_geometry: PolygonGeometry


class UpdatePlotRequest(ApiModel):
    plot_name: Optional[str] = Field(None, max_length=255)
    cultivator_reference_id: Optional[uuid.UUID] = None
    plot_geometry: Optional[PolygonGeometry] = None
    version: Optional[int] = None


class CreateOrUpdateLandTenureRequest(ApiModel):
    tenure_type: LandTenureType
    lease_start_date: Optional[date] = None
    lease_end_date: Optional[date] = None
    owner_details: Optional[str] = None
    agreement_document_reference: Optional[str] = Field(None, max_length=255)
    version: Optional[int] = None

    @model_validator(mode="after")
    def _lease_dates_in_order(self):
        if self.lease_start_date and self.lease_end_date and self.lease_end_date < self.lease_start_date:
            raise ValueError("leaseEndDate must not be before leaseStartDate")
        return self


class CreatePointOfInterestRequest(ApiModel):
    poi_name: Optional[str] = Field(None, max_length=255)
    poi_type: POIType
    coordinates: PointGeometry
    notes: Optional[str] = None


class UpdatePointOfInterestRequest(ApiModel):
    poi_name: Optional[str] = Field(None, max_length=255)
    poi_type: Optional[POIType] = None
    coordinates: Optional[PointGeometry] = None
    notes: Optional[str] = None
    version: Optional[int] = None


# ---------- Responses ----------

class _AuditedResponse(ApiModel):
    tenant_id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    version: int

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        # SQLite hands back naive datetimes; they were written as UTC
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class FarmResponse(_AuditedResponse):
    farm_identifier: uuid.UUID
    farm_name: str
    owner_reference_id: uuid.UUID
    country_code: str
    region: Optional[str] = None
    general_location_coordinates: Optional[PointGeometry] = None
    notes: Optional[str] = None

    @classmethod
    def from_entity(cls, farm) -> "FarmResponse":
        return cls(
            farm_identifier=farm.farm_identifier,
            farm_name=farm.farm_name,
            owner_reference_id=farm.owner_reference_id,
            country_code=farm.country_code,
            region=farm.region,
            general_location_coordinates=encode_point(farm.general_location_coordinates),
            notes=farm.notes,
            tenant_id=farm.tenant_id,
            created_at=farm.created_at,
            updated_at=farm.updated_at,
            version=farm.version,
        )


class PlotResponse(_AuditedResponse):
    plot_identifier: uuid.UUID
    farm_identifier: uuid.UUID
    plot_name: Optional[str] = None
    cultivator_reference_id: Optional[uuid.UUID] = None
    plot_geometry: Optional[PolygonGeometry] = None
    calculated_area_hectares: Optional[float] = None
    land_tenure_type: Optional[LandTenureType] = None

    @classmethod
    def from_entity(cls, plot) -> "PlotResponse":
        return cls(
            plot_identifier=plot.plot_identifier,
            farm_identifier=plot.farm_identifier,
            plot_name=plot.plot_name,
            cultivator_reference_id=plot.cultivator_reference_id,
            plot_geometry=encode_polygon(plot.plot_geometry),
            calculated_area_hectares=plot.calculated_area_hectares,
            land_tenure_type=plot.land_tenure_type,
            tenant_id=plot.tenant_id,
            created_at=plot.created_at,
            updated_at=plot.updated_at,
            version=plot.version,
        )


class LandTenureResponse(_AuditedResponse):
    land_tenure_identifier: uuid.UUID
    plot_identifier: uuid.UUID
    tenure_type: LandTenureType
    lease_start_date: Optional[date] = None
    lease_end_date: Optional[date] = None
    owner_details: Optional[str] = None
    agreement_document_reference: Optional[str] = None

    @classmethod
    def from_entity(cls, tenure) -> "LandTenureResponse":
        return cls(
            land_tenure_identifier=tenure.land_tenure_identifier,
            plot_identifier=tenure.plot_identifier,
            tenure_type=tenure.tenure_type,
            lease_start_date=tenure.lease_start_date,
            lease_end_date=tenure.lease_end_date,
            owner_details=tenure.owner_details,
            agreement_document_reference=tenure.agreement_document_reference,
            tenant_id=tenure.tenant_id,
            created_at=tenure.created_at,
            updated_at=tenure.updated_at,
            version=tenure.version,
        )


class PointOfInterestResponse(_AuditedResponse):
    poi_identifier: uuid.UUID
    parent_entity_identifier: uuid.UUID
    parent_entity_type: ParentEntityType
    poi_name: Optional[str] = None
    poi_type: POIType
    coordinates: PointGeometry
    notes: Optional[str] = None

    @classmethod
    def from_entity(cls, poi) -> "PointOfInterestResponse":
        return cls(
            poi_identifier=poi.poi_identifier,
            parent_entity_identifier=poi.parent_entity_identifier,
            parent_entity_type=poi.parent_entity_type,
            poi_name=poi.poi_name,
            poi_type=poi.poi_type,
            coordinates=encode_point(poi.coordinates),
            notes=poi.notes,
            tenant_id=poi.tenant_id,
            created_at=poi.created_at,
            updated_at=poi.updated_at,
            version=poi.version,
        )


# ---------- Paging ----------

class PageRequest(BaseModel):
    page: int = Field(0, ge=0)
    size: int = Field(20, ge=1)
    # "field" or "field,asc|desc"; field may be camelCase or snake_case
    sort: Optional[str] = None

    @property
    def offset(self) -> int:
        return self.page * self.size


class Page(ApiModel, Generic[T]):
    content: List[T]
    total_elements: int
    total_pages: int
    number: int
    size: int

    @classmethod
    def of(cls, content: List[T], total: int, page_request: PageRequest) -> "Page[T]":
        return cls(
            content=content,
            total_elements=total,
            total_pages=math.ceil(total / page_request.size) if total else 0,
            number=page_request.page,
            size=page_request.size,
        )


# ---------- Errors ----------

class ErrorResponse(ApiModel):
    timestamp: datetime
    status: int
    error: str
    message: str
    path: str
    validation_errors: Optional[List[str]] = None
