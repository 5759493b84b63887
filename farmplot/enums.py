# farmplot/enums.py
from enum import Enum


class LandTenureType(str, Enum):
    OWNED = "OWNED"
    LEASED = "LEASED"
    COMMUNAL_ACCESS = "COMMUNAL_ACCESS"
    CUSTOM_AGREEMENT = "CUSTOM_AGREEMENT"
    UNKNOWN = "UNKNOWN"


class POIType(str, Enum):
    WATER_SOURCE = "WATER_SOURCE"
    BUILDING = "BUILDING"
    ACCESS_POINT = "ACCESS_POINT"
    HAZARD = "HAZARD"
    SOIL_SENSOR = "SOIL_SENSOR"
    WEATHER_STATION = "WEATHER_STATION"
    # fence line ends, irrigation valves and the like
    INFRASTRUCTURE = "INFRASTRUCTURE"
    OTHER = "OTHER"
    UNKNOWN = "UNKNOWN"


class ParentEntityType(str, Enum):
    FARM = "FARM"
    PLOT = "PLOT"
