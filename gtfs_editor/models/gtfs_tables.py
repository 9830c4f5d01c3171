"""Declared GTFS tables that can be edited inside a namespace.

Field order matches the column order of the physical tables. Fields the editor
needs to save partially complete entities are declared optional even where the
GTFS reference marks them required; feed validation happens elsewhere.
"""

from typing import Optional, Tuple

from gtfs_editor.models.table_models import (
    FieldDefinition, FieldType, ChildRelationship, TableDefinition, TableRegistry
)

ROUTE_TYPES: Tuple[int, ...] = (0, 1, 2, 3, 4, 5, 6, 7, 11, 12)

def _text(name: str, required: bool = False, maxLength: Optional[int] = None) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.TEXT, required=required, maxLength=maxLength)

def _url(name: str, required: bool = False) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.URL, required=required)

def _color(name: str) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.COLOR)

def _date(name: str, required: bool = False) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.DATE, required=required)

def _integer(
    name: str, required: bool = False, minValue: Optional[float] = None, maxValue: Optional[float] = None
) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.INTEGER, required=required, minValue=minValue, maxValue=maxValue)

def _decimal(
    name: str, required: bool = False, minValue: Optional[float] = None, maxValue: Optional[float] = None
) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.DECIMAL, required=required, minValue=minValue, maxValue=maxValue)

def _enum(name: str, allowedValues: Tuple[int, ...], required: bool = False) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.ENUM, required=required, allowedValues=allowedValues)


AGENCY = TableDefinition(
    name="agency",
    keyField="agency_id",
    fields=(
        _text("agency_id"),
        _text("agency_name", required=True),
        _url("agency_url", required=True),
        _text("agency_timezone", required=True),
        _text("agency_lang", maxLength=35),
        _text("agency_phone"),
        _url("agency_fare_url"),
        _text("agency_email"),
        _url("agency_branding_url"),
    ),
)

CALENDAR = TableDefinition(
    name="calendar",
    keyField="service_id",
    fields=(
        _text("service_id", required=True),
        _enum("monday", (0, 1), required=True),
        _enum("tuesday", (0, 1), required=True),
        _enum("wednesday", (0, 1), required=True),
        _enum("thursday", (0, 1), required=True),
        _enum("friday", (0, 1), required=True),
        _enum("saturday", (0, 1), required=True),
        _enum("sunday", (0, 1), required=True),
        _date("start_date", required=True),
        _date("end_date", required=True),
        _text("description"),
    ),
)

CALENDAR_DATES = TableDefinition(
    name="calendar_dates",
    fields=(
        _text("service_id", required=True),
        _date("date", required=True),
        _enum("exception_type", (1, 2), required=True),
    ),
)

FARE_RULES = TableDefinition(
    name="fare_rules",
    fields=(
        _text("fare_id", required=True),
        _text("route_id"),
        _text("origin_id"),
        _text("destination_id"),
        _text("contains_id"),
    ),
)

FARE_ATTRIBUTES = TableDefinition(
    name="fare_attributes",
    keyField="fare_id",
    fields=(
        _text("fare_id", required=True),
        _decimal("price", required=True, minValue=0),
        _text("currency_type", maxLength=3),
        _enum("payment_method", (0, 1)),
        _enum("transfers", (0, 1, 2)),
        _text("agency_id"),
        _integer("transfer_duration", minValue=0),
    ),
    child=ChildRelationship(childTable="fare_rules", foreignKeyField="fare_id", jsonArrayKey="fare_rules"),
)

FEED_INFO = TableDefinition(
    name="feed_info",
    fields=(
        _text("feed_id"),
        _text("feed_publisher_name", required=True),
        _url("feed_publisher_url"),
        _text("feed_lang", required=True, maxLength=35),
        _date("feed_start_date"),
        _date("feed_end_date"),
        _text("feed_version"),
        _text("feed_contact_email"),
        _url("feed_contact_url"),
        _text("default_lang", maxLength=35),
        _color("default_route_color"),
        _enum("default_route_type", ROUTE_TYPES),
    ),
)

ROUTES = TableDefinition(
    name="routes",
    keyField="route_id",
    fields=(
        _text("route_id", required=True),
        _text("agency_id"),
        _text("route_short_name"),
        _text("route_long_name"),
        _text("route_desc"),
        _enum("route_type", ROUTE_TYPES, required=True),
        _url("route_url"),
        _url("route_branding_url"),
        _color("route_color"),
        _color("route_text_color"),
        _integer("route_sort_order", minValue=0),
        _enum("continuous_pickup", (0, 1, 2, 3)),
        _enum("continuous_drop_off", (0, 1, 2, 3)),
        _enum("publicly_visible", (0, 1)),
        _enum("wheelchair_accessible", (0, 1, 2)),
        _enum("status", (0, 1, 2)),
    ),
)

STOPS = TableDefinition(
    name="stops",
    keyField="stop_id",
    fields=(
        _text("stop_id", required=True),
        _text("stop_code"),
        _text("stop_name"),
        _text("stop_desc"),
        _decimal("stop_lat", minValue=-90, maxValue=90),
        _decimal("stop_lon", minValue=-180, maxValue=180),
        _text("zone_id"),
        _url("stop_url"),
        _enum("location_type", (0, 1, 2, 3, 4)),
        _text("parent_station"),
        _text("stop_timezone"),
        _enum("wheelchair_boarding", (0, 1, 2)),
        _text("platform_code"),
    ),
)

TRIPS = TableDefinition(
    name="trips",
    keyField="trip_id",
    fields=(
        _text("trip_id", required=True),
        _text("route_id", required=True),
        _text("service_id", required=True),
        _text("trip_headsign"),
        _text("trip_short_name"),
        _enum("direction_id", (0, 1)),
        _text("block_id"),
        _text("shape_id"),
        _enum("wheelchair_accessible", (0, 1, 2)),
        _enum("bikes_allowed", (0, 1, 2)),
    ),
)

TRANSFERS = TableDefinition(
    name="transfers",
    fields=(
        _text("from_stop_id", required=True),
        _text("to_stop_id", required=True),
        _enum("transfer_type", (0, 1, 2, 3), required=True),
        _integer("min_transfer_time", minValue=0),
    ),
)

GTFS_TABLES: Tuple[TableDefinition, ...] = (
    AGENCY,
    CALENDAR,
    CALENDAR_DATES,
    FARE_ATTRIBUTES,
    FARE_RULES,
    FEED_INFO,
    ROUTES,
    STOPS,
    TRIPS,
    TRANSFERS,
)

tableRegistry = TableRegistry(GTFS_TABLES)
