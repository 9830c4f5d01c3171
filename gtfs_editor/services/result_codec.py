import json
from datetime import datetime, date
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import AfterValidator, Field, StringConstraints, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from gtfs_editor.core.exceptions import ValidationError
from gtfs_editor.models.table_models import (
    INTEGER_MAX, INTEGER_MIN, FieldDefinition, FieldType, TableDefinition, TableRegistry
)
from gtfs_editor.models.gtfs_tables import tableRegistry

PATTERNS = {
    FieldType.DATE: r"^\d{8}$",
    FieldType.COLOR: r"^[0-9A-Fa-f]{6}$",
    FieldType.URL: r"^\S+$",
}

def _allowedValuesValidator(allowedValues):
    def check(value: int) -> int:
        if value not in allowedValues:
            raise ValueError(f"must be one of {', '.join(str(v) for v in allowedValues)}")
        return value
    return check

@lru_cache(maxsize=None)
def adapterFor(field: FieldDefinition) -> TypeAdapter:
    if field.type in (FieldType.TEXT, FieldType.URL, FieldType.COLOR, FieldType.DATE):
        valueType = Annotated[str, StringConstraints(max_length=field.maxLength, pattern=PATTERNS.get(field.type))]
    elif field.type == FieldType.INTEGER:
        lower = INTEGER_MIN if field.minValue is None else max(field.minValue, INTEGER_MIN)
        upper = INTEGER_MAX if field.maxValue is None else min(field.maxValue, INTEGER_MAX)
        valueType = Annotated[int, Field(ge=lower, le=upper)]
    elif field.type == FieldType.ENUM:
        valueType = Annotated[int, AfterValidator(_allowedValuesValidator(field.allowedValues or ()))]
    elif field.type == FieldType.DECIMAL:
        valueType = Annotated[float, Field(ge=field.minValue, le=field.maxValue, allow_inf_nan=False)]
    elif field.type == FieldType.TIMESTAMP:
        valueType = datetime
    else:
        raise ValueError(f"Unsupported field type: {field.type}")
    return TypeAdapter(valueType)

def _isMissing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")

def _encodeValue(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class ResultCodec:
    """Maps JSON entities onto column values of a table definition and back."""

    def __init__(self, registry: TableRegistry = tableRegistry):
        self.registry = registry

    def parsePayload(self, payload: Union[str, bytes, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(payload, (str, bytes, bytearray)):
            try:
                payload = json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ValidationError(field=None, message=f"Payload is not valid JSON: {e}") from e
        if not isinstance(payload, Mapping):
            raise ValidationError(field=None, message="Payload must be a JSON object.")
        return dict(payload)

    def decodeField(self, field: FieldDefinition, value: Any) -> Any:
        if _isMissing(value):
            if field.required:
                raise ValidationError(field=field.name, message="a value is required")
            return None
        try:
            return adapterFor(field).validate_python(value)
        except PydanticValidationError as e:
            raise ValidationError(field=field.name, message=e.errors()[0]["msg"]) from e

    def decode(self, payload: Mapping[str, Any], table: TableDefinition) -> Dict[str, Any]:
        # Unknown keys (including "id" and the child array) are ignored.
        return {f.name: self.decodeField(f, payload.get(f.name)) for f in table.fields}

    def decodeChildren(
        self, payload: Mapping[str, Any], table: TableDefinition, linkValue: Any
    ) -> Optional[List[Dict[str, Any]]]:
        """Decode the nested child array of a parent payload.

        Returns None when the table declares no children or the payload leaves
        the array out, so callers can tell "no change" apart from "no children".
        Each child's foreign key is overwritten with ``linkValue``.
        """
        if table.child is None:
            return None
        arrayKey = table.child.jsonArrayKey
        items = payload.get(arrayKey)
        if items is None:
            return None
        if not isinstance(items, list):
            raise ValidationError(field=arrayKey, message="must be a JSON array")

        childTable = self.registry.childOf(table)
        children = []
        for index, item in enumerate(items):
            path = f"{arrayKey}[{index}]"
            if not isinstance(item, Mapping):
                raise ValidationError(field=path, message="must be a JSON object")
            childPayload = dict(item)
            childPayload[table.child.foreignKeyField] = linkValue
            try:
                children.append(self.decode(childPayload, childTable))
            except ValidationError as e:
                raise e.nested(path) from e
        return children

    def encode(
        self, table: TableDefinition, row: Mapping[str, Any], children: Optional[Sequence[Mapping[str, Any]]] = None
    ) -> Dict[str, Any]:
        entity = {"id": row["id"]}
        for f in table.fields:
            entity[f.name] = _encodeValue(row.get(f.name))
        if table.child is not None:
            childTable = self.registry.childOf(table)
            entity[table.child.jsonArrayKey] = [self.encode(childTable, child) for child in children or []]
        return entity

    def toJson(self, entity: Mapping[str, Any]) -> str:
        return json.dumps(entity, default=_encodeValue)

resultCodec = ResultCodec()
