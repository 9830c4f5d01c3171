from enum import Enum
from typing import Tuple, Optional, Dict, Iterator
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

from gtfs_editor.core.exceptions import UnknownTableError

# Range of the 32-bit Integer columns, ids included.
INTEGER_MIN = -2**31
INTEGER_MAX = 2**31 - 1

class FieldType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    TIMESTAMP = "timestamp"
    DATE = "date" # GTFS service date, YYYYMMDD
    ENUM = "enum" # integer code restricted to allowedValues
    COLOR = "color" # six hex digits, no leading '#'
    URL = "url"

class FieldDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    maxLength: Optional[int] = None
    minValue: Optional[float] = None
    maxValue: Optional[float] = None
    allowedValues: Optional[Tuple[int, ...]] = None

    @property
    def nullable(self) -> bool:
        return not self.required

class ChildRelationship(BaseModel):
    model_config = ConfigDict(frozen=True)

    childTable: str
    foreignKeyField: str
    jsonArrayKey: str

class TableDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fields: Tuple[FieldDefinition, ...]
    keyField: Optional[str] = None
    child: Optional[ChildRelationship] = None

    @property
    def fieldNames(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def getField(self, name: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

class RegistryError(ValueError):
    pass

class TableRegistry:
    """Read-only index of every editable table, checked for consistency when built."""

    def __init__(self, tables: Tuple[TableDefinition, ...]):
        index: Dict[str, TableDefinition] = {}
        for table in tables:
            if table.name in index:
                raise RegistryError(f"Table '{table.name}' declared twice.")
            if len(set(table.fieldNames)) != len(table.fields):
                raise RegistryError(f"Table '{table.name}' declares a field twice.")
            if "id" in table.fieldNames:
                raise RegistryError(f"Table '{table.name}' must not declare the identity field 'id'.")
            index[table.name] = table

        for table in tables:
            if table.keyField and table.getField(table.keyField) is None:
                raise RegistryError(f"Key field '{table.keyField}' is not a field of '{table.name}'.")
            if table.child is None:
                continue
            childTable = index.get(table.child.childTable)
            if childTable is None:
                raise RegistryError(f"Child table '{table.child.childTable}' of '{table.name}' is not declared.")
            if childTable.child is not None:
                raise RegistryError(f"Child table '{childTable.name}' cannot declare children of its own.")
            if childTable.getField(table.child.foreignKeyField) is None:
                raise RegistryError(
                    f"Foreign key '{table.child.foreignKeyField}' is not a field of '{childTable.name}'."
                )
            if table.keyField != table.child.foreignKeyField:
                raise RegistryError(
                    f"Table '{table.name}' links children by '{table.child.foreignKeyField}' "
                    f"but its key field is '{table.keyField}'."
                )

        self._tables = tuple(tables)
        self._index = MappingProxyType(index)

    def lookup(self, tableName: str) -> TableDefinition:
        table = self._index.get(tableName)
        if table is None:
            raise UnknownTableError(tableName)
        return table

    def resolve(self, tableRef) -> TableDefinition:
        if isinstance(tableRef, TableDefinition):
            return self.lookup(tableRef.name)
        return self.lookup(tableRef)

    def childOf(self, table: TableDefinition) -> Optional[TableDefinition]:
        if table.child is None:
            return None
        return self.lookup(table.child.childTable)

    def __contains__(self, tableName: str) -> bool:
        return tableName in self._index

    def __iter__(self) -> Iterator[TableDefinition]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)
