import re
from typing import Dict, Iterator, Tuple, Union

from sqlalchemy import Column, Integer, String, Float, DateTime, MetaData, Table
from sqlalchemy.orm import declarative_base

from gtfs_editor.core.exceptions import InvalidNamespaceError
from gtfs_editor.models.table_models import FieldDefinition, FieldType, TableDefinition, TableRegistry
from gtfs_editor.models.gtfs_tables import tableRegistry

Base = declarative_base()

NAMESPACE_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,62}$")

class FeedModel(Base):
    __tablename__ = "feeds"

    namespace = Column(String, primary_key=True)
    md5 = Column(String, nullable=True)
    sha1 = Column(String, nullable=True)
    feed_id = Column(String, nullable=True)
    feed_version = Column(String, nullable=True)
    filename = Column(String, nullable=True)
    loaded_date = Column(DateTime, nullable=True)
    snapshot_of = Column(String, nullable=True) # namespace this one was forked from


def validateNamespaceIdentifier(namespace: str) -> str:
    if not isinstance(namespace, str) or not NAMESPACE_PATTERN.match(namespace):
        raise InvalidNamespaceError(namespace, reason="is not a valid namespace identifier")
    return namespace

def columnFor(field: FieldDefinition, unique: bool = False) -> Column:
    if field.type in (FieldType.INTEGER, FieldType.ENUM):
        columnType = Integer()
    elif field.type == FieldType.DECIMAL:
        columnType = Float()
    elif field.type == FieldType.TIMESTAMP:
        columnType = DateTime()
    elif field.type == FieldType.DATE:
        columnType = String(8)
    elif field.type == FieldType.COLOR:
        columnType = String(6)
    elif field.maxLength:
        columnType = String(field.maxLength)
    else:
        columnType = String()
    return Column(field.name, columnType, nullable=field.nullable, unique=unique)

def buildTable(definition: TableDefinition, namespace: str, metadata: MetaData, usesSchemas: bool) -> Table:
    columns = [Column("id", Integer, primary_key=True, autoincrement=True)]
    columns.extend(columnFor(f, unique=(f.name == definition.keyField)) for f in definition.fields)
    if usesSchemas:
        return Table(definition.name, metadata, *columns, schema=namespace)
    # Databases without schemas keep each namespace as a table-name prefix.
    return Table(f"{namespace}__{definition.name}", metadata, *columns)


class NamespaceTables:
    """The physical tables of one namespace, keyed by registry table name."""

    def __init__(self, namespace: str, usesSchemas: bool, registry: TableRegistry = tableRegistry):
        self.namespace = validateNamespaceIdentifier(namespace)
        self.usesSchemas = usesSchemas
        self.registry = registry
        self.metadata = MetaData()
        self._tables: Dict[str, Table] = {
            definition.name: buildTable(definition, namespace, self.metadata, usesSchemas)
            for definition in registry
        }

    def get(self, tableRef: Union[str, TableDefinition]) -> Table:
        definition = self.registry.resolve(tableRef)
        return self._tables[definition.name]

    def qualifiedName(self, tableRef: Union[str, TableDefinition]) -> str:
        return self.get(tableRef).fullname

    def __iter__(self) -> Iterator[Tuple[TableDefinition, Table]]:
        for definition in self.registry:
            yield definition, self._tables[definition.name]
