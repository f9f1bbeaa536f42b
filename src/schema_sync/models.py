"""Catalog-derived descriptors and operation reports."""

from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from schema_sync.errors import InvalidTenantCode

TENANT_CODE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


class TenantDescriptor(BaseModel):
    """A tenant code and the physical database derived from it."""

    model_config = ConfigDict(frozen=True)

    code: str
    database_name: str

    @classmethod
    def from_code(cls, code: str, suffix: str = "_database") -> "TenantDescriptor":
        """Derive the descriptor for a tenant code (lowercase code + suffix)."""
        normalized = (code or "").strip()
        if not TENANT_CODE_RE.match(normalized):
            raise InvalidTenantCode(
                code, f"Invalid tenant code {code!r}; expected letters, digits and underscores."
            )
        return cls(code=normalized.upper(), database_name=f"{normalized.lower()}{suffix}")

    @classmethod
    def from_database_name(cls, database_name: str, suffix: str) -> Optional["TenantDescriptor"]:
        """Invert the naming rule; return None for databases that do not follow it."""
        if not database_name.endswith(suffix) or len(database_name) == len(suffix):
            return None
        code = database_name[: -len(suffix)]
        if not TENANT_CODE_RE.match(code):
            return None
        return cls(code=code.upper(), database_name=database_name)

    @property
    def table_prefix(self) -> str:
        """Prefix carried by this tenant's own tables, e.g. ``sb_``."""
        return f"{self.code.lower()}_"


class ArrayType(BaseModel):
    """Array column; rendered by its underlying udt name (``_int4``)."""

    kind: Literal["array"] = "array"
    udt_name: str

    def to_sql(self) -> str:
        return self.udt_name


class UserDefinedType(BaseModel):
    """Extension or user-defined column type; rendered by its udt name."""

    kind: Literal["user_defined"] = "user_defined"
    udt_name: str

    def to_sql(self) -> str:
        return self.udt_name


class BoundedCharType(BaseModel):
    """Type with a declared maximum length, e.g. ``character varying(50)``."""

    kind: Literal["bounded_char"] = "bounded_char"
    name: str
    length: int

    def to_sql(self) -> str:
        return f"{self.name}({self.length})"


class NumericType(BaseModel):
    """``numeric`` with both precision and scale declared."""

    kind: Literal["numeric"] = "numeric"
    name: str = "numeric"
    precision: int
    scale: int

    def to_sql(self) -> str:
        return f"{self.name}({self.precision},{self.scale})"


class SimpleType(BaseModel):
    """Any other type, rendered by its bare name."""

    kind: Literal["simple"] = "simple"
    name: str

    def to_sql(self) -> str:
        return self.name


ColumnType = Annotated[
    Union[ArrayType, UserDefinedType, BoundedCharType, NumericType, SimpleType],
    Field(discriminator="kind"),
]


def column_type_from_catalog(
    data_type: str,
    udt_name: Optional[str] = None,
    character_maximum_length: Optional[int] = None,
    numeric_precision: Optional[int] = None,
    numeric_scale: Optional[int] = None,
) -> Union[ArrayType, UserDefinedType, BoundedCharType, NumericType, SimpleType]:
    """Classify an ``information_schema.columns`` row into a renderable type."""
    if data_type == "ARRAY":
        return ArrayType(udt_name=udt_name or data_type)
    if data_type == "USER-DEFINED":
        return UserDefinedType(udt_name=udt_name or data_type)
    if character_maximum_length:
        return BoundedCharType(name=data_type, length=int(character_maximum_length))
    if data_type == "numeric" and numeric_precision and numeric_scale is not None:
        return NumericType(precision=int(numeric_precision), scale=int(numeric_scale))
    return SimpleType(name=data_type)


class ColumnDescriptor(BaseModel):
    """One column of a source table, in ordinal order."""

    name: str
    column_type: ColumnType
    nullable: bool = True
    default_expression: Optional[str] = None
    identity: Optional[Literal["ALWAYS", "BY DEFAULT"]] = None


class SequenceDescriptor(BaseModel):
    """A sequence that depends on a source table."""

    name: str
    owner_table: str
    data_type: Optional[str] = None
    start: Optional[int] = None
    increment: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    cache: Optional[int] = None
    cycle: bool = False
    owned_by_column: Optional[str] = None


class IndexDescriptor(BaseModel):
    """A non-primary-key index and its catalog definition."""

    name: str
    definition: str


class TableDescriptor(BaseModel):
    """Full structural description of one source table.

    Built fresh by every introspection call; the source schema may change between calls.
    """

    name: str
    columns: List[ColumnDescriptor] = Field(default_factory=list)
    sequences: List[SequenceDescriptor] = Field(default_factory=list)
    indexes: List[IndexDescriptor] = Field(default_factory=list)
    primary_key: List[str] = Field(default_factory=list)


class OperationState(str, Enum):
    """Lifecycle of a table or tenant synchronization."""

    PENDING = "pending"
    INTROSPECTING = "introspecting"
    SYNTHESIZING = "synthesizing"
    APPLYING = "applying"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"


class SyncReport(BaseModel):
    """Per-tenant outcome of a provision or sync run."""

    tenant: str
    state: OperationState = OperationState.PENDING
    created: int = 0
    skipped: int = 0
    failed: int = 0
    per_table_errors: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return self.created + self.skipped + self.failed

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.error is None

    def record_created(self, table: str) -> None:
        self.created += 1

    def record_skipped(self, table: str) -> None:
        self.skipped += 1

    def record_failure(self, table: str, message: str) -> None:
        self.failed += 1
        self.per_table_errors[table] = message

    def finish(self) -> "SyncReport":
        """Move the report to its terminal state."""
        self.state = OperationState.COMPLETED if self.ok else OperationState.PARTIALLY_FAILED
        return self
