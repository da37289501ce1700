"""Pydantic schemas for the MoySklad JSON API (remap 1.2).

Response models keep unknown fields (``extra="allow"``): MoySklad entities are
wide, and only the fields the reconciliation reads are declared. Request models
serialize with ``by_alias=True`` to the camelCase wire names.

See: https://dev.moysklad.ru/doc/api/remap/1.2/
"""

from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class Meta(BaseModel):
    """Entity metadata block; ``href`` is the canonical entity reference."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    href: str
    type: str = ""
    media_type: str = Field("application/json", alias="mediaType")
    metadata_href: str | None = Field(None, alias="metadataHref")
    size: int | None = Field(None, description="Row count, collections only")


class MetaRef(BaseModel):
    """Reference to an entity by its meta only, as MoySklad expects in payloads."""

    meta: Meta


class Entity(BaseModel):
    """Common shape of MoySklad entities.

    A nested reference that has not been expanded carries ``meta`` only, so
    ``id`` and ``name`` default to empty strings.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    meta: Meta
    id: str = ""
    name: str = ""

    @property
    def is_bare_reference(self) -> bool:
        return not self.id and not self.name

    def ref(self) -> MetaRef:
        return MetaRef(meta=self.meta)


class Organization(Entity):
    inn: str = ""


class Counterparty(Entity):
    inn: str = ""
    kpp: str | None = None
    company_type: str | None = Field(None, alias="companyType")


class Product(Entity):
    article: str = ""
    code: str = ""


class Service(Entity):
    pass


class Store(Entity):
    pass


class Employee(Entity):
    email: str | None = None


class Assortment(Entity):
    """Product or service referenced from a document position."""

    article: str = ""


class InvoiceOutPosition(BaseModel):
    """Position of a customer invoice; ``price`` is in kopecks."""

    model_config = ConfigDict(extra="allow")

    id: str = ""
    quantity: float = 0
    price: float = 0
    vat: int = 0
    assortment: Assortment | None = None


class PositionCollection(BaseModel):
    """Nested positions collection: inline rows when expanded, else meta only."""

    meta: Meta
    rows: list[InvoiceOutPosition] | None = None


class InvoiceOut(Entity):
    """Customer invoice (счёт покупателю) that the UPD transfer basis points to."""

    description: str | None = None
    agent: Entity | None = None
    store: Entity | None = None
    positions: PositionCollection | None = None


class Demand(Entity):
    """Shipment (отгрузка)."""


class FactureOut(Entity):
    """Outgoing invoice (счёт-фактура выданный)."""


T = TypeVar("T", bound=BaseModel)


class ListResponse(BaseModel, Generic[T]):
    """Paged list response; only the first page is ever read."""

    meta: Meta | None = None
    rows: list[T] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CounterpartyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    inn: str
    company_type: Literal["legal", "individual"] = Field("legal", alias="companyType")
    kpp: str | None = None


class Position(BaseModel):
    """Document position shared by shipment and invoice payloads."""

    quantity: float = Field(..., description="Units shipped")
    price: int = Field(..., description="Unit price in kopecks")
    vat: int = Field(..., description="VAT rate, percent")
    assortment: MetaRef


class DemandCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    moment: str = Field(..., description="YYYY-MM-DD HH:MM:SS.mmm")
    organization: MetaRef
    agent: MetaRef
    store: MetaRef
    vat_enabled: bool = Field(True, alias="vatEnabled")
    vat_included: bool = Field(True, alias="vatIncluded")
    positions: list[Position] = Field(default_factory=list)
    invoices_out: list[MetaRef] = Field(default_factory=list, alias="invoicesOut")


class FactureOutCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    moment: str
    organization: MetaRef
    agent: MetaRef
    vat_enabled: bool = Field(True, alias="vatEnabled")
    vat_included: bool = Field(True, alias="vatIncluded")
    demands: list[MetaRef] = Field(default_factory=list)
    positions: list[Position] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class EmployeeInfo(BaseModel):
    name: str = ""
    email: str | None = None


class OrganizationInfo(BaseModel):
    id: str = ""
    name: str = ""
    inn: str = ""


class Permissions(BaseModel):
    can_create_invoices: bool = False
    can_access_counterparties: bool = False
    can_access_stores: bool = False
    organizations_count: int = 0
    stores_count: int = 0


class ApiStatus(BaseModel):
    """Result of the MoySklad access check."""

    success: bool
    error: str | None = None
    details: str | None = None
    employee: EmployeeInfo | None = None
    organization: OrganizationInfo | None = None
    permissions: Permissions | None = None
    base_url: str | None = None
