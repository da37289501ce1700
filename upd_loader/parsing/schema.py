"""Normalized UPD document models.

Money and quantities are ``Decimal`` end to end; nothing in the parsed model
goes through binary floating point.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

NOT_SPECIFIED_NAME = "Не указано"
NOT_SPECIFIED_NUMBER = "Не указан"
PLACEHOLDER_TAX_ID = "0000000000"
DEFAULT_CURRENCY_CODE = "643"  # RUB


class BundleIndex(BaseModel):
    """Paths of the two XML payloads, as listed in the bundle's meta.xml."""

    model_config = ConfigDict(frozen=True)

    flow_id: str = Field(..., description="Document flow identifier")
    main_document_path: str = Field(..., description="Main invoice document path")
    card_path: str = Field(..., description="Card summary document path")


class CardSummary(BaseModel):
    """Summary from card.xml; source of the document identifier."""

    external_id: str = ""
    title: str = ""
    issued_at: datetime
    sender_tax_id: str | None = None
    sender_reg_code: str | None = None
    sender_name: str | None = None


class Address(BaseModel):
    """Russian structured address (АдрРФ)."""

    postal_code: str | None = None
    region_code: str | None = None
    region: str | None = None
    city: str | None = None
    street: str | None = None
    house: str | None = None
    apartment: str | None = None

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class Organization(BaseModel):
    """Legal entity or sole proprietor taking part in the UPD.

    ``tax_id`` (ИНН) is the matching key in MoySklad: 10 digits for a legal
    entity, 12 for an individual.
    """

    name: str = NOT_SPECIFIED_NAME
    tax_id: str = PLACEHOLDER_TAX_ID
    reg_code: str | None = Field(None, description="КПП, legal entities only")
    address: Address | None = None

    @property
    def is_individual(self) -> bool:
        return len(self.tax_id) == 12

    @classmethod
    def unspecified(cls) -> "Organization":
        return cls(name=NOT_SPECIFIED_NAME, tax_id=PLACEHOLDER_TAX_ID)


class LineItem(BaseModel):
    """One row of the invoice table (СведТов)."""

    line_number: int = Field(..., ge=1)
    name: str = ""
    unit_code: str | None = None
    unit_name: str | None = None
    quantity: Decimal = Field(Decimal("0"), ge=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)
    amount_excl_tax: Decimal = Decimal("0")
    tax_rate_label: str = ""
    tax_amount: Decimal = Decimal("0")
    amount_incl_tax: Decimal = Field(Decimal("0"), description="Authoritative line amount")
    catalog_code: str | None = Field(None, description="Product article (КодТов)")


class InvoiceDocument(BaseModel):
    """Business content of the main UPD document."""

    invoice_number: str = NOT_SPECIFIED_NUMBER
    invoice_date: datetime
    seller: Organization
    buyer: Organization
    items: list[LineItem] = Field(default_factory=list)
    currency_code: str = DEFAULT_CURRENCY_CODE
    total_excl_tax: Decimal = Decimal("0")
    total_tax: Decimal = Decimal("0")
    total_incl_tax: Decimal = Decimal("0")
    source_invoice_reference: str | None = Field(
        None, description="Digits from the transfer basis; joins to the MoySklad invoice"
    )
    is_stub: bool = Field(False, description="Built by the fallback policy, not parsed")

    @classmethod
    def stub(cls) -> "InvoiceDocument":
        """Minimal document used when the main payload is empty or malformed."""
        return cls(
            invoice_number=NOT_SPECIFIED_NUMBER,
            invoice_date=datetime.now(),
            seller=Organization.unspecified(),
            buyer=Organization.unspecified(),
            is_stub=True,
        )


class ParsedBundle(BaseModel):
    """Everything parsed from one uploaded archive."""

    index: BundleIndex
    card: CardSummary
    invoice: InvoiceDocument

    @property
    def document_id(self) -> str:
        return self.card.external_id

    def summary(self) -> str:
        invoice = self.invoice
        return (
            f"УПД № {invoice.invoice_number} от {invoice.invoice_date:%d.%m.%Y}\n"
            f"Поставщик: {invoice.seller.name} (ИНН: {invoice.seller.tax_id})\n"
            f"Покупатель: {invoice.buyer.name} (ИНН: {invoice.buyer.tax_id})\n"
            f"Сумма: {invoice.total_incl_tax:.2f} ₽"
        )
