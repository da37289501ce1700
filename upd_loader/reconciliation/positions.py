"""Position assembly: maps UPD line items onto MoySklad catalog positions.

Prices sent to MoySklad are integer kopecks. A positive price on the
matching source-invoice position wins over the price printed in the UPD.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal

from upd_loader.moysklad.client import MoySkladClient
from upd_loader.moysklad.schema import InvoiceOutPosition, Position, Product
from upd_loader.parsing.schema import InvoiceDocument, LineItem
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import NoServiceAvailableError, ProductsNotFoundError

DEFAULT_VAT_RATE = 18
FALLBACK_SERVICE_PRICE = 1000 * 100  # 1000 rub in kopecks

_VAT_DIGITS = re.compile(r"(\d+)")


def vat_rate(label: str) -> int:
    """Convert a UPD tax rate label ("20%", "НДС 10%") to a percent value.

    Labels without digits ("без НДС", empty) map to the default rate.
    """
    match = _VAT_DIGITS.search(label or "")
    return int(match.group(1)) if match else DEFAULT_VAT_RATE


def to_kopecks(amount: Decimal) -> int:
    """Convert rubles to kopecks, truncating toward zero."""
    return int(amount * 100)


@dataclass
class SourcePriceIndex:
    """Prices from the source customer invoice, keyed by article and by name."""

    by_code: dict[str, int] = field(default_factory=dict)
    by_name: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_positions(cls, positions: list[InvoiceOutPosition]) -> "SourcePriceIndex":
        index = cls()
        for position in positions:
            if position.assortment is None:
                continue
            price = int(position.price)
            if position.assortment.article:
                index.by_code[position.assortment.article] = price
            if position.assortment.name:
                index.by_name[position.assortment.name] = price
        return index

    def __len__(self) -> int:
        return len(self.by_code) + len(self.by_name)

    def price_for(self, item: LineItem) -> tuple[int, str] | None:
        """Find a positive source price for an item.

        Returns:
            (price in kopecks, match key kind) or None
        """
        if item.catalog_code:
            price = self.by_code.get(item.catalog_code, 0)
            if price > 0:
                return price, "article"
        price = self.by_name.get(item.name, 0)
        if price > 0:
            return price, "name"
        return None


class PositionAssembler:
    """Builds the position list shared by the shipment and the invoice."""

    def __init__(self, client: MoySkladClient, ctx: RequestContext) -> None:
        """Initialize assembler.

        Args:
            client: MoySklad client used for catalog lookups
            ctx: Request context
        """
        self.client = client
        self.ctx = ctx

    def assemble(self, invoice: InvoiceDocument, prices: SourcePriceIndex) -> list[Position]:
        """Resolve every line item to a catalog position.

        Resolution is all-or-nothing: if any item has no catalog match, nothing
        is returned and no document may be created.

        Args:
            invoice: Parsed UPD content
            prices: Source-invoice price index

        Returns:
            Positions; a single service position when the UPD has no items

        Raises:
            ProductsNotFoundError: Listing every unresolved item
            NoServiceAvailableError: No items and no service in the catalog
        """
        positions: list[Position] = []
        missing: list[str] = []

        for item in invoice.items:
            product = self._find_product(item)
            if product is None:
                missing.append(f"{item.name} (article: {item.catalog_code or 'not specified'})")
                continue

            positions.append(
                Position(
                    quantity=float(item.quantity),
                    price=self._price(item, prices),
                    vat=vat_rate(item.tax_rate_label),
                    assortment=product.ref(),
                )
            )

        if missing:
            raise ProductsNotFoundError(missing)

        if not positions:
            positions.append(self._service_position(invoice))

        return positions

    def _find_product(self, item: LineItem) -> Product | None:
        if item.catalog_code:
            self.ctx.log.info(f"Searching product by article: {item.catalog_code}")
            product = self.client.find_product_by_article(item.catalog_code)
            if product:
                self.ctx.log.info(
                    f"Product found by article {item.catalog_code}: {product.name} (ID: {product.id})"
                )
                return product
            self.ctx.log.warning(f"Product not found by article: {item.catalog_code}")

        if not item.name:
            return None

        self.ctx.log.info(f"Searching product by name: {item.name}")
        product = self.client.find_product_by_name(item.name)
        if product:
            self.ctx.log.info(f"Product found by name: {product.name} (ID: {product.id})")
        else:
            self.ctx.log.warning(f"Product not found by name: {item.name}")
        return product

    def _price(self, item: LineItem, prices: SourcePriceIndex) -> int:
        match = prices.price_for(item)
        if match:
            price, key = match
            self.ctx.log.info(f"Using price from invoice by {key} for '{item.name}': {price / 100:.2f} rub")
            return price

        price = to_kopecks(item.unit_price)
        self.ctx.log.warning(
            f"Price for product '{item.name}' not found in invoice, using UPD price: {price / 100:.2f} rub"
        )
        return price

    def _service_position(self, invoice: InvoiceDocument) -> Position:
        service = self.client.get_any_service()
        if service is None:
            raise NoServiceAvailableError()

        price = FALLBACK_SERVICE_PRICE
        if invoice.total_incl_tax > 0:
            price = to_kopecks(invoice.total_incl_tax)

        self.ctx.log.info(f"UPD has no items, using service '{service.name}' at {price / 100:.2f} rub")
        return Position(
            quantity=1,
            price=price,
            vat=DEFAULT_VAT_RATE,
            assortment=service.ref(),
        )
