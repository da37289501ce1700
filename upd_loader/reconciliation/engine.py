"""Reconciliation engine: recreates a parsed UPD as MoySklad documents.

Steps run strictly in order and each failure aborts the run:

1. Seller organization by INN (never created)
2. Buyer counterparty by INN (created when absent)
3. Source customer invoice by the transfer-basis reference
4. Warehouse from the source invoice
5. Positions (all items must resolve to catalog entries)
6. Shipment (demand) linked to the source invoice
7. Outgoing invoice (factureout) linked to the shipment

Step 7 failing leaves the shipment behind unless rollback is enabled.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from upd_loader.moysklad.client import MoySkladClient
from upd_loader.moysklad.schema import (
    Counterparty,
    CounterpartyCreate,
    Demand,
    DemandCreate,
    Entity,
    FactureOut,
    FactureOutCreate,
    InvoiceOut,
    InvoiceOutPosition,
    Organization,
    Position,
)
from upd_loader.parsing.schema import InvoiceDocument, ParsedBundle
from upd_loader.reconciliation.positions import PositionAssembler, SourcePriceIndex
from upd_loader.shared.config import Settings
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import (
    ExternalAPIError,
    InvoiceCreationFailedError,
    SellerNotFoundError,
    SourceInvoiceNotFoundError,
    WarehouseNotSpecifiedError,
)

SHIPMENT_NAME_PREFIX = "О"


class ReconciliationStage(str, Enum):
    """Progress markers, logged as each step completes."""

    SELLER_RESOLVED = "SellerResolved"
    BUYER_RESOLVED = "BuyerResolved"
    SOURCE_INVOICE_LOCATED = "SourceInvoiceLocated"
    WAREHOUSE_RESOLVED = "WarehouseResolved"
    POSITIONS_ASSEMBLED = "PositionsAssembled"
    SHIPMENT_CREATED = "ShipmentCreated"
    INVOICE_CREATED = "InvoiceCreated"


class ReconciliationResult(BaseModel):
    """Documents created in MoySklad for one UPD."""

    model_config = ConfigDict(frozen=True)

    shipment: Demand
    invoice: FactureOut
    shipment_url: str
    invoice_url: str


def format_moment(document: InvoiceDocument) -> str:
    """Format the invoice date the way MoySklad expects: YYYY-MM-DD HH:MM:SS.mmm."""
    date = document.invoice_date
    return f"{date:%Y-%m-%d %H:%M:%S}.{date.microsecond // 1000:03d}"


def invoice_filters(reference: str) -> list[str]:
    """Customer invoice filters, most specific first."""
    return [f"name={reference}", f"name~{reference}", f"description~{reference}"]


class ReconciliationEngine:
    """Drives one UPD through the MoySklad document chain."""

    def __init__(self, client: MoySkladClient, settings: Settings, ctx: RequestContext) -> None:
        """Initialize engine.

        Args:
            client: MoySklad client, owned by the caller
            settings: Application settings (rollback policy)
            ctx: Request context
        """
        self.client = client
        self.settings = settings
        self.ctx = ctx.child(__name__)
        self.assembler = PositionAssembler(client, self.ctx)
        self.stage: ReconciliationStage | None = None

    def _advance(self, stage: ReconciliationStage, detail: str) -> None:
        self.stage = stage
        self.ctx.log.info(f"{stage.value}: {detail}")

    def reconcile(self, bundle: ParsedBundle) -> ReconciliationResult:
        """Create the shipment and the invoice for a parsed bundle.

        Args:
            bundle: Parsed UPD

        Returns:
            ReconciliationResult with both documents and their web links

        Raises:
            ReconciliationError: The typed error for the failed step
        """
        invoice = bundle.invoice
        self.ctx.log.info(f"Creating documents for UPD: {bundle.document_id}")

        seller = self._resolve_seller(invoice)
        self._advance(ReconciliationStage.SELLER_RESOLVED, f"{seller.name} (INN {seller.inn})")

        buyer = self._resolve_buyer(invoice)
        self._advance(ReconciliationStage.BUYER_RESOLVED, f"{buyer.name} (INN {buyer.inn})")

        source_invoice = self._locate_source_invoice(invoice.source_invoice_reference)
        self._advance(ReconciliationStage.SOURCE_INVOICE_LOCATED, source_invoice.name)

        store = self._resolve_warehouse(source_invoice)
        self._advance(ReconciliationStage.WAREHOUSE_RESOLVED, f"{store.name} (ID: {store.id})")

        prices = SourcePriceIndex.from_positions(self._source_positions(source_invoice))
        self.ctx.log.info(f"Loaded {len(prices)} price keys from invoice for price matching")
        positions = self.assembler.assemble(invoice, prices)
        self._advance(ReconciliationStage.POSITIONS_ASSEMBLED, f"{len(positions)} positions")

        moment = format_moment(invoice)
        shipment = self.client.create_demand(
            DemandCreate(
                name=SHIPMENT_NAME_PREFIX + invoice.invoice_number,
                moment=moment,
                organization=seller.ref(),
                agent=buyer.ref(),
                store=store.ref(),
                positions=positions,
                invoices_out=[source_invoice.ref()],
            )
        )
        shipment_url = self.client.demand_url(shipment.id)
        self._advance(ReconciliationStage.SHIPMENT_CREATED, f"{shipment.name} (ID: {shipment.id})")

        facture = self._create_invoice(invoice, moment, seller, buyer, shipment, positions)
        self._advance(ReconciliationStage.INVOICE_CREATED, f"{facture.name} (ID: {facture.id})")

        return ReconciliationResult(
            shipment=shipment,
            invoice=facture,
            shipment_url=shipment_url,
            invoice_url=self.client.factureout_url(facture.id),
        )

    def _resolve_seller(self, invoice: InvoiceDocument) -> Organization:
        seller = self.client.find_organization_by_inn(invoice.seller.tax_id)
        if seller is None:
            raise SellerNotFoundError(invoice.seller.tax_id)
        return seller

    def _resolve_buyer(self, invoice: InvoiceDocument) -> Counterparty:
        buyer = invoice.buyer
        existing = self.client.find_counterparty_by_inn(buyer.tax_id)
        if existing is not None:
            self.ctx.log.info(f"Found existing counterparty: {existing.name}")
            return existing

        self.ctx.log.info(f"Creating new counterparty: {buyer.name}")
        if buyer.is_individual:
            self.ctx.log.info(f"Creating counterparty as individual entrepreneur (INN: {buyer.tax_id})")
            payload = CounterpartyCreate(name=buyer.name, inn=buyer.tax_id, company_type="individual")
        else:
            self.ctx.log.info(
                f"Creating counterparty as legal entity (INN: {buyer.tax_id}, KPP: {buyer.reg_code})"
            )
            payload = CounterpartyCreate(
                name=buyer.name, inn=buyer.tax_id, company_type="legal", kpp=buyer.reg_code
            )
        return self.client.create_counterparty(payload)

    def _locate_source_invoice(self, reference: str | None) -> InvoiceOut:
        if not reference:
            self.ctx.log.warning("UPD has no transfer basis reference")
            raise SourceInvoiceNotFoundError("")

        self.ctx.log.info(f"Searching customer invoice with number: {reference}")
        for filter_expr in invoice_filters(reference):
            self.ctx.log.debug(f"Searching invoice with filter: {filter_expr}")
            found = self.client.find_invoice_out(filter_expr)
            if found is None:
                continue
            full = self.client.get_invoice_out(found.meta.href)
            agent_name = full.agent.name if full.agent and full.agent.name else "unknown"
            self.ctx.log.info(
                f"Found customer invoice: {full.name} (counterparty: {agent_name}, filter: {filter_expr})"
            )
            return full

        self.ctx.log.warning(f"Customer invoice with number {reference} not found")
        raise SourceInvoiceNotFoundError(reference)

    def _resolve_warehouse(self, source_invoice: InvoiceOut) -> Entity:
        store = source_invoice.store
        if store is None:
            raise WarehouseNotSpecifiedError(source_invoice.name)
        if store.is_bare_reference:
            return self.client.get_store(store.meta.href)
        return store

    def _source_positions(self, source_invoice: InvoiceOut) -> list[InvoiceOutPosition]:
        collection = source_invoice.positions
        if collection is None:
            return []
        if collection.rows is not None:
            return collection.rows
        return self.client.get_positions(collection.meta.href)

    def _create_invoice(
        self,
        invoice: InvoiceDocument,
        moment: str,
        seller: Organization,
        buyer: Counterparty,
        shipment: Demand,
        positions: list[Position],
    ) -> FactureOut:
        """Create the outgoing invoice, compensating the shipment on failure if configured.

        Only a rejected request or a network failure triggers compensation. A
        successful response that cannot be decoded propagates unchanged.
        """
        try:
            return self.client.create_factureout(
                FactureOutCreate(
                    name=invoice.invoice_number,
                    moment=moment,
                    organization=seller.ref(),
                    agent=buyer.ref(),
                    demands=[shipment.ref()],
                    positions=positions,
                )
            )
        except ExternalAPIError as e:
            if e.status_code is not None and not isinstance(e, InvoiceCreationFailedError):
                # MoySklad accepted the request; the invoice may exist
                self.ctx.log.error(
                    f"Unreadable invoice response for shipment {shipment.name}, shipment kept: {e.message}"
                )
                raise
            left_behind = not self._rollback(shipment)
            raise InvoiceCreationFailedError(
                e.status_code,
                e.body if e.body is not None else e.message,
                shipment=shipment,
                shipment_url=self.client.demand_url(shipment.id),
                shipment_left_behind=left_behind,
            ) from e

    def _rollback(self, shipment: Demand) -> bool:
        """Delete the shipment if rollback is enabled.

        Returns:
            True if the shipment no longer exists
        """
        if not self.settings.rollback_shipment_on_invoice_failure:
            self.ctx.log.error(f"Invoice creation failed, shipment {shipment.name} left in MoySklad")
            return False

        try:
            self.client.delete_demand(shipment.id)
        except ExternalAPIError as e:
            self.ctx.log.error(f"Failed to roll back shipment {shipment.id}: {e.message}")
            return False

        self.ctx.log.warning(f"Invoice creation failed, shipment {shipment.id} rolled back")
        return True
