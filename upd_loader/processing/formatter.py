"""Human-readable result messages for processed uploads."""

from upd_loader.parsing.schema import ParsedBundle
from upd_loader.reconciliation.engine import ReconciliationResult
from upd_loader.shared.errors import InvoiceCreationFailedError, ParsingError, UPDLoaderError

STUB_WARNING = (
    "⚠️ The main UPD document was empty or malformed; placeholder data was used."
)


def format_success(bundle: ParsedBundle, result: ReconciliationResult) -> str:
    """Build the message for a fully processed UPD.

    Args:
        bundle: Parsed UPD
        result: Documents created in MoySklad

    Returns:
        Multi-line summary with participants, totals and document links
    """
    invoice = bundle.invoice
    lines = [
        "✅ UPD successfully processed and uploaded to MoySklad!",
        "",
        f"📄 Invoice: {result.invoice.name or 'Не указано'}",
        f"📦 Shipment: {result.shipment.name or 'Не указано'}",
        f"📅 Date: {invoice.invoice_date:%d.%m.%Y}",
        "",
        f"🏢 Supplier: {invoice.seller.name} (INN: {invoice.seller.tax_id})",
        f"🏪 Buyer: {invoice.buyer.name} (INN: {invoice.buyer.tax_id})",
        "",
    ]

    # Tax breakdown only makes sense when the document carries VAT
    if invoice.total_incl_tax > invoice.total_excl_tax:
        lines += [
            f"💰 Amount without VAT: {invoice.total_excl_tax:.2f} ₽",
            f"🧾 VAT: {invoice.total_tax:.2f} ₽",
            f"💵 Total with VAT: {invoice.total_incl_tax:.2f} ₽",
            "",
        ]

    lines += [
        "🔗 Links in MoySklad:",
        f"• Invoice: {result.invoice_url}",
        f"• Shipment: {result.shipment_url}",
    ]

    if bundle.index.flow_id:
        lines += ["", f"🆔 Document flow ID: {bundle.index.flow_id}"]
    if invoice.is_stub:
        lines += ["", STUB_WARNING]
    return "\n".join(lines)


def format_failure(error: UPDLoaderError, bundle: ParsedBundle | None = None) -> str:
    """Build the message for a failed upload.

    The error message already names the offending identifiers (INN,
    reference number, missing products).
    """
    if isinstance(error, ParsingError):
        message = f"❌ UPD processing error:\n{error.message}"
    else:
        message = f"❌ MoySklad upload error:\n{error.message}"

    if isinstance(error, InvoiceCreationFailedError) and error.shipment is not None:
        shipment_name = error.shipment.name or error.shipment.id
        if error.shipment_left_behind:
            message += (
                f"\n\n⚠️ Shipment {shipment_name} was created but has no invoice. "
                f"Finish or delete it manually: {error.shipment_url}"
            )
        else:
            message += f"\n\nShipment {shipment_name} was rolled back."

    if bundle is not None and bundle.invoice.is_stub:
        message += f"\n\n{STUB_WARNING}"
    return message
