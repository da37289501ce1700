"""Error taxonomy for UPD parsing and MoySklad reconciliation.

Every exception carries an ``ErrorKind`` so the processing layer can turn it
into a ``ProcessingOutcome`` without inspecting exception types.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Machine-readable failure category reported in processing outcomes."""

    # Transport-level upload checks
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    EMPTY_FILE = "EMPTY_FILE"

    # Extraction and parsing
    INVALID_ARCHIVE = "INVALID_ARCHIVE"
    PATH_TRAVERSAL = "PATH_TRAVERSAL"
    MISSING_INDEX = "MISSING_INDEX"
    MALFORMED_INDEX = "MALFORMED_INDEX"
    MALFORMED_DOCUMENT = "MALFORMED_DOCUMENT"
    IO_FAILURE = "IO_FAILURE"

    # Reconciliation
    SELLER_NOT_FOUND = "SELLER_NOT_FOUND"
    SOURCE_INVOICE_NOT_FOUND = "SOURCE_INVOICE_NOT_FOUND"
    WAREHOUSE_NOT_SPECIFIED = "WAREHOUSE_NOT_SPECIFIED"
    PRODUCTS_NOT_FOUND = "PRODUCTS_NOT_FOUND"
    NO_SERVICE_AVAILABLE = "NO_SERVICE_AVAILABLE"
    SHIPMENT_CREATION_FAILED = "SHIPMENT_CREATION_FAILED"
    INVOICE_CREATION_FAILED = "INVOICE_CREATION_FAILED"
    EXTERNAL_API_FAILURE = "EXTERNAL_API_FAILURE"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class UPDLoaderError(Exception):
    """Base class for all expected UPD loader failures."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class ParsingError(UPDLoaderError):
    """Failure while turning an archive into a parsed bundle."""


class InvalidArchiveError(ParsingError):
    kind = ErrorKind.INVALID_ARCHIVE


class PathTraversalError(ParsingError):
    kind = ErrorKind.PATH_TRAVERSAL

    def __init__(self, entry_name: str) -> None:
        super().__init__(f"Archive entry escapes the extraction directory: {entry_name}")
        self.entry_name = entry_name


class MissingIndexError(ParsingError):
    kind = ErrorKind.MISSING_INDEX


class MalformedIndexError(ParsingError):
    kind = ErrorKind.MALFORMED_INDEX


class MalformedDocumentError(ParsingError):
    """Structural error in the main document, raised only in strict parsing mode."""

    kind = ErrorKind.MALFORMED_DOCUMENT


class IOFailureError(ParsingError):
    kind = ErrorKind.IO_FAILURE


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class ReconciliationError(UPDLoaderError):
    """Failure while recreating a parsed bundle in MoySklad."""


class ExternalAPIError(ReconciliationError):
    """Network-level failure or unexpected status on a MoySklad call."""

    kind = ErrorKind.EXTERNAL_API_FAILURE

    def __init__(
        self, message: str, status_code: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SellerNotFoundError(ReconciliationError):
    kind = ErrorKind.SELLER_NOT_FOUND

    def __init__(self, tax_id: str) -> None:
        super().__init__(f"Supplier organization with INN {tax_id} not found in MoySklad")
        self.tax_id = tax_id


class SourceInvoiceNotFoundError(ReconciliationError):
    kind = ErrorKind.SOURCE_INVOICE_NOT_FOUND

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"Customer invoice with number '{reference}' not found.\n"
            "Create the invoice with the specified number and try again."
        )
        self.reference = reference


class WarehouseNotSpecifiedError(ReconciliationError):
    kind = ErrorKind.WAREHOUSE_NOT_SPECIFIED

    def __init__(self, invoice_name: str) -> None:
        super().__init__(
            f"Store not specified in customer invoice '{invoice_name}'.\n"
            "Specify a store in the invoice and try again."
        )
        self.invoice_name = invoice_name


class ProductsNotFoundError(ReconciliationError):
    kind = ErrorKind.PRODUCTS_NOT_FOUND

    def __init__(self, missing_items: list[str]) -> None:
        listing = "\n• ".join(missing_items)
        super().__init__(
            "The following products from the UPD are not found in MoySklad:\n"
            f"• {listing}\n\n"
            "Create these products in MoySklad and upload the UPD again."
        )
        self.missing_items = missing_items


class NoServiceAvailableError(ReconciliationError):
    kind = ErrorKind.NO_SERVICE_AVAILABLE

    def __init__(self) -> None:
        super().__init__(
            "No services available in MoySklad to build a document position.\n"
            "Create at least one service in MoySklad and try again."
        )


class ShipmentCreationFailedError(ExternalAPIError):
    kind = ErrorKind.SHIPMENT_CREATION_FAILED

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(
            f"Error creating shipment: {status_code} - {body}",
            status_code=status_code,
            body=body,
        )


class InvoiceCreationFailedError(ExternalAPIError):
    """Invoice creation failed after the shipment was already created.

    ``shipment`` is the created shipment record; ``shipment_left_behind`` tells
    whether it still exists in MoySklad.
    """

    kind = ErrorKind.INVOICE_CREATION_FAILED

    def __init__(
        self,
        status_code: int | None,
        body: str,
        shipment: Any = None,
        shipment_url: str | None = None,
        shipment_left_behind: bool = True,
    ) -> None:
        super().__init__(
            f"Error creating invoice: {status_code} - {body}",
            status_code=status_code,
            body=body,
        )
        self.shipment = shipment
        self.shipment_url = shipment_url
        self.shipment_left_behind = shipment_left_behind
