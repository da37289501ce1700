"""UPD processing service.

Entry point shared by the HTTP API, the job queue and the CLI:
validate the upload, parse the archive, reconcile it with MoySklad and
report a ``ProcessingOutcome``. Expected failures never raise out of
``process_upd_file``; they come back as a failed outcome with an error kind.
"""

import tempfile
import time
from pathlib import Path

import httpx
from pydantic import BaseModel

from upd_loader.api import metrics
from upd_loader.moysklad.client import MoySkladClient
from upd_loader.moysklad.schema import ApiStatus
from upd_loader.parsing.parser import UPDParser
from upd_loader.parsing.schema import ParsedBundle
from upd_loader.processing.formatter import format_failure, format_success
from upd_loader.reconciliation.engine import ReconciliationEngine, ReconciliationResult
from upd_loader.shared.config import Settings
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import (
    ErrorKind,
    ExternalAPIError,
    InvoiceCreationFailedError,
    IOFailureError,
    UPDLoaderError,
)

ARCHIVE_SUFFIX = ".zip"


class ProcessingOutcome(BaseModel):
    """Result of processing one uploaded UPD archive.

    Attributes:
        success: Whether both MoySklad documents were created
        message: Human-readable summary or error description
        error_kind: Failure category (if failed)
        document: Parsed UPD (if parsing got that far)
        shipment_id: Created shipment ID
        shipment_name: Created shipment name
        shipment_url: Shipment link in the MoySklad web console
        invoice_id: Created invoice ID
        invoice_name: Created invoice name
        invoice_url: Invoice link in the MoySklad web console
        shipment_left_behind: A shipment exists without its invoice
    """

    success: bool
    message: str
    error_kind: ErrorKind | None = None
    document: ParsedBundle | None = None
    shipment_id: str | None = None
    shipment_name: str | None = None
    shipment_url: str | None = None
    invoice_id: str | None = None
    invoice_name: str | None = None
    invoice_url: str | None = None
    shipment_left_behind: bool = False


class UPDProcessor:
    """Processes uploaded UPD archives end to end."""

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize processor.

        Args:
            settings: Application settings
            transport: Optional httpx transport for MoySklad clients
        """
        self.settings = settings
        self.parser = UPDParser(settings)
        self._transport = transport

    def _client(self, ctx: RequestContext) -> MoySkladClient:
        return MoySkladClient(self.settings, ctx, transport=self._transport)

    def validate_upload(self, file_content: bytes, filename: str) -> ProcessingOutcome | None:
        """Check transport-level constraints before touching the disk.

        Args:
            file_content: Raw upload bytes
            filename: Client-supplied file name

        Returns:
            A failed outcome if the upload is rejected, otherwise None
        """
        max_size = self.settings.max_file_size
        if len(file_content) > max_size:
            return ProcessingOutcome(
                success=False,
                message=f"❌ File too large. Maximum size: {max_size // 1024 // 1024} MB",
                error_kind=ErrorKind.FILE_TOO_LARGE,
            )

        if not filename.lower().endswith(ARCHIVE_SUFFIX):
            return ProcessingOutcome(
                success=False,
                message="❌ Only ZIP archives with UPD are supported",
                error_kind=ErrorKind.INVALID_FILE_TYPE,
            )

        if not file_content:
            return ProcessingOutcome(
                success=False,
                message="❌ Uploaded file is empty",
                error_kind=ErrorKind.EMPTY_FILE,
            )

        return None

    def process_upd_file(
        self, file_content: bytes, filename: str, ctx: RequestContext | None = None
    ) -> ProcessingOutcome:
        """Process an uploaded UPD archive.

        Args:
            file_content: Raw archive bytes
            filename: Client-supplied file name
            ctx: Request context (created if not given)

        Returns:
            ProcessingOutcome describing success or the failure category
        """
        ctx = ctx or RequestContext()
        ctx.log.info(f"Starting UPD file processing: {filename}")

        rejection = self.validate_upload(file_content, filename)
        if rejection is not None:
            ctx.log.warning(f"Upload rejected ({rejection.error_kind.value}): {filename}")
            metrics.upd_uploads_total.labels(status="rejected").inc()
            return rejection

        metrics.upd_upload_size_bytes.observe(len(file_content))
        start_time = time.time()
        bundle: ParsedBundle | None = None

        try:
            bundle = self._parse(file_content, ctx)
            ctx.log.info(f"Parsed UPD:\n{bundle.summary()}")
            result = self._upload(bundle, ctx)
            outcome = self._success(bundle, result)
        except InvoiceCreationFailedError as e:
            ctx.log.error(f"MoySklad API error: {e.message}")
            outcome = self._failure(e, bundle)
            if e.shipment is not None:
                outcome.shipment_id = e.shipment.id
                outcome.shipment_name = e.shipment.name
                outcome.shipment_url = e.shipment_url
                outcome.shipment_left_behind = e.shipment_left_behind
        except UPDLoaderError as e:
            ctx.log.error(f"UPD processing failed ({e.kind.value}): {e.message}")
            outcome = self._failure(e, bundle)
        except Exception as e:
            ctx.log.exception(f"Unexpected error while processing {filename}: {e}")
            outcome = ProcessingOutcome(
                success=False,
                message=f"❌ Internal error while processing UPD: {e}",
                error_kind=ErrorKind.INTERNAL_ERROR,
                document=bundle,
            )

        metrics.upd_processing_duration_seconds.observe(time.time() - start_time)
        metrics.upd_uploads_total.labels(status="success" if outcome.success else "failed").inc()
        return outcome

    def _parse(self, file_content: bytes, ctx: RequestContext) -> ParsedBundle:
        archive_path = self._save_temp_file(file_content, ctx)
        # Unique per request: keyed by the temp file's random name
        extract_dir = archive_path.with_name(f"{archive_path.stem}_extract")
        try:
            ctx.log.info("Parsing UPD document...")
            return self.parser.parse_archive(archive_path, extract_dir, ctx)
        finally:
            archive_path.unlink(missing_ok=True)

    def _save_temp_file(self, file_content: bytes, ctx: RequestContext) -> Path:
        try:
            temp_dir = self.settings.ensure_temp_dir()
            with tempfile.NamedTemporaryFile(
                prefix="upd_", suffix=ARCHIVE_SUFFIX, dir=temp_dir, delete=False
            ) as tmp:
                tmp.write(file_content)
        except OSError as e:
            raise IOFailureError(f"Failed to save temp file: {e}") from e

        ctx.log.debug(f"Temporary file saved: {tmp.name}")
        return Path(tmp.name)

    def _upload(self, bundle: ParsedBundle, ctx: RequestContext) -> ReconciliationResult:
        ctx.log.info("Uploading to MoySklad...")
        with self._client(ctx) as client:
            if not client.verify_token():
                raise ExternalAPIError("invalid MoySklad API token")
            return ReconciliationEngine(client, self.settings, ctx).reconcile(bundle)

    def _success(self, bundle: ParsedBundle, result: ReconciliationResult) -> ProcessingOutcome:
        return ProcessingOutcome(
            success=True,
            message=format_success(bundle, result),
            document=bundle,
            shipment_id=result.shipment.id,
            shipment_name=result.shipment.name,
            shipment_url=result.shipment_url,
            invoice_id=result.invoice.id,
            invoice_name=result.invoice.name,
            invoice_url=result.invoice_url,
        )

    @staticmethod
    def _failure(error: UPDLoaderError, bundle: ParsedBundle | None) -> ProcessingOutcome:
        return ProcessingOutcome(
            success=False,
            message=format_failure(error, bundle),
            error_kind=error.kind,
            document=bundle,
        )

    def check_moysklad_connection(self, ctx: RequestContext | None = None) -> bool:
        """Check whether the configured MoySklad token is accepted."""
        with self._client(ctx or RequestContext()) as client:
            return client.verify_token()

    def get_moysklad_status(self, ctx: RequestContext | None = None) -> ApiStatus:
        """Get detailed MoySklad access diagnostics."""
        with self._client(ctx or RequestContext()) as client:
            return client.verify_api_access()
