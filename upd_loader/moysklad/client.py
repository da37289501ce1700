"""MoySklad JSON API client.

Thin synchronous wrapper over ``httpx.Client``: one call per method, no
retries. Every call is logged with method, endpoint, status and duration and
counted in Prometheus. Responses are decoded into the schemas from
``upd_loader.moysklad.schema``.
"""

import time
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from upd_loader.api import metrics
from upd_loader.moysklad.schema import (
    ApiStatus,
    Counterparty,
    CounterpartyCreate,
    Demand,
    DemandCreate,
    Employee,
    EmployeeInfo,
    FactureOut,
    FactureOutCreate,
    InvoiceOut,
    InvoiceOutPosition,
    ListResponse,
    Organization,
    OrganizationInfo,
    Permissions,
    Product,
    Service,
    Store,
)
from upd_loader.shared.config import Settings
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import (
    ExternalAPIError,
    InvoiceCreationFailedError,
    ShipmentCreationFailedError,
)

M = TypeVar("M", bound=BaseModel)

JSON_CONTENT_TYPE = "application/json;charset=utf-8"


class MoySkladClient:
    """Client for the MoySklad remap 1.2 API.

    One instance serves one request; it owns its ``httpx.Client`` and must be
    closed (or used as a context manager).
    """

    def __init__(
        self,
        settings: Settings,
        ctx: RequestContext | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize MoySklad client.

        Args:
            settings: Application settings (API URL, token, timeout)
            ctx: Request context for log correlation
            transport: Optional httpx transport, used to substitute the network
        """
        self.settings = settings
        self.ctx = (ctx or RequestContext()).child(__name__)
        self._base_url = settings.moysklad_api_url.rstrip("/")
        self._web_url = settings.moysklad_web_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {settings.moysklad_api_token}",
                "Content-Type": JSON_CONTENT_TYPE,
                "Accept": JSON_CONTENT_TYPE,
            },
            timeout=settings.moysklad_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MoySkladClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _endpoint(self, href: str) -> str:
        """Turn an absolute meta href into an endpoint relative to the API root."""
        if href.startswith(self._base_url):
            return href[len(self._base_url) :] or "/"
        return href

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, str] | None = None,
        payload: BaseModel | None = None,
    ) -> httpx.Response:
        """Perform a single API call with logging and metrics.

        Raises:
            ExternalAPIError: On any network-level failure
        """
        endpoint = self._endpoint(endpoint)
        body = (
            payload.model_dump(mode="json", by_alias=True, exclude_none=True)
            if payload is not None
            else None
        )

        start_time = time.perf_counter()
        try:
            response = self._client.request(method, endpoint, params=params, json=body)
        except httpx.HTTPError as e:
            duration = time.perf_counter() - start_time
            metrics.moysklad_requests_total.labels(method=method, status="error").inc()
            metrics.moysklad_request_duration_seconds.labels(method=method).observe(duration)
            self.ctx.log.error(f"MoySklad API: Request failed {method} {endpoint}: {e}")
            raise ExternalAPIError(f"Network error calling MoySklad {method} {endpoint}: {e}") from e

        duration = time.perf_counter() - start_time
        duration_ms = int(duration * 1000)
        metrics.moysklad_requests_total.labels(
            method=method, status=str(response.status_code)
        ).inc()
        metrics.moysklad_request_duration_seconds.labels(method=method).observe(duration)

        status_code = response.status_code
        if response.is_success:
            self.ctx.log.info(f"MoySklad API: {method} {endpoint} -> {status_code} ({duration_ms}ms)")
        elif 400 <= status_code < 500:
            self.ctx.log.error(f"MoySklad API: Client error {method} {endpoint} -> {status_code} ({duration_ms}ms)")
        elif status_code >= 500:
            self.ctx.log.error(f"MoySklad API: Server error {method} {endpoint} -> {status_code} ({duration_ms}ms)")
        else:
            self.ctx.log.warning(f"MoySklad API: {method} {endpoint} -> {status_code} ({duration_ms}ms)")
        return response

    def _decode(self, response: httpx.Response, model: type[M]) -> M:
        try:
            return model.model_validate_json(response.content)
        except ValidationError as e:
            raise ExternalAPIError(
                f"Unexpected MoySklad response for {response.request.url.path}: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def _get(self, endpoint: str, model: type[M], params: dict[str, str] | None = None) -> M:
        response = self._request("GET", endpoint, params=params)
        if not response.is_success:
            raise ExternalAPIError(
                f"MoySklad GET {self._endpoint(endpoint)} failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return self._decode(response, model)

    def _find_first(self, endpoint: str, model: type[M], filter_expr: str) -> M | None:
        listing = self._get(endpoint, ListResponse[model], params={"filter": filter_expr})  # type: ignore[valid-type]
        return listing.rows[0] if listing.rows else None

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    def verify_token(self) -> bool:
        """Check that the configured token is accepted.

        Returns:
            True if GET /context/employee answers 200
        """
        try:
            response = self._request("GET", "/context/employee")
        except ExternalAPIError as e:
            self.ctx.log.error(f"Token verification error: {e.message}")
            return False
        return response.status_code == 200

    def verify_api_access(self) -> ApiStatus:
        """Collect a diagnostic view of the account behind the token.

        Never raises: failures are reported in the returned status.

        Returns:
            ApiStatus with employee, first organization and permissions
        """
        self.ctx.log.info("Verifying MoySklad API access...")

        try:
            response = self._request("GET", "/context/employee")
        except ExternalAPIError as e:
            return ApiStatus(
                success=False,
                error=e.message,
                details="Check internet connection and MoySklad API availability",
            )
        if response.status_code != 200:
            return ApiStatus(
                success=False,
                error=f"API access error: {response.status_code}",
                details=response.text,
            )

        try:
            employee = self._decode(response, Employee)
            organizations = self._get("/entity/organization", ListResponse[Organization])
        except ExternalAPIError as e:
            return ApiStatus(success=False, error="No access to organizations", details=e.message)

        if not organizations.rows:
            return ApiStatus(
                success=False,
                error="No organizations found",
                details="No available organizations in the MoySklad account",
            )

        permissions = self._check_permissions()
        permissions.organizations_count = len(organizations.rows)
        main_org = organizations.rows[0]

        return ApiStatus(
            success=True,
            employee=EmployeeInfo(name=employee.name, email=employee.email),
            organization=OrganizationInfo(id=main_org.id, name=main_org.name, inn=main_org.inn),
            permissions=permissions,
            base_url=self._base_url,
        )

    def _check_permissions(self) -> Permissions:
        permissions = Permissions()
        permissions.can_create_invoices = self._is_readable("/entity/factureout")
        permissions.can_access_counterparties = self._is_readable("/entity/counterparty")

        try:
            stores = self._get("/entity/store", ListResponse[Store])
        except ExternalAPIError:
            return permissions
        permissions.can_access_stores = True
        permissions.stores_count = len(stores.rows)
        return permissions

    def _is_readable(self, endpoint: str) -> bool:
        try:
            return self._request("GET", endpoint).status_code == 200
        except ExternalAPIError:
            return False

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_organization_by_inn(self, inn: str) -> Organization | None:
        organization = self._find_first("/entity/organization", Organization, f"inn={inn}")
        if organization:
            self.ctx.log.info(f"Found organization by INN {inn}: {organization.name}")
        else:
            self.ctx.log.warning(f"Organization with INN {inn} not found")
        return organization

    def find_counterparty_by_inn(self, inn: str) -> Counterparty | None:
        return self._find_first("/entity/counterparty", Counterparty, f"inn={inn}")

    def find_invoice_out(self, filter_expr: str) -> InvoiceOut | None:
        """Find the first customer invoice matching a filter expression.

        Args:
            filter_expr: MoySklad filter, e.g. ``name=123`` or ``description~123``

        Returns:
            Matching invoice as listed (positions not expanded), or None
        """
        return self._find_first("/entity/invoiceout", InvoiceOut, filter_expr)

    def get_invoice_out(self, href: str) -> InvoiceOut:
        """Fetch the full customer invoice with positions and their assortment."""
        return self._get(href, InvoiceOut, params={"expand": "positions.assortment"})

    def get_store(self, href: str) -> Store:
        return self._get(href, Store)

    def get_positions(self, href: str) -> list[InvoiceOutPosition]:
        """Load a positions collection that was not returned inline."""
        listing = self._get(
            href, ListResponse[InvoiceOutPosition], params={"expand": "assortment"}
        )
        return listing.rows

    def find_product_by_article(self, article: str) -> Product | None:
        return self._find_first("/entity/product", Product, f"article={article}")

    def find_product_by_name(self, name: str) -> Product | None:
        return self._find_first("/entity/product", Product, f"name={name}")

    def get_any_service(self) -> Service | None:
        listing = self._get("/entity/service", ListResponse[Service])
        if not listing.rows:
            self.ctx.log.warning("No available services in MoySklad")
            return None
        service = listing.rows[0]
        self.ctx.log.debug(f"Using available service: {service.name}")
        return service

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_counterparty(self, payload: CounterpartyCreate) -> Counterparty:
        """Create a buyer counterparty.

        Raises:
            ExternalAPIError: If MoySklad rejects the request
        """
        response = self._request("POST", "/entity/counterparty", payload=payload)
        if not response.is_success:
            raise ExternalAPIError(
                f"Error creating counterparty: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        counterparty = self._decode(response, Counterparty)
        self.ctx.log.info(f"Counterparty successfully created: {counterparty.name}")
        return counterparty

    def create_demand(self, payload: DemandCreate) -> Demand:
        """Create a shipment.

        Raises:
            ShipmentCreationFailedError: If MoySklad rejects the request
        """
        response = self._request("POST", "/entity/demand", payload=payload)
        if not response.is_success:
            raise ShipmentCreationFailedError(response.status_code, response.text)
        demand = self._decode(response, Demand)
        self.ctx.log.info(f"Demand successfully created: {demand.id}")
        return demand

    def create_factureout(self, payload: FactureOutCreate) -> FactureOut:
        """Create an outgoing invoice.

        Raises:
            InvoiceCreationFailedError: If MoySklad rejects the request
        """
        response = self._request("POST", "/entity/factureout", payload=payload)
        if not response.is_success:
            raise InvoiceCreationFailedError(response.status_code, response.text)
        facture = self._decode(response, FactureOut)
        self.ctx.log.info(f"Invoice successfully created: {facture.id}")
        return facture

    def delete_demand(self, demand_id: str) -> None:
        """Delete a shipment.

        Raises:
            ExternalAPIError: If MoySklad rejects the request
        """
        response = self._request("DELETE", f"/entity/demand/{demand_id}")
        if not response.is_success:
            raise ExternalAPIError(
                f"Error deleting demand {demand_id}: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

    # ------------------------------------------------------------------
    # Web console links
    # ------------------------------------------------------------------

    def demand_url(self, demand_id: str) -> str:
        return f"{self._web_url}/#demand/edit?id={demand_id}"

    def factureout_url(self, facture_id: str) -> str:
        return f"{self._web_url}/#factureout/edit?id={facture_id}"
