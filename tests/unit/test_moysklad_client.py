"""Unit tests for the MoySklad API client."""

import json
from collections.abc import Iterator

import httpx
import pytest

from conftest import API_ROOT, SELLER_INN, WEB_URL, FakeMoySklad, meta
from upd_loader.moysklad.client import MoySkladClient
from upd_loader.moysklad.schema import (
    CounterpartyCreate,
    DemandCreate,
    FactureOutCreate,
    MetaRef,
    Position,
)
from upd_loader.shared.config import Settings
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import (
    ErrorKind,
    ExternalAPIError,
    InvoiceCreationFailedError,
    ShipmentCreationFailedError,
)


@pytest.fixture
def client(settings: Settings, ctx: RequestContext, fake_moysklad: FakeMoySklad) -> Iterator[MoySkladClient]:
    """Create a client bound to the fake MoySklad."""
    with MoySkladClient(settings, ctx, transport=fake_moysklad.transport) as client:
        yield client


def ref(entity_type: str, entity_id: str) -> MetaRef:
    return MetaRef.model_validate({"meta": meta(entity_type, entity_id)})


def demand_payload() -> DemandCreate:
    return DemandCreate(
        name="ОУТ-42",
        moment="2024-03-15 00:00:00.000",
        organization=ref("organization", "org-1"),
        agent=ref("counterparty", "cp-1"),
        store=ref("store", "store-1"),
        positions=[Position(quantity=10, price=9900, vat=20, assortment=ref("product", "prod-1"))],
        invoices_out=[ref("invoiceout", "inv-1")],
    )


class TestTransport:
    """Test request construction and error mapping."""

    def test_headers(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        client.verify_token()

        request = fake_moysklad.requests[0]
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.headers["Accept"] == "application/json;charset=utf-8"
        assert str(request.url) == f"{API_ROOT}/context/employee"

    def test_filter_parameter(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        organization = client.find_organization_by_inn(SELLER_INN)

        assert organization is not None
        assert organization.id == "org-1"
        assert organization.inn == SELLER_INN
        request = fake_moysklad.calls("GET", "/entity/organization")[0]
        assert request.url.params["filter"] == f"inn={SELLER_INN}"

    def test_not_found_returns_none(self, client: MoySkladClient) -> None:
        assert client.find_organization_by_inn("1111111111") is None
        assert client.find_counterparty_by_inn("1111111111") is None

    def test_lookup_error_status_raises(
        self, client: MoySkladClient, fake_moysklad: FakeMoySklad
    ) -> None:
        """Should not treat a failed lookup as an empty result."""
        fake_moysklad.fail("GET", "/entity/organization", 500, "server down")

        with pytest.raises(ExternalAPIError) as exc_info:
            client.find_organization_by_inn(SELLER_INN)

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "server down"

    def test_network_error(self, settings: Settings, ctx: RequestContext) -> None:
        """Should map transport failures to ExternalAPIError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with MoySkladClient(settings, ctx, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ExternalAPIError) as exc_info:
                client.find_product_by_article("SKU-1")

        assert exc_info.value.kind == ErrorKind.EXTERNAL_API_FAILURE
        assert exc_info.value.status_code is None

    def test_unexpected_body(self, settings: Settings, ctx: RequestContext) -> None:
        """Should raise ExternalAPIError when the response does not match the schema."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"rows": "oops"}))

        with MoySkladClient(settings, ctx, transport=transport) as client:
            with pytest.raises(ExternalAPIError):
                client.find_product_by_article("SKU-1")

    def test_absolute_href_is_relative_to_api_root(
        self, client: MoySkladClient, fake_moysklad: FakeMoySklad
    ) -> None:
        store = client.get_store(f"{API_ROOT}/entity/store/store-1")

        assert store.name == "Основной склад"
        assert len(fake_moysklad.calls("GET", "/entity/store/store-1")) == 1


class TestAccessChecks:
    """Test token and account diagnostics."""

    def test_verify_token(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        assert client.verify_token() is True

        fake_moysklad.token_valid = False
        assert client.verify_token() is False

    def test_verify_api_access(self, client: MoySkladClient) -> None:
        status = client.verify_api_access()

        assert status.success is True
        assert status.employee is not None
        assert status.employee.email == "test@example.com"
        assert status.organization is not None
        assert status.organization.inn == SELLER_INN
        assert status.permissions is not None
        assert status.permissions.organizations_count == 1
        assert status.permissions.stores_count == 1
        assert status.permissions.can_create_invoices is True
        assert status.permissions.can_access_counterparties is True
        assert status.base_url == API_ROOT

    def test_verify_api_access_rejected_token(
        self, client: MoySkladClient, fake_moysklad: FakeMoySklad
    ) -> None:
        fake_moysklad.token_valid = False

        status = client.verify_api_access()

        assert status.success is False
        assert status.error == "API access error: 401"

    def test_verify_api_access_without_organizations(
        self, client: MoySkladClient, fake_moysklad: FakeMoySklad
    ) -> None:
        fake_moysklad.organizations = []

        status = client.verify_api_access()

        assert status.success is False
        assert status.error == "No organizations found"

    def test_verify_api_access_network_error(self, settings: Settings, ctx: RequestContext) -> None:
        """Should report, not raise, when MoySklad is unreachable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with MoySkladClient(settings, ctx, transport=httpx.MockTransport(handler)) as client:
            status = client.verify_api_access()

        assert status.success is False
        assert status.details is not None


class TestLookups:
    """Test catalog and invoice lookups."""

    def test_find_product(self, client: MoySkladClient) -> None:
        by_article = client.find_product_by_article("SKU-1")
        by_name = client.find_product_by_name("Болт М8")

        assert by_article is not None and by_article.id == "prod-1"
        assert by_name is not None and by_name.id == "prod-1"
        assert client.find_product_by_article("SKU-404") is None

    def test_get_any_service(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        service = client.get_any_service()
        assert service is not None and service.id == "svc-1"

        fake_moysklad.services = []
        assert client.get_any_service() is None

    def test_invoice_lookup_and_expand(
        self, client: MoySkladClient, fake_moysklad: FakeMoySklad
    ) -> None:
        listed = client.find_invoice_out("name=00123")
        assert listed is not None
        assert listed.positions is None
        assert listed.store is not None and listed.store.is_bare_reference

        full = client.get_invoice_out(listed.meta.href)

        assert full.positions is not None
        assert full.positions.rows is not None
        assert full.positions.rows[0].price == 15000.0
        assert full.positions.rows[0].assortment is not None
        assert full.positions.rows[0].assortment.article == "SKU-1"
        request = fake_moysklad.calls("GET", "/entity/invoiceout/inv-1")[0]
        assert request.url.params["expand"] == "positions.assortment"

    def test_get_positions(self, client: MoySkladClient) -> None:
        rows = client.get_positions(f"{API_ROOT}/entity/invoiceout/inv-1/positions")

        assert [row.id for row in rows] == ["pos-1"]

    def test_invoice_description_filter(self, client: MoySkladClient) -> None:
        assert client.find_invoice_out("description~Иванова") is not None
        assert client.find_invoice_out("name=99999") is None


class TestWrites:
    """Test document creation payloads and failures."""

    def test_create_counterparty(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        created = client.create_counterparty(
            CounterpartyCreate(name="ИП Иванов", inn="500000000000", company_type="individual")
        )

        assert created.id == "counterparty-1"
        body = fake_moysklad.created["counterparty"][0]
        assert body == {"name": "ИП Иванов", "inn": "500000000000", "companyType": "individual"}

    def test_create_counterparty_failure(
        self, client: MoySkladClient, fake_moysklad: FakeMoySklad
    ) -> None:
        fake_moysklad.fail("POST", "/entity/counterparty", 412, "invalid inn")

        with pytest.raises(ExternalAPIError, match="invalid inn"):
            client.create_counterparty(CounterpartyCreate(name="X", inn="1"))

    def test_create_demand_payload(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        demand = client.create_demand(demand_payload())

        assert demand.id == "demand-1"
        body = json.loads(fake_moysklad.calls("POST", "/entity/demand")[0].content)
        assert body["vatEnabled"] is True
        assert body["vatIncluded"] is True
        assert body["positions"][0]["price"] == 9900
        assert body["positions"][0]["assortment"]["meta"]["mediaType"] == "application/json"
        assert body["invoicesOut"][0]["meta"]["href"] == f"{API_ROOT}/entity/invoiceout/inv-1"

    def test_create_demand_failure(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        fake_moysklad.fail("POST", "/entity/demand", 400, "bad store")

        with pytest.raises(ShipmentCreationFailedError) as exc_info:
            client.create_demand(demand_payload())

        assert exc_info.value.kind == ErrorKind.SHIPMENT_CREATION_FAILED
        assert exc_info.value.status_code == 400

    def test_create_factureout_failure(
        self, client: MoySkladClient, fake_moysklad: FakeMoySklad
    ) -> None:
        fake_moysklad.fail("POST", "/entity/factureout", 500, "boom")
        payload = FactureOutCreate(
            name="УТ-42",
            moment="2024-03-15 00:00:00.000",
            organization=ref("organization", "org-1"),
            agent=ref("counterparty", "cp-1"),
            demands=[ref("demand", "demand-1")],
        )

        with pytest.raises(InvoiceCreationFailedError) as exc_info:
            client.create_factureout(payload)

        assert exc_info.value.body == "boom"

    def test_delete_demand(self, client: MoySkladClient, fake_moysklad: FakeMoySklad) -> None:
        client.delete_demand("demand-7")

        assert fake_moysklad.deleted == ["demand-7"]

    def test_urls(self, client: MoySkladClient) -> None:
        assert client.demand_url("d1") == f"{WEB_URL}/#demand/edit?id=d1"
        assert client.factureout_url("f1") == f"{WEB_URL}/#factureout/edit?id=f1"
