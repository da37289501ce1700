"""Shared fixtures: sample UPD payloads, archive builder and a fake MoySklad API."""

import io
import json
import re
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from upd_loader.shared.config import Settings
from upd_loader.shared.context import RequestContext

API_ROOT = "https://api.moysklad.test/api/remap/1.2"
API_PATH = "/api/remap/1.2"
WEB_URL = "https://online.moysklad.test/app"

SELLER_INN = "7700000000"
BUYER_INN = "500000000000"

MAIN_XML = """<?xml version="1.0" encoding="windows-1251"?>
<Файл ИдФайл="ON_NSCHFDOPPR_TEST" ВерсФорм="5.01" ВерсПрог="Test 1.0">
  <Документ КНД="1115131" Функция="СЧФДОП">
    <СвСчФакт НомерСчФ="УТ-42" ДатаСчФ="15.03.2024" КодОКВ="643">
      <СвПрод>
        <ИдСв>
          <СвЮЛУч НаимОрг="ООО Поставщик" ИННЮЛ="7700000000" КПП="770001001"/>
        </ИдСв>
        <Адрес>
          <АдрРФ Индекс="101000" КодРегион="77" Город="Москва" Улица="Тверская" Дом="1"/>
        </Адрес>
      </СвПрод>
      <СвПокуп>
        <ИдСв>
          <СвИП ИННФЛ="500000000000">
            <ФИО Фамилия="Иванов" Имя="Иван" Отчество="Иванович"/>
          </СвИП>
        </ИдСв>
      </СвПокуп>
    </СвСчФакт>
    <ТаблСчФакт>
      <СведТов НомСтр="1" НаимТов="Болт М8" ОКЕИ_Тов="796" НаимЕдИзм="шт" КолТов="10" ЦенаТов="99.00" СтТовБезНДС="825.00" НалСт="20%" СтТовУчНал="990.00">
        <Акциз><БезАкциз>без акциза</БезАкциз></Акциз>
        <СумНал><СумНал>165.00</СумНал></СумНал>
        <ДопСведТов КодТов="SKU-1"/>
      </СведТов>
      <ВсегоОпл СтТовБезНДСВсего="825.00" СтТовУчНалВсего="990.00">
        <СумНалВсего><СумНал>165.00</СумНал></СумНалВсего>
      </ВсегоОпл>
    </ТаблСчФакт>
    <СвПродПер>
      <СвПер СодОпер="Товары переданы">
        <ОснПер НаимОсн="Счет" НомОсн="Счет № 00123 от 01.03.2024"/>
      </СвПер>
    </СвПродПер>
  </Документ>
</Файл>
"""

CARD_XML = """<?xml version="1.0" encoding="windows-1251"?>
<Card xmlns="http://api-invoice.taxcom.ru/card">
  <Identifiers ExternalIdentifier="a1b2c3d4-0000-1111-2222-333344445555"/>
  <Description Title="УПД № УТ-42 от 15.03.2024" Date="2024-03-15T10:30:00Z"/>
  <Sender>
    <Abonent Inn="7700000000" Kpp="770001001" Name="ООО Поставщик"/>
  </Sender>
</Card>
"""

XML_HEADER_ONLY = '<?xml version="1.0" encoding="windows-1251"?>\n'

META_XML = """<?xml version="1.0" encoding="utf-8"?>
<DocumentPackage>
  <DocFlow Id="flow-001">
    <MainImage Path="docs/main.xml"/>
    <ExternalCard Path="docs/card.xml"/>
  </DocFlow>
</DocumentPackage>
"""


def build_archive(
    main_xml: str | None = MAIN_XML,
    card_xml: str | None = CARD_XML,
    meta_xml: str | None = META_XML,
    extra: dict[str, bytes] | None = None,
) -> bytes:
    """Build an in-memory UPD ZIP archive.

    The card and main documents are stored in windows-1251, meta.xml in UTF-8.
    Passing None for a payload leaves it out of the archive.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        if meta_xml is not None:
            archive.writestr("meta.xml", meta_xml.encode("utf-8"))
        if main_xml is not None:
            archive.writestr("docs/main.xml", main_xml.encode("windows-1251"))
        if card_xml is not None:
            archive.writestr("docs/card.xml", card_xml.encode("windows-1251"))
        for name, data in (extra or {}).items():
            archive.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings pointing at the fake MoySklad API."""
    return Settings(
        moysklad_api_url=API_ROOT,
        moysklad_api_token="test-token",
        moysklad_web_url=WEB_URL,
        temp_dir=tmp_path / "scratch",
    )


@pytest.fixture
def ctx() -> RequestContext:
    """Create a request context with a fixed id."""
    return RequestContext(request_id="test-request")


@pytest.fixture
def archive_factory(tmp_path: Path) -> Callable[..., Path]:
    """Write archives built by ``build_archive`` to disk."""
    counter = iter(range(1000))

    def factory(**kwargs: Any) -> Path:
        path = tmp_path / f"upd_{next(counter)}.zip"
        path.write_bytes(build_archive(**kwargs))
        return path

    return factory


# ---------------------------------------------------------------------------
# Fake MoySklad
# ---------------------------------------------------------------------------


def meta(entity_type: str, entity_id: str) -> dict[str, Any]:
    return {
        "href": f"{API_ROOT}/entity/{entity_type}/{entity_id}",
        "type": entity_type,
        "mediaType": "application/json",
    }


def entity(entity_type: str, entity_id: str, name: str, **fields: Any) -> dict[str, Any]:
    return {"meta": meta(entity_type, entity_id), "id": entity_id, "name": name, **fields}


_FILTER = re.compile(r"^(\w+)([=~])(.*)$")


class FakeMoySklad:
    """In-memory MoySklad served through ``httpx.MockTransport``.

    Holds one seller organization, one product (SKU-1), one service, one
    store and a customer invoice ``00123`` whose store is a bare reference.
    """

    def __init__(self) -> None:
        self.token_valid = True
        self.organizations = [entity("organization", "org-1", "ООО Поставщик", inn=SELLER_INN)]
        self.counterparties: list[dict[str, Any]] = []
        self.products = [entity("product", "prod-1", "Болт М8", article="SKU-1")]
        self.services = [entity("service", "svc-1", "Доставка")]
        self.stores = [entity("store", "store-1", "Основной склад")]
        self.invoice_positions = [
            {
                "id": "pos-1",
                "quantity": 10.0,
                "price": 15000.0,
                "vat": 20,
                "assortment": entity("product", "prod-1", "Болт М8", article="SKU-1"),
            }
        ]
        self.invoices = [
            entity(
                "invoiceout",
                "inv-1",
                "00123",
                description="Счет для Иванова",
                agent=entity("counterparty", "cp-0", "Иванов Иван Иванович"),
                store={"meta": meta("store", "store-1")},
            )
        ]
        self.requests: list[httpx.Request] = []
        self.created: dict[str, list[dict[str, Any]]] = {
            "counterparty": [],
            "demand": [],
            "factureout": [],
        }
        self.deleted: list[str] = []
        self.failures: dict[str, httpx.Response] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, method: str, path: str, status_code: int, body: str = "error") -> None:
        """Make a method/path answer with an error status."""
        self.failures[f"{method} {path}"] = httpx.Response(status_code, text=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests if r.method == method and r.url.path == API_PATH + path
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(API_PATH)
        key = f"{request.method} {path}"
        if key in self.failures:
            return self.failures[key]

        if path == "/context/employee":
            if not self.token_valid:
                return httpx.Response(401, json={"errors": [{"error": "Authentication failed"}]})
            return httpx.Response(
                200,
                json=entity("employee", "emp-1", "Тестовый Сотрудник", email="test@example.com"),
            )

        if request.method == "GET":
            return self._get(path, request)
        if request.method == "POST":
            return self._post(path, json.loads(request.content))
        if request.method == "DELETE" and path.startswith("/entity/demand/"):
            self.deleted.append(path.rsplit("/", 1)[-1])
            return httpx.Response(200)
        return httpx.Response(404, json={"errors": [{"error": "not found"}]})

    def _collections(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "/entity/organization": self.organizations,
            "/entity/counterparty": self.counterparties,
            "/entity/product": self.products,
            "/entity/service": self.services,
            "/entity/store": self.stores,
            "/entity/invoiceout": self.invoices,
            "/entity/factureout": [],
        }

    def _get(self, path: str, request: httpx.Request) -> httpx.Response:
        collection = self._collections().get(path)
        if collection is not None:
            rows = [row for row in collection if _matches(row, request.url.params.get("filter"))]
            return httpx.Response(200, json={"meta": {"href": API_ROOT + path}, "rows": rows})

        if path == "/entity/invoiceout/inv-1/positions":
            return httpx.Response(
                200, json={"meta": {"href": API_ROOT + path}, "rows": self.invoice_positions}
            )

        if path.startswith("/entity/invoiceout/"):
            invoice = self._by_id(self.invoices, path)
            if invoice is None:
                return httpx.Response(404)
            positions_meta = {"href": f"{API_ROOT}{path}/positions", "type": "invoiceposition"}
            full = dict(invoice)
            if "positions" in request.url.params.get("expand", ""):
                full["positions"] = {"meta": positions_meta, "rows": self.invoice_positions}
            else:
                full["positions"] = {"meta": positions_meta}
            return httpx.Response(200, json=full)

        if path.startswith("/entity/store/"):
            store = self._by_id(self.stores, path)
            return httpx.Response(200, json=store) if store else httpx.Response(404)

        return httpx.Response(404, json={"errors": [{"error": "not found"}]})

    def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        entity_type = path.rsplit("/", 1)[-1]
        if entity_type not in self.created:
            return httpx.Response(404)
        self.created[entity_type].append(body)
        entity_id = f"{entity_type}-{len(self.created[entity_type])}"
        record = {**body, "meta": meta(entity_type, entity_id), "id": entity_id}
        if entity_type == "counterparty":
            self.counterparties.append(record)
        return httpx.Response(200, json=record)

    @staticmethod
    def _by_id(collection: list[dict[str, Any]], path: str) -> dict[str, Any] | None:
        entity_id = path.rsplit("/", 1)[-1]
        return next((row for row in collection if row["id"] == entity_id), None)


def _matches(row: dict[str, Any], filter_expr: str | None) -> bool:
    if not filter_expr:
        return True
    match = _FILTER.match(filter_expr)
    if match is None:
        return False
    field, operator, value = match.groups()
    actual = str(row.get(field) or "")
    return actual == value if operator == "=" else value in actual


@pytest.fixture
def fake_moysklad() -> FakeMoySklad:
    """Create a fresh fake MoySklad account."""
    return FakeMoySklad()
