"""UPD structural parser.

Parses the two payloads of a UPD bundle:

- card.xml: document identifier, title, issue timestamp, sender identity
- main document (ФНС format 5.01/5.03): header, seller and buyer, the line
  item table, totals and the transfer basis that links to the customer invoice

Fallback policy: a main document whose text is trivially short (just an XML
declaration) or structurally broken is replaced by a stub document with
placeholder parties and no items. Strict parsing mode turns the second case
into ``MalformedDocumentError``; the first case always yields the stub.
"""

import shutil
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from lxml import etree
from pydantic import ValidationError

from upd_loader.parsing.archive import extract_archive
from upd_loader.parsing.bundle import locate_bundle
from upd_loader.parsing.decoding import read_text
from upd_loader.parsing.schema import (
    DEFAULT_CURRENCY_CODE,
    NOT_SPECIFIED_NAME,
    NOT_SPECIFIED_NUMBER,
    Address,
    CardSummary,
    InvoiceDocument,
    LineItem,
    Organization,
    ParsedBundle,
)
from upd_loader.parsing.xml_utils import (
    find_all,
    find_first,
    first_attribute,
    first_digit_run,
    get_attribute,
    get_text,
    parse_decimal,
    parse_xml_text,
)
from upd_loader.shared.config import Settings
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import MalformedDocumentError

# Texts at or below this length (after trimming) carry no payload
STUB_THRESHOLD = 100

INVOICE_DATE_FORMAT = "%d.%m.%Y"


class UPDParser:
    """Turns an uploaded UPD archive into a ``ParsedBundle``."""

    def __init__(self, settings: Settings) -> None:
        """Initialize parser.

        Args:
            settings: Application settings (encoding and strictness)
        """
        self.settings = settings
        self.encoding = settings.upd_encoding
        self.strict = settings.strict_parsing

    def parse_archive(
        self, archive_path: Path, extract_dir: Path, ctx: RequestContext
    ) -> ParsedBundle:
        """Extract and parse a UPD archive.

        The extraction directory is removed before returning, on success and
        on failure.

        Args:
            archive_path: Uploaded ZIP archive
            extract_dir: Scratch directory unique to this request
            ctx: Request context

        Returns:
            Parsed bundle

        Raises:
            ParsingError: On archive or index failures (and structural errors
                in strict mode)
        """
        ctx.log.info(f"Starting UPD archive parsing: {archive_path.name}")

        try:
            extract_archive(archive_path, extract_dir, ctx)
            index = locate_bundle(extract_dir, ctx)
            card_text = read_text(extract_dir / index.card_path, self.encoding)
            main_text = read_text(extract_dir / index.main_document_path, self.encoding)
        finally:
            self._cleanup(extract_dir, ctx)

        bundle = ParsedBundle(
            index=index,
            card=self.parse_card(card_text, ctx),
            invoice=self.parse_invoice(main_text, ctx),
        )
        ctx.log.info(f"UPD successfully parsed: {bundle.document_id}")
        return bundle

    # ------------------------------------------------------------------
    # Card
    # ------------------------------------------------------------------

    def parse_card(self, text: str, ctx: RequestContext) -> CardSummary:
        """Parse card.xml text.

        Args:
            text: Decoded card document
            ctx: Request context

        Returns:
            CardSummary; timestamp defaults to now when missing or unparsable
        """
        try:
            root = parse_xml_text(text)
        except etree.XMLSyntaxError as e:
            if self.strict:
                raise MalformedDocumentError(f"Failed to parse card.xml: {e}") from e
            ctx.log.warning(f"Error parsing card.xml: {e}, using empty card")
            return CardSummary(issued_at=datetime.now())

        description = find_first(root, "Description")
        abonent = find_first(root, "Sender/Abonent")

        return CardSummary(
            external_id=get_attribute(find_first(root, "Identifiers"), "ExternalIdentifier"),
            title=get_attribute(description, "Title"),
            issued_at=_parse_card_timestamp(get_attribute(description, "Date")),
            sender_tax_id=get_attribute(abonent, "Inn") or None,
            sender_reg_code=get_attribute(abonent, "Kpp") or None,
            sender_name=get_attribute(abonent, "Name") or None,
        )

    # ------------------------------------------------------------------
    # Main document
    # ------------------------------------------------------------------

    def parse_invoice(self, text: str, ctx: RequestContext) -> InvoiceDocument:
        """Parse the main UPD document, applying the fallback policy.

        Args:
            text: Decoded main document
            ctx: Request context

        Returns:
            Parsed InvoiceDocument, or a stub document

        Raises:
            MalformedDocumentError: Structural error in strict mode
        """
        if len(text.strip()) <= STUB_THRESHOLD:
            ctx.log.warning("UPD file contains only an XML header, creating basic structure")
            return InvoiceDocument.stub()

        try:
            root = parse_xml_text(text)
            return self._parse_invoice_tree(root, ctx)
        except (etree.XMLSyntaxError, ValidationError, ValueError) as e:
            if self.strict:
                raise MalformedDocumentError(f"Malformed UPD document: {e}") from e
            ctx.log.warning(f"Error parsing full UPD: {e}, creating basic structure")
            return InvoiceDocument.stub()

    def _parse_invoice_tree(self, root: etree._Element, ctx: RequestContext) -> InvoiceDocument:
        version = get_attribute(root, "ВерсФорм")
        ctx.log.info(f"Parsing full UPD document (format version: {version or 'unknown'})")

        header = find_first(root, "СвСчФакт")
        invoice_number = first_attribute(header, "НомерДок", "НомерСчФ", strip=False) or NOT_SPECIFIED_NUMBER
        invoice_date = _parse_invoice_date(first_attribute(header, "ДатаДок", "ДатаСчФ"))
        currency_code = (
            get_attribute(find_first(header, "ДенИзм"), "КодОКВ")
            or get_attribute(header, "КодОКВ")
            or DEFAULT_CURRENCY_CODE
        )

        seller = _parse_party(find_first(root, "СвПрод"))
        buyer_element = find_first(root, "СвПокуп")
        if buyer_element is None:
            buyer_element = find_first(root, "ГрузПолуч")
        buyer = _parse_party(buyer_element)

        table = find_first(root, "ТаблСчФакт")
        items = [
            _parse_line_item(element, position)
            for position, element in enumerate(find_all(table, "СведТов"), start=1)
        ]
        for item in items:
            ctx.log.debug(
                f"Item {item.line_number}: {item.name}, article: {item.catalog_code}, "
                f"quantity: {item.quantity}, price: {item.unit_price}, "
                f"amount with VAT: {item.amount_incl_tax}"
            )
        ctx.log.info(f"Parsed {len(items)} items")

        total_excl_tax, total_tax, total_incl_tax = _parse_totals(
            find_first(table, "ВсегоОпл"), items
        )

        basis = find_first(root, "СвПродПер/СвПер/ОснПер")
        if basis is None:
            basis = find_first(root, "ОснПер")
        reference = first_digit_run(first_attribute(basis, "РеквНомерДок", "НомОсн"))

        document = InvoiceDocument(
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            seller=seller,
            buyer=buyer,
            items=items,
            currency_code=currency_code,
            total_excl_tax=total_excl_tax,
            total_tax=total_tax,
            total_incl_tax=total_incl_tax,
            source_invoice_reference=reference,
        )
        ctx.log.info(
            f"UPD parsed: № {invoice_number}, seller INN {seller.tax_id}, "
            f"buyer INN {buyer.tax_id}"
        )
        return document

    @staticmethod
    def _cleanup(extract_dir: Path, ctx: RequestContext) -> None:
        try:
            shutil.rmtree(extract_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            ctx.log.error(f"Failed to clean up extraction directory {extract_dir}: {e}")


def _parse_card_timestamp(value: str) -> datetime:
    if not value:
        return datetime.now()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00", 1))
    except ValueError:
        return datetime.now()


def _parse_invoice_date(value: str) -> datetime:
    if not value:
        return datetime.now()
    try:
        return datetime.strptime(value, INVOICE_DATE_FORMAT)
    except ValueError:
        return datetime.now()


def _parse_address(element: etree._Element | None) -> Address | None:
    if element is None:
        return None
    address = Address(
        postal_code=get_attribute(element, "Индекс") or None,
        region_code=get_attribute(element, "КодРегион") or None,
        region=get_attribute(element, "НаимРегион") or None,
        city=get_attribute(element, "Город") or None,
        street=get_attribute(element, "Улица") or None,
        house=get_attribute(element, "Дом") or None,
        apartment=get_attribute(element, "Кварт") or None,
    )
    return None if address.is_empty() else address


def _parse_party(element: etree._Element | None) -> Organization:
    """Parse a party block: legal entity first, then sole proprietor."""
    if element is None:
        return Organization.unspecified()

    address = _parse_address(find_first(element, "Адрес/АдрРФ"))

    legal = find_first(element, "ИдСв/СвЮЛУч")
    legal_tax_id = get_attribute(legal, "ИННЮЛ")
    if legal_tax_id:
        return Organization(
            name=get_attribute(legal, "НаимОрг") or NOT_SPECIFIED_NAME,
            tax_id=legal_tax_id,
            reg_code=get_attribute(legal, "КПП") or None,
            address=address,
        )

    individual = find_first(element, "ИдСв/СвИП")
    individual_tax_id = get_attribute(individual, "ИННФЛ")
    if individual_tax_id:
        full_name = find_first(individual, "ФИО")
        parts = (get_attribute(full_name, attr) for attr in ("Фамилия", "Имя", "Отчество"))
        name = " ".join(part for part in parts if part)
        return Organization(
            name=name or NOT_SPECIFIED_NAME,
            tax_id=individual_tax_id,
            address=address,
        )

    return Organization.unspecified()


def _line_number(value: str, position: int) -> int:
    """НомСтр if it is a positive ASCII integer, else the row position."""
    if value.isascii() and value.isdigit() and int(value) > 0:
        return int(value)
    return position


def _non_negative(value: Decimal) -> Decimal:
    return max(value, Decimal("0"))


def _parse_line_item(element: etree._Element, position: int) -> LineItem:
    return LineItem(
        line_number=_line_number(get_attribute(element, "НомСтр"), position),
        name=get_attribute(element, "НаимТов"),
        unit_code=get_attribute(element, "ОКЕИ_Тов") or None,
        unit_name=get_attribute(element, "НаимЕдИзм") or None,
        quantity=_non_negative(parse_decimal(get_attribute(element, "КолТов"))),
        unit_price=_non_negative(parse_decimal(get_attribute(element, "ЦенаТов"))),
        amount_excl_tax=parse_decimal(get_attribute(element, "СтТовБезНДС")),
        tax_rate_label=get_attribute(element, "НалСт"),
        tax_amount=parse_decimal(get_text(find_first(element, "СумНал/СумНал"))),
        amount_incl_tax=parse_decimal(get_attribute(element, "СтТовУчНал")),
        catalog_code=get_attribute(find_first(element, "ДопСведТов"), "КодТов") or None,
    )


def _parse_totals(
    element: etree._Element | None, items: list[LineItem]
) -> tuple[Decimal, Decimal, Decimal]:
    """Read ВсегоОпл totals; without the block, sum the line items instead."""
    if element is None:
        return (
            sum((item.amount_excl_tax for item in items), Decimal("0")),
            sum((item.tax_amount for item in items), Decimal("0")),
            sum((item.amount_incl_tax for item in items), Decimal("0")),
        )

    def amount(name: str) -> Decimal:
        return parse_decimal(get_attribute(element, name) or get_text(find_first(element, name)))

    tax_text = get_text(find_first(element, "СумНалВсего/СумНал")) or get_text(
        find_first(element, "СумНал")
    )
    return amount("СтТовБезНДСВсего"), parse_decimal(tax_text), amount("СтТовУчНалВсего")
