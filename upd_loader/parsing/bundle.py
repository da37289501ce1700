"""Bundle locator: reads meta.xml to find the card and main documents."""

from pathlib import Path

from lxml import etree

from upd_loader.parsing.schema import BundleIndex
from upd_loader.parsing.xml_utils import find_all, find_first, get_attribute, parse_xml_bytes
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import IOFailureError, MalformedIndexError, MissingIndexError

INDEX_FILE_NAME = "meta.xml"


def locate_bundle(extract_dir: Path, ctx: RequestContext) -> BundleIndex:
    """Read the bundle index from the extraction root.

    Args:
        extract_dir: Directory the archive was extracted into
        ctx: Request context

    Returns:
        BundleIndex with the flow id and both document paths

    Raises:
        MissingIndexError: If meta.xml is absent
        MalformedIndexError: If the index has no usable DocFlow record or
            references files missing from the archive
    """
    index_path = extract_dir / INDEX_FILE_NAME
    if not index_path.is_file():
        raise MissingIndexError(f"{INDEX_FILE_NAME} not found in archive")

    try:
        root = parse_xml_bytes(index_path.read_bytes())
    except OSError as e:
        raise IOFailureError(f"Failed to read {INDEX_FILE_NAME}: {e}") from e
    except etree.XMLSyntaxError as e:
        raise MalformedIndexError(f"Failed to parse {INDEX_FILE_NAME}: {e}") from e

    flows = find_all(root, "DocFlow")
    if not flows:
        raise MalformedIndexError(f"No DocFlow found in {INDEX_FILE_NAME}")

    flow = flows[0]
    flow_id = get_attribute(flow, "Id")
    if not flow_id:
        raise MalformedIndexError("DocFlow Id not found")

    main_path = get_attribute(find_first(flow, "MainImage"), "Path")
    card_path = get_attribute(find_first(flow, "ExternalCard"), "Path")
    if not main_path or not card_path:
        raise MalformedIndexError(f"File paths not found in {INDEX_FILE_NAME}")

    root_dir = extract_dir.resolve()
    for relative in (main_path, card_path):
        target = (root_dir / relative).resolve()
        if not target.is_relative_to(root_dir):
            raise MalformedIndexError(f"File path escapes the archive: {relative}")
        if not target.is_file():
            raise MalformedIndexError(f"File listed in {INDEX_FILE_NAME} is missing: {relative}")

    ctx.log.debug(f"Bundle index: flow {flow_id}, main {main_path}, card {card_path}")
    return BundleIndex(flow_id=flow_id, main_document_path=main_path, card_path=card_path)
