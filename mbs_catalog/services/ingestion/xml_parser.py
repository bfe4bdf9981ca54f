"""Defensive XML parsing and item collection discovery.

The upstream schedule has shipped under several root/collection layouts
across revisions. Each known layout is an ``XmlShape``; shapes are tried in
order and the first one that yields at least one element wins.
"""

from dataclasses import dataclass
from typing import Optional
from xml.etree.ElementTree import Element

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError, fromstring

from mbs_catalog.core.exceptions import MalformedXmlError, UnsafeXmlError
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


@dataclass(frozen=True)
class XmlShape:
    """A known layout of the item collection.

    Attributes:
        name: Label used in logs
        path: ElementTree path from the root to the item elements
        root_tag: Required root element name, or None for any root
    """

    name: str
    path: str
    root_tag: Optional[str] = None

    def match(self, root: Element) -> list[Element]:
        if self.root_tag is not None and root.tag != self.root_tag:
            return []
        return root.findall(self.path)


DEFAULT_SHAPES: tuple[XmlShape, ...] = (
    XmlShape("MBS_XML/Data", "Data", root_tag="MBS_XML"),
    XmlShape("Data", "Data"),
    XmlShape("MBS/Items/Item", "Items/Item", root_tag="MBS"),
    XmlShape("Items/Item", "Items/Item"),
    XmlShape("MBSItems/Item", "MBSItems/Item"),
    XmlShape("Item", "Item"),
)


def parse_catalog_xml(data: bytes) -> Element:
    """Parse XML bytes, rejecting entity declarations and external references.

    Namespace prefixes are stripped from element names; attributes, comments
    and processing instructions are never read.

    Raises:
        UnsafeXmlError: The document declares entities or references external resources
        MalformedXmlError: The document is not well-formed
    """
    try:
        root = fromstring(data, forbid_dtd=False, forbid_entities=True, forbid_external=True)
    except DefusedXmlException as e:
        raise UnsafeXmlError(f"Rejected unsafe XML: {e}", original_error=e) from e
    except ParseError as e:
        raise MalformedXmlError(f"Malformed XML: {e}", original_error=e) from e

    for element in root.iter():
        element.tag = _local_name(element.tag)
    return root


def element_to_record(element: Element) -> dict[str, str]:
    """Flatten one item element into ``{child tag: stripped text}``.

    Empty children are dropped; for repeated tags the first occurrence wins.
    """
    record: dict[str, str] = {}
    for child in element:
        if not child.tag or child.tag in record:
            continue
        text = (child.text or "").strip()
        if text:
            record[child.tag] = text
    return record


def extract_items(
    root: Element,
    shapes: tuple[XmlShape, ...] = DEFAULT_SHAPES,
) -> tuple[Optional[XmlShape], list[dict[str, str]]]:
    """Locate the item collection using the first matching shape.

    Returns:
        The matched shape (None when nothing matched) and the flattened records
    """
    for shape in shapes:
        elements = shape.match(root)
        if elements:
            LOGGER.info(
                f"Matched XML shape '{shape.name}' with {len(elements)} items",
                extra={"shape": shape.name, "item_count": len(elements)},
            )
            return shape, [element_to_record(element) for element in elements]

    LOGGER.warning(
        f"No known item collection found under root <{root.tag}>",
        extra={"root_tag": root.tag, "shapes_tried": [s.name for s in shapes]},
    )
    return None, []
