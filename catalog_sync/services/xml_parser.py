"""Parser for GEKO catalog XML documents.

The document is turned into plain nested dicts and lists:

- tag and attribute names are lowercased (namespaces dropped)
- attributes are merged into the element mapping
- text-only elements become stripped strings
- elements with both attributes and text keep the text under ``"_"``
- repeated child tags become lists

Two wrappers are recognized: ``<geko>`` and ``<offer>``, each carrying
``products/product`` (``<offer>`` may also carry ``item`` elements directly).
Right after parsing, every repeatable element (products, variants, prices,
images) is normalized into a list so downstream code never has to check for
the single-element case.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

KNOWN_ROOTS = ("geko", "offer")
TEXT_KEY = "_"


class ParseError(Exception):
    """Raised when the catalog XML is malformed or of an unknown shape."""

    pass


@dataclass
class ParsedCatalog:
    """Result of parsing a catalog document.

    Attributes:
        root: Detected wrapper element ('geko' or 'offer')
        products: Product nodes, each with list-normalized children
    """

    root: str
    products: list[dict[str, Any]] = field(default_factory=list)

    @property
    def product_count(self) -> int:
        """Number of product nodes in the document."""
        return len(self.products)


def ensure_list(value: Any) -> list[Any]:
    """Normalize a possibly-single, possibly-missing node into a list.

    Args:
        value: None, an empty string (empty element), a single node or a list.

    Returns:
        A list of nodes (empty for None / empty elements).
    """
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [item for item in value if item is not None and item != ""]
    return [value]


def _local_name(tag: str) -> str:
    """Strip any ``{namespace}`` prefix and lowercase a tag or attribute."""
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    return tag.lower()


def element_to_object(element: ET.Element) -> Any:
    """Convert an element tree into nested dicts, lists and strings."""
    node: dict[str, Any] = {
        _local_name(name): value for name, value in element.attrib.items()
    }

    for child in element:
        if not isinstance(child.tag, str):
            # Comments and processing instructions
            continue
        name = _local_name(child.tag)
        value = element_to_object(child)
        if name in node and name not in element.attrib:
            existing = node[name]
            if isinstance(existing, list):
                existing.append(value)
            else:
                node[name] = [existing, value]
        else:
            node[name] = value

    text = (element.text or "").strip()
    if not node:
        return text
    if text:
        node[TEXT_KEY] = text
    return node


def _normalize_children(node: dict[str, Any], container: str, child: str) -> list[Any]:
    """Replace ``node[container][child]`` with a flat list stored at ``node[container]``."""
    holder = node.get(container)
    if isinstance(holder, dict):
        items = ensure_list(holder.get(child))
    elif isinstance(holder, list):
        # Repeated container elements, e.g. two <images> blocks
        items = []
        for part in holder:
            if isinstance(part, dict):
                items.extend(ensure_list(part.get(child)))
    else:
        items = []
    node[container] = items
    return items


def normalize_product(product: dict[str, Any]) -> dict[str, Any]:
    """List-normalize the repeatable children of one product node."""
    for variant in _normalize_children(product, "variants", "variant"):
        if isinstance(variant, dict):
            _normalize_children(variant, "prices", "price")
    _normalize_children(product, "prices", "price")
    _normalize_children(product, "images", "image")
    return product


def _find_products(root: str, tree: Any) -> list[Any]:
    """Locate the product nodes under a recognized wrapper."""
    if not isinstance(tree, dict):
        raise ParseError(f"Unrecognized schema: <{root}> has no products")

    products = tree.get("products")
    if isinstance(products, dict):
        return ensure_list(products.get("product"))
    if products == "":
        return []
    if root == "offer" and "item" in tree:
        return ensure_list(tree.get("item"))
    raise ParseError(f"Unrecognized schema: <{root}> has no products/product")


def parse_xml(content: str | bytes) -> ParsedCatalog:
    """Parse a GEKO catalog document.

    Args:
        content: Raw XML text or bytes.

    Returns:
        ParsedCatalog with list-normalized product nodes.

    Raises:
        ParseError: If the XML is malformed or has neither a <geko> nor an
            <offer> wrapper with products.
    """
    if not content or not content.strip():
        raise ParseError("Empty XML document")

    try:
        element = ET.fromstring(content)
    except ET.ParseError as e:
        raise ParseError(f"Malformed XML: {e}") from e

    root = _local_name(element.tag)
    if root not in KNOWN_ROOTS:
        raise ParseError(
            f"Unrecognized schema: root element <{root}>, expected one of {KNOWN_ROOTS}"
        )

    products: list[dict[str, Any]] = []
    for index, node in enumerate(_find_products(root, element_to_object(element))):
        if not isinstance(node, dict):
            logger.warning("Skipping product node %d without fields", index)
            continue
        products.append(normalize_product(node))

    logger.info("Parsed <%s> catalog with %d products", root, len(products))
    return ParsedCatalog(root=root, products=products)
