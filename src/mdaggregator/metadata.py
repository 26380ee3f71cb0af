"""
A small object model on top of lxml for SAML 2.0 metadata.

A metadata node is either an :class:`Entity` (one md:EntityDescriptor) or a
:class:`Container` (one md:EntitiesDescriptor) that holds Entities and
possibly other Containers.
"""
import copy
import logging
import re
from datetime import datetime
from datetime import timezone
from typing import List
from typing import Optional
from typing import Union

from lxml import etree

from mdaggregator.defaults import DS_NS
from mdaggregator.defaults import MD_NS
from mdaggregator.defaults import MDRPI_NS
from mdaggregator.defaults import NAMESPACES
from mdaggregator.defaults import ROLE_DESCRIPTORS
from mdaggregator.defaults import XML_NS
from mdaggregator.exception import ConfigurationError
from mdaggregator.exception import MetadataError

logger = logging.getLogger(__name__)

ENTITY_DESCRIPTOR = f"{{{MD_NS}}}EntityDescriptor"
ENTITIES_DESCRIPTOR = f"{{{MD_NS}}}EntitiesDescriptor"
EXTENSIONS = f"{{{MD_NS}}}Extensions"
SIGNATURE = f"{{{DS_NS}}}Signature"

TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Fractional seconds of any precision
FRACTION = re.compile(r"(T\d{2}:\d{2}:\d{2})\.\d+")


def xml_parser():
    return etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)


def format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(TIME_FORMAT)


def parse_time(text: str) -> int:
    _text = FRACTION.sub(r"\1", text.strip())
    if _text.endswith("Z"):
        _text = _text[:-1] + "+00:00"
    try:
        _dt = datetime.fromisoformat(_text)
    except ValueError:
        raise MetadataError(f"Invalid dateTime value: {text!r}")
    if _dt.tzinfo is None:
        _dt = _dt.replace(tzinfo=timezone.utc)
    return int(_dt.timestamp())


def local_name(element) -> str:
    return etree.QName(element).localname


def detached(element):
    """
    Copy an element out of its document. Every namespace in scope of the
    original is declared on the copy, also those only used in attribute
    values like xsi:type.
    """
    _copy = etree.Element(element.tag, attrib=dict(element.attrib), nsmap=element.nsmap)
    _copy.text = element.text
    for child in element:
        _copy.append(copy.deepcopy(child))
    return _copy


class RoleDescriptor(object):
    def __init__(self, kind: str, protocols: List[str]):
        self.kind = kind
        self.protocols = protocols

    @classmethod
    def from_element(cls, element):
        return cls(local_name(element), element.get("protocolSupportEnumeration", "").split())

    def __repr__(self):
        return f"RoleDescriptor({self.kind!r}, {self.protocols!r})"


class Entity(object):
    def __init__(self, element):
        if element.tag != ENTITY_DESCRIPTOR:
            raise MetadataError(f"Expected an EntityDescriptor, got {element.tag}")

        _entity_id = element.get("entityID")
        if not _entity_id:
            raise MetadataError("EntityDescriptor without entityID")

        _valid_until = element.get("validUntil")
        if _valid_until is not None:
            _valid_until = parse_time(_valid_until)

        self.element = element
        self.entity_id = _entity_id
        self.valid_until = _valid_until
        self.roles = [
            RoleDescriptor.from_element(child) for child in element
            if isinstance(child.tag, str) and child.tag.startswith(f"{{{MD_NS}}}")
            and local_name(child) in ROLE_DESCRIPTORS
        ]

    def canonical(self) -> bytes:
        return etree.tostring(self.element, method="c14n", exclusive=True)

    def unsigned(self) -> "Entity":
        """
        Return a copy of this entity without its own enveloped signature.
        """
        _element = detached(self.element)
        for _sig in _element.findall(SIGNATURE):
            _element.remove(_sig)
        return Entity(_element)

    def to_element(self):
        return detached(self.element)

    def __eq__(self, other):
        if not isinstance(other, Entity):
            return NotImplemented
        return self.canonical() == other.canonical()

    def __hash__(self):
        return hash(self.canonical())

    def __repr__(self):
        return f"Entity({self.entity_id!r})"


class Container(object):
    def __init__(self,
                 children: Optional[list] = None,
                 name: Optional[str] = None,
                 valid_until: Optional[int] = None,
                 extensions: Optional[list] = None):
        self.children = children or []
        self.name = name
        self.valid_until = valid_until
        self.extensions = extensions or []

    @classmethod
    def from_element(cls, element):
        if element.tag != ENTITIES_DESCRIPTOR:
            raise MetadataError(f"Expected an EntitiesDescriptor, got {element.tag}")

        _valid_until = element.get("validUntil")
        if _valid_until is not None:
            _valid_until = parse_time(_valid_until)

        _extensions = []
        _children = []
        for child in element:
            if child.tag == EXTENSIONS:
                _extensions.extend(c for c in child if isinstance(c.tag, str))
            elif child.tag in (ENTITY_DESCRIPTOR, ENTITIES_DESCRIPTOR):
                _children.append(from_element(child))

        return cls(_children, name=element.get("Name"), valid_until=_valid_until,
                   extensions=_extensions)

    def replace(self, children: list) -> "Container":
        """
        A new container with the same attributes as this one but other children.
        """
        return Container(children, name=self.name, valid_until=self.valid_until,
                         extensions=self.extensions)

    def to_element(self):
        _element = etree.Element(ENTITIES_DESCRIPTOR, nsmap={"md": MD_NS})
        if self.name:
            _element.set("Name", self.name)
        if self.valid_until is not None:
            _element.set("validUntil", format_time(self.valid_until))
        if self.extensions:
            _ext = etree.SubElement(_element, EXTENSIONS)
            for item in self.extensions:
                _ext.append(copy.deepcopy(item))
        for child in self.children:
            _element.append(child.to_element())
        return _element

    def __len__(self):
        return len(self.children)


Metadata = Union[Entity, Container]


def from_element(element) -> Metadata:
    if element.tag == ENTITY_DESCRIPTOR:
        return Entity(element)
    elif element.tag == ENTITIES_DESCRIPTOR:
        return Container.from_element(element)
    raise MetadataError(f"Not a metadata element: {element.tag}")


def parse_metadata(data: Union[str, bytes]) -> Metadata:
    """
    Parse a metadata document.

    :param data: The XML document
    :return: An Entity or a Container
    :raises etree.XMLSyntaxError: if the document is not well-formed
    :raises MetadataError: if the document does not have exactly one
        EntityDescriptor or EntitiesDescriptor root element or it can not be
        turned into an Entity or Container.
    """
    return from_element(metadata_root(parse_document(data)))


def parse_document(data: Union[str, bytes]):
    if isinstance(data, str):
        data = data.encode("utf-8")
    return etree.fromstring(data, xml_parser())


def metadata_root(element):
    _root = element.xpath("/md:EntityDescriptor|/md:EntitiesDescriptor", namespaces=NAMESPACES)
    if len(_root) == 0:
        raise MetadataError("No <EntityDescriptor> or <EntitiesDescriptor>")
    if len(_root) > 1:
        raise MetadataError("More than one <EntityDescriptor> or <EntitiesDescriptor>")
    return _root[0]


def serialize(node: Metadata) -> bytes:
    return etree.tostring(node.to_element(), encoding="UTF-8", xml_declaration=True)


def to_string(element) -> str:
    return etree.tostring(element, encoding="unicode")


def pretty_print(xml: str) -> str:
    _parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True,
                              huge_tree=True)
    _root = etree.fromstring(xml.encode("utf-8"), _parser)
    return etree.tostring(_root, encoding="unicode", pretty_print=True)


def extract_entities(container: Container) -> List[Entity]:
    """
    Recursively collect every Entity in a Container, independent of how deep
    it is nested.
    """
    _res = []
    for child in container.children:
        if isinstance(child, Entity):
            _res.append(child)
        else:
            _res.extend(extract_entities(child))
    return _res


def entity_ids(node: Metadata) -> List[str]:
    if isinstance(node, Entity):
        return [node.entity_id]
    return [e.entity_id for e in extract_entities(node)]


def _instant(value):
    if isinstance(value, int):
        return format_time(value)
    return value


def _localized_urls(parent, tag, urls):
    for lang, url in urls.items():
        _elem = etree.SubElement(parent, f"{{{MDRPI_NS}}}{tag}")
        _elem.set(f"{{{XML_NS}}}lang", lang)
        _elem.text = url


def registration_info(info: dict):
    """
    Build a mdrpi:RegistrationInfo element.

    :param info: Dictionary with 'registrationAuthority' and optionally
        'registrationInstant' and 'RegistrationPolicy' ({lang: url}).
    """
    try:
        _authority = info["registrationAuthority"]
    except KeyError:
        raise ConfigurationError("RegistrationInfo requires registrationAuthority")

    _elem = etree.Element(f"{{{MDRPI_NS}}}RegistrationInfo", nsmap={"mdrpi": MDRPI_NS})
    _elem.set("registrationAuthority", _authority)
    if "registrationInstant" in info:
        _elem.set("registrationInstant", _instant(info["registrationInstant"]))
    _localized_urls(_elem, "RegistrationPolicy", info.get("RegistrationPolicy", {}))
    return _elem


def publication_info(info: dict):
    """
    Build a mdrpi:PublicationInfo element.

    :param info: Dictionary with 'publisher' and optionally 'creationInstant',
        'publicationId' and 'UsagePolicy' ({lang: url}).
    """
    try:
        _publisher = info["publisher"]
    except KeyError:
        raise ConfigurationError("PublicationInfo requires publisher")

    _elem = etree.Element(f"{{{MDRPI_NS}}}PublicationInfo", nsmap={"mdrpi": MDRPI_NS})
    _elem.set("publisher", _publisher)
    if "creationInstant" in info:
        _elem.set("creationInstant", _instant(info["creationInstant"]))
    if "publicationId" in info:
        _elem.set("publicationId", info["publicationId"])
    _localized_urls(_elem, "UsagePolicy", info.get("UsagePolicy", {}))
    return _elem
