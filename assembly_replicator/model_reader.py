"""
model_reader.py

Provides functions to read a model XML file written by model_writer and rebuild a
ModelDocument from it. Entities are re-created through the document's adders, so
user identifiers survive the round trip while internal UUIDs are newly assigned.
"""

import xml.etree.ElementTree as ET
import json
import logging
from typing import Optional

from .cad_common import XmlParsingError, ModelConfigurationError
from .model_document import ModelDocument
from .model_entities import parse_point

logger = logging.getLogger(__name__)


def _user_id(element: ET.Element) -> str:
    tag = element.find("Tag")
    if tag is None or not tag.text:
        raise XmlParsingError(f"<{element.tag}> element has no Tag")
    try:
        return json.loads(tag.text)["user_id"]
    except (ValueError, KeyError) as e:
        raise XmlParsingError(f"Invalid Tag on <{element.tag}>: {tag.text}") from e


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


def _read_member(document: ModelDocument, element: ET.Element) -> None:
    common = dict(
        identifier=_user_id(element),
        category_id=int(element.get("category", "0")),
        type_id=_optional_int(element.get("type")),
        comment=element.get("comment", ""),
        level=element.get("level"),
    )
    kind = element.tag
    if kind == "wall":
        height = element.get("height")
        member = document.add_wall(parse_point(element.findtext("start")), parse_point(element.findtext("end")),
                                   height=float(height) if height is not None else None, **common)
    elif kind == "curve":
        member = document.add_curve_member(parse_point(element.findtext("start")),
                                           parse_point(element.findtext("end")), **common)
    elif kind == "point":
        member = document.add_point_member(parse_point(element.findtext("p")), **common)
    elif kind == "box":
        member = document.add_box_member(parse_point(element.findtext("min")),
                                         parse_point(element.findtext("max")), **common)
    elif kind == "region":
        boundary = [parse_point(p.text) for p in element.findall("pts/p")]
        member = document.add_region(boundary, height=float(element.get("height", "10.0")),
                                     elevation=float(element.get("elevation", "0.0")),
                                     bounded=element.get("bounded", "true").lower() == "true", **common)
    else:
        logger.warning(f"Unknown member element <{kind}>. Skipping.")
        return
    if member is None:
        raise XmlParsingError(f"Could not create <{kind}> member '{common['identifier']}'")


def read_model_file(file_path: str) -> ModelDocument:
    """
    Read a model XML file and return a ModelDocument.
    Raises XmlParsingError on malformed files or inconsistent references.
    """
    try:
        root = ET.parse(file_path).getroot()
    except (ET.ParseError, OSError) as e:
        raise XmlParsingError(f"Error reading model file {file_path}: {e}") from e
    if root.tag != "Model":
        raise XmlParsingError(f"{file_path} is not a model file (root <{root.tag}>)")

    document = ModelDocument(root.get("Name", "Unnamed Model"))
    try:
        for element in root.findall("levels/level"):
            if document.add_level(_user_id(element), float(element.get("elevation", "0.0"))) is None:
                raise XmlParsingError(f"Could not create level '{_user_id(element)}'")
        for element in root.findall("definitions/definition"):
            if document.add_definition(_user_id(element), element.get("description", "")) is None:
                raise XmlParsingError(f"Could not create definition '{_user_id(element)}'")
        members = root.find("members")
        for element in (members if members is not None else []):
            _read_member(document, element)
        for element in root.findall("instances/instance"):
            refs = [m.get("ref") for m in element.findall("member")]
            instance = document.add_instance(element.get("definition"), parse_point(element.get("anchor")),
                                             identifier=_user_id(element), members=refs)
            if instance is None:
                raise XmlParsingError(f"Could not create instance '{_user_id(element)}'")
            if len(document.get_instance_member_ids(instance)) != len(refs):
                raise XmlParsingError(f"Instance '{instance.user_identifier}' references unknown or shared members")
        document.validate()
    except (ValueError, ModelConfigurationError) as e:
        raise XmlParsingError(f"Invalid model file {file_path}: {e}") from e

    logger.info(f"Read model '{document.model_name}' from {file_path}")
    return document
