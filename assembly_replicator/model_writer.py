"""
model_writer.py

Provides functions to serialize a ModelDocument into the model XML interchange format.
It queries the document's registries to write levels, definitions, members and
instances, resolving relationships (member level, instance definition, instance
membership) to user identifiers.
"""

import xml.etree.ElementTree as ET
import os
import logging

from .cad_common import XmlWritingError
from .model_document import ModelDocument

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"


def build_xml_tree(document: ModelDocument) -> ET.ElementTree:
    """Constructs the XML ElementTree for the model."""
    root = ET.Element("Model", {"Name": document.model_name, "Version": FORMAT_VERSION})

    # 1. Levels and definitions, in creation order
    levels_container = ET.SubElement(root, "levels")
    for level in document.list_levels():
        levels_container.append(level.to_xml_element())

    definitions_container = ET.SubElement(root, "definitions")
    for definition in document.list_definitions():
        definitions_container.append(definition.to_xml_element())

    # 2. Members, with their level resolved to its user identifier
    members_container = ET.SubElement(root, "members")
    for member in document.list_members():
        level = document.get_level(member.level_id) if member.level_id else None
        try:
            members_container.append(member.to_xml_element(level.user_identifier if level else None))
        except (TypeError, ValueError) as e:
            raise XmlWritingError(f"Error building XML for member {member.user_identifier}: {e}") from e

    # 3. Instances, referencing their definition and members by user identifier
    instances_container = ET.SubElement(root, "instances")
    for instance in document.list_instances():
        definition = document.get_definition_of_instance(instance)
        if definition is None:
            logger.warning(f"Instance '{instance.user_identifier}' has no definition. Skipping.")
            continue
        member_names = [m.user_identifier for m in document.get_instance_members(instance)]
        instances_container.append(instance.to_xml_element(definition.name, member_names))

    return ET.ElementTree(root)


def save_model_file(document: ModelDocument, file_path: str, pretty_print: bool = True) -> str:
    """
    Builds the XML tree for the document and saves it.

    Args:
        document: The ModelDocument to save.
        file_path: The output file path (extension forced to .xml).
        pretty_print: If True, indents the XML for readability.
    Returns:
        The path written.
    """
    base, _ = os.path.splitext(file_path)
    output_path = base + '.xml'
    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    logger.info(f"Building XML tree for model '{document.model_name}'...")
    tree = build_xml_tree(document)
    if pretty_print:
        ET.indent(tree, space="  ", level=0)

    try:
        tree.write(output_path, encoding='utf-8', xml_declaration=True)
    except OSError as e:
        raise XmlWritingError(f"Failed to save model file to {output_path}: {e}") from e
    logger.info(f"Model file successfully saved to: {output_path}")
    return output_path
