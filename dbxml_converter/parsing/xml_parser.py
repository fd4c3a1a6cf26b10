"""
XML document reading and writing.

This module wraps lxml for the two directions the converter needs: parsing
documents from disk (UTF-16 or any BOM/declaration-described encoding) into
element trees, and writing element trees back out as indented UTF-16 files.
"""

import logging
import re

from pathlib import Path
from typing import Optional, Union

from lxml import etree

from ..exceptions import XMLParsingError


DEFAULT_OUTPUT_ENCODING = "UTF-16"


class XMLDocumentIO:
    """
    Reads and writes XML documents with a hardened lxml parser.

    Parsing never resolves external entities or touches the network. Comments
    and processing instructions are dropped and indentation-only text is
    discarded, so callers only ever see element structure, attributes and leaf
    text.
    """

    _declaration_pattern = re.compile(r'^\s*<\?xml[^>]*\?>', re.IGNORECASE)

    def __init__(self, output_encoding: str = DEFAULT_OUTPUT_ENCODING):
        self.logger = logging.getLogger(__name__)
        self.output_encoding = output_encoding

    def _new_parser(self) -> etree.XMLParser:
        # lxml parsers are not thread-safe, one per call
        return etree.XMLParser(
            recover=False,
            strip_cdata=False,
            resolve_entities=False,
            no_network=True,
            remove_blank_text=True,
            remove_comments=True,
            remove_pis=True,
        )

    def parse_file(self, path: Union[str, Path]):
        """
        Parse an XML document from disk.

        Args:
            path: Document location

        Returns:
            Root lxml element

        Raises:
            XMLParsingError: If the file is missing or malformed
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise XMLParsingError(f"Failed to read XML file {path}: {e}", source_file=str(path)) from e
        return self.parse_bytes(data, source_file=str(path))

    def parse_bytes(self, data: bytes, source_file: Optional[str] = None):
        """Parse raw document bytes; the BOM or XML declaration picks the encoding."""
        if not data or not data.strip(b"\x00 \t\r\n\xef\xbb\xbf\xff\xfe"):
            raise XMLParsingError("XML document is empty", source_file=source_file)
        try:
            return etree.fromstring(data, self._new_parser())
        except etree.XMLSyntaxError as e:
            preview = data[:500].decode('utf-8', errors='replace')
            self.logger.error(f"XML syntax error in {source_file or '<bytes>'}: {e}")
            raise XMLParsingError(f"XML syntax error: {e}", preview, source_file) from e

    def parse_string(self, xml_content: str, source_file: Optional[str] = None):
        """
        Parse XML held in a string.

        Raises:
            XMLParsingError: If the content is empty or malformed
        """
        cleaned = self._clean_xml_content(xml_content or "")
        if not cleaned:
            raise XMLParsingError("XML document is empty", xml_content, source_file)
        # lxml refuses str input that carries an encoding declaration
        cleaned = self._declaration_pattern.sub('', cleaned, count=1)
        try:
            return etree.fromstring(cleaned.encode('utf-8'), self._new_parser())
        except etree.XMLSyntaxError as e:
            self.logger.error(f"XML syntax error in {source_file or '<string>'}: {e}")
            raise XMLParsingError(f"XML syntax error: {e}", xml_content, source_file) from e

    def _clean_xml_content(self, xml_content: str) -> str:
        """
        Clean and normalize XML content for parsing.

        Args:
            xml_content: Raw XML content

        Returns:
            Cleaned XML content
        """
        # Remove BOM if present
        if xml_content.startswith('\ufeff'):
            xml_content = xml_content[1:]
            self.logger.debug("Removed BOM from XML content")

        # Handle BOM that might appear as visible characters (like ï»¿)
        if xml_content.startswith('ï»¿'):
            xml_content = xml_content[3:]
            self.logger.debug("Removed visible UTF-8 BOM characters from XML content")

        # Remove other common hidden characters at the beginning
        while xml_content and ord(xml_content[0]) < 32 and xml_content[0] not in '\t\n\r':
            xml_content = xml_content[1:]

        return xml_content.strip()

    def write_document(self, root, path: Union[str, Path], pretty: bool = True) -> Path:
        """
        Write an element tree to disk.

        Args:
            root: Root lxml element
            path: Target file; parent directories are created
            pretty: Indent nested elements with tabs

        Returns:
            The written path
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if pretty:
            etree.indent(root, space="\t")
        etree.ElementTree(root).write(
            str(path), encoding=self.output_encoding, xml_declaration=True
        )
        return path

    @staticmethod
    def is_element(node) -> bool:
        """True for real elements (not comments, entities or processing instructions)."""
        return isinstance(node.tag, str)

    @staticmethod
    def local_name(tag: str) -> str:
        """Strip a ``{namespace}`` prefix from a tag or attribute name."""
        if tag.startswith('{'):
            end_ns = tag.find('}')
            if end_ns > 0:
                return tag[end_ns + 1:]
        return tag

    @staticmethod
    def child_elements(element):
        """Element children only, in document order."""
        return [child for child in element if isinstance(child.tag, str)]
