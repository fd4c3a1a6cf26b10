"""
Parsing module: secure lxml reading and writing of XML documents.
"""

from .xml_parser import XMLDocumentIO

__all__ = ['XMLDocumentIO']
