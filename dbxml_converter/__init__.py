"""
XML / Relational Table-Forest Converter

A configurable tool that infers relational schemas from hierarchical XML
documents, imports those documents into a forest of linked tables and exports
the tables back to XML with paged, concurrent processing.
"""

__version__ = "1.0.0"

# Import core models and interfaces for easy access
from .models import (
    MappingNode,
    TableConfig,
    TableNode,
    DirectAssociation,
    InheritedAssociation,
    ProcessingConfig,
    ProcessingResult,
)

from .interfaces import (
    DatabaseInterface,
    SchemaInferenceInterface,
    DocumentExporterInterface,
    DocumentImporterInterface,
    TableConfigSourceInterface,
)

from .exceptions import (
    ConversionError,
    ConfigurationError,
    XMLParsingError,
    SchemaInferenceError,
    DatabaseConnectionError,
    DatabaseOperationError,
    DatabaseBatchError,
    ExportError,
)

__all__ = [
    # Core models
    "MappingNode",
    "TableConfig",
    "TableNode",
    "DirectAssociation",
    "InheritedAssociation",
    "ProcessingConfig",
    "ProcessingResult",

    # Interfaces
    "DatabaseInterface",
    "SchemaInferenceInterface",
    "DocumentExporterInterface",
    "DocumentImporterInterface",
    "TableConfigSourceInterface",

    # Exceptions
    "ConversionError",
    "ConfigurationError",
    "XMLParsingError",
    "SchemaInferenceError",
    "DatabaseConnectionError",
    "DatabaseOperationError",
    "DatabaseBatchError",
    "ExportError",
]
