"""
Custom exceptions for the XML/relational conversion system.

This module defines specific exception types for the error conditions that can
occur while loading mapping configuration, inferring schemas, exporting table
forests to XML and importing XML documents into tables.
"""


class ConversionError(Exception):
    """Base exception for all conversion related errors."""

    def __init__(self, message: str, source_file: str = None):
        """
        Initialize conversion error.

        Args:
            message: Error description
            source_file: Optional path of the config or XML file that caused the error
        """
        super().__init__(message)
        self.source_file = source_file


class ConfigurationError(ConversionError):
    """Exception raised when configuration is invalid or missing."""
    pass


class SchemaInferenceError(ConfigurationError):
    """Exception raised when a document holds nothing a table schema can be inferred from."""
    pass


class XMLParsingError(ConversionError):
    """Exception raised when XML parsing fails."""

    def __init__(self, message: str, xml_content: str = None, source_file: str = None):
        """
        Initialize XML parsing error.

        Args:
            message: Error description
            xml_content: Optional XML content that failed to parse (truncated for logging)
            source_file: Optional path of the document
        """
        super().__init__(message, source_file)
        # Keep only the first 500 chars for debugging
        self.xml_content = xml_content[:500] + "..." if xml_content and len(xml_content) > 500 else xml_content


class DatabaseConnectionError(ConversionError):
    """Exception raised when database connection fails."""
    pass


class DatabaseOperationError(ConversionError):
    """Exception raised when a query or statement fails."""

    def __init__(self, message: str, error_category: str = "database_error", source_file: str = None):
        """
        Initialize database operation error.

        Args:
            message: Error description
            error_category: Coarse category (e.g. duplicate_key, data_too_long)
            source_file: Optional path of the document being processed
        """
        super().__init__(message, source_file)
        self.error_category = error_category


class DatabaseBatchError(ConversionError):
    """Exception raised when one import batch fails and the job is rolled back."""

    def __init__(self, message: str, table_name: str = None, batch_index: int = None,
                 source_file: str = None):
        """
        Initialize batch error.

        Args:
            message: Error description
            table_name: Table the failing batch targeted
            batch_index: Zero based index of the failing batch within that table
            source_file: Optional path of the document being imported
        """
        super().__init__(message, source_file)
        self.table_name = table_name
        self.batch_index = batch_index


class ExportError(ConversionError):
    """Exception raised when an export job fails."""
    pass

