"""
Centralized configuration defaults for conversion jobs.

This module defines the operational constants used throughout the system:
paging, worker pool sizes, batch sizes and the sizing rules used by schema
inference. Environment variables and CLI arguments can override them at runtime.

Single Source of Truth: Change these values once; all modules automatically use updated defaults.
"""


class ProcessingDefaults:
    """
    Centralized operational configuration for export, import and inference.

    All values are defaults that can be overridden via environment or CLI:
    - dbxml export monster_list --page-size 500 --workers 8
    - DBXML_IMPORT_BATCH_SIZE=2000 dbxml import monster_list
    """

    # Export paging and concurrency
    PAGE_SIZE = 1000  # Root rows per export page
    EXPORT_WORKERS = 16  # Threads building pages
    SUBTREE_WORKERS = 4  # Threads populating nested sub-trees
    ASYNC_DEPTH = 2  # Sub-trees at this depth or deeper are built inline

    # Import
    IMPORT_BATCH_SIZE = 1000  # Rows per insert transaction

    # Schema inference
    MAX_IDENTIFIER_LENGTH = 60
    KEY_COLUMN_LENGTH = 255
    DEFAULT_VARCHAR_LENGTH = 64
    DEFAULT_ATTRIBUTE_LENGTH = 128
    MAX_VARCHAR_LENGTH = 255  # Longer observed values become TEXT
    TEXT_FIELD_THRESHOLD = 50  # More fields than this switches to TEXT columns
    MEDIUMTEXT_FIELD_THRESHOLD = 100  # More fields than this switches to MEDIUMTEXT

    # Database
    CONNECTION_TIMEOUT = 30
    FAST_EXECUTEMANY = False  # MySQL ODBC drivers do not all support parameter arrays

    # Logging
    LOG_LEVEL = "INFO"

    @classmethod
    def to_dict(cls) -> dict:
        """
        Export all defaults as a dictionary.

        Returns:
            Dictionary of all ProcessingDefaults class attributes.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if not key.startswith('_') and key.isupper()
        }

    @classmethod
    def log_summary(cls, logger=None):
        """
        Log a summary of all operational defaults.

        Args:
            logger: Optional logger instance. If None, prints to stdout.
        """
        config_dict = cls.to_dict()
        summary = "\n".join([f"  {key}: {value}" for key, value in sorted(config_dict.items())])
        message = f"Processing Configuration Defaults:\n{summary}"

        if logger:
            logger.info(message)
        else:
            print(message)
