"""
Command-line interface for the XML / relational converter.

Sub-commands:
    dbxml infer FILE... [--rename NAME] [--apply]
    dbxml export TABLE [--map-type TYPE] [--output-dir DIR]
    dbxml import TABLE [--file FILE] [--map-type TYPE]
    dbxml root TABLE
"""

import os
import sys
import logging
import argparse

from typing import Optional

from . import __version__
from .config.config_manager import ConfigManager
from .config.processing_defaults import ProcessingDefaults
from .exceptions import ConversionError
from .monitoring.performance_monitor import PerformanceMonitor


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dbxml", description="Convert hierarchical XML to and from relational tables")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config-dir", help="Directory holding Table Config files (default: DBXML_CONFIG_PATH or ./conf)")
    parser.add_argument("--log-level", default=os.environ.get('DBXML_LOG_LEVEL', ProcessingDefaults.LOG_LEVEL),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level (default: DBXML_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    infer = subparsers.add_parser("infer", help="Infer DDL and Table Configs from sample XML documents")
    infer.add_argument("files", nargs="+", help="XML documents")
    infer.add_argument("--rename", help="Root table name to use instead of the file stem (single file only)")
    infer.add_argument("--single-row", dest="single_row", action="store_true", default=None,
                       help="Treat the whole document as one root row")
    infer.add_argument("--list", dest="single_row", action="store_false",
                       help="Treat each repeated child of the root as a root row")
    infer.add_argument("--map-scoped", action="store_true", help="Produce map-type filtered tables")
    infer.add_argument("--apply", action="store_true", help="Execute the generated DDL against the database")

    export = subparsers.add_parser("export", help="Export a table forest to an XML document")
    export.add_argument("table", help="Root table name (or any table of its forest)")
    export.add_argument("--map-type", help="Map-type variant to export")
    export.add_argument("--output-dir", help="Directory for the exported document (default: DBXML_EXPORT_PATH)")
    export.add_argument("--page-size", type=int, help=f"Root rows per page (default: {ProcessingDefaults.PAGE_SIZE})")
    export.add_argument("--workers", type=int,
                        help=f"Threads building pages (default: {ProcessingDefaults.EXPORT_WORKERS})")

    import_ = subparsers.add_parser("import", help="Import an XML document into its table forest")
    import_.add_argument("table", help="Root table name (or any table of its forest)")
    import_.add_argument("--file", help="Document to import (default: the config's file_path)")
    import_.add_argument("--map-type", help="Map-type variant to import")
    import_.add_argument("--batch-size", type=int,
                         help=f"Rows per insert transaction (default: {ProcessingDefaults.IMPORT_BATCH_SIZE})")

    root = subparsers.add_parser("root", help="Print the root table owning a table")
    root.add_argument("table", help="Table name")

    return parser


def _configure_logging(level: str):
    # Set up logging without reconfiguring root if already configured
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def _open_database(config_manager: ConfigManager):
    # pyodbc is only needed by commands that touch the database
    from .database.odbc_database import OdbcDatabase
    return OdbcDatabase.from_config_manager(config_manager)


def _run_infer(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    from .mapping.schema_inference import SchemaInferenceEngine

    processing = config_manager.get_processing_config()
    engine = SchemaInferenceEngine(processing.max_identifier_length, processing.row_id_tables)

    if args.rename:
        if len(args.files) != 1:
            logger.error("--rename needs exactly one file")
            return 1
        results = [engine.infer_file(args.files[0], new_table_name=args.rename,
                                     single_row=args.single_row, map_scoped=args.map_scoped)]
        errors = {}
    else:
        batch = engine.infer_files(args.files, single_row=args.single_row, map_scoped=args.map_scoped)
        results, errors = batch.results, batch.errors

    config_dir = config_manager.paths.base_config_path
    config_dir.mkdir(parents=True, exist_ok=True)
    for result in results:
        engine.write_outputs(result, config_dir, config_manager.paths.ddl_subdir)

    if args.apply and results:
        database = _open_database(config_manager)
        try:
            for result in results:
                engine.apply(result, database)
        finally:
            database.close_all()

    for path, error in errors.items():
        logger.error(f"{path}: {error}")
    logger.info(f"Inferred {len(results)} documents, {len(errors)} failed")
    return 0 if not errors else 1


def _run_export(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    from .processing.exporter import DocumentExporter

    table_config = config_manager.find_table_config(args.table)
    output_dir = args.output_dir or config_manager.paths.export_path
    database = _open_database(config_manager)
    monitor = PerformanceMonitor()
    monitor.start_monitoring()
    try:
        exporter = DocumentExporter(table_config, database, config_manager.get_processing_config(),
                                    map_type=args.map_type, monitor=monitor)
        result = exporter.export(output_dir)
    finally:
        database.close_all()
        summary = monitor.stop_monitoring()
    logger.info(f"Exported {result.records_successful} rows to {result.output_path}")
    logger.debug(f"Performance: {summary.performance_metrics}")
    return 0


def _run_import(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    from .processing.importer import DocumentImporter

    table_config = config_manager.find_table_config(args.table)
    database = _open_database(config_manager)
    monitor = PerformanceMonitor()
    monitor.start_monitoring()
    try:
        importer = DocumentImporter(table_config, database, config_manager.get_processing_config(),
                                    map_type=args.map_type, monitor=monitor)
        result = importer.import_file(args.file)
    finally:
        database.close_all()
        summary = monitor.stop_monitoring()
    logger.info(f"Imported {result.records_successful} rows into {table_config.table_name}")
    logger.debug(f"Performance: {summary.performance_metrics}")
    return 0


def _run_root(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    print(config_manager.get_root_table_name(args.table))
    return 0


COMMANDS = {
    'infer': _run_infer,
    'export': _run_export,
    'import': _run_import,
    'root': _run_root,
}


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI application.

    Args:
        args: Optional command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    parsed = _build_parser().parse_args(args)
    _configure_logging(parsed.log_level)
    logger = logging.getLogger(__name__)
    if logger.isEnabledFor(logging.DEBUG):
        ProcessingDefaults.log_summary(logger)

    overrides = {
        'page_size': getattr(parsed, 'page_size', None),
        'export_workers': getattr(parsed, 'workers', None),
        'import_batch_size': getattr(parsed, 'batch_size', None),
    }
    try:
        config_manager = ConfigManager(parsed.config_dir, processing_overrides=overrides)
        return COMMANDS[parsed.command](parsed, config_manager, logger)
    except ConversionError as e:
        logger.error(f"{parsed.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
