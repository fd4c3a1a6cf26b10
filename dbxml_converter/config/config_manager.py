"""
Configuration for one converter process.

ConfigManager gathers what a job needs before it starts: how to reach the
database, the paging and threading parameters, and the directory of Table
Config files from which the table forest is built. Values come from DBXML_*
environment variables, optionally overridden from the command line. One
instance is created per process and handed to whoever needs it.
"""

import os
import json
import logging

import yaml

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..interfaces import TableConfigSourceInterface
from ..mapping.forest_builder import TableForest, TableForestBuilder
from ..models import ProcessingConfig, TableConfig
from ..exceptions import ConfigurationError
from .processing_defaults import ProcessingDefaults


CONFIG_SUFFIXES = ('.json', '.yaml', '.yml')
YAML_SUFFIXES = ('.yaml', '.yml')


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class DatabaseConfig:
    """ODBC connection settings; DBXML_CONNECTION_STRING wins over the DBXML_DB_* parts."""
    connection_string: str
    driver: str = "MySQL ODBC 8.0 Unicode Driver"
    server: str = "localhost"
    port: int = 3306
    database: str = "dbxml"
    username: str = "root"
    connection_timeout: int = ProcessingDefaults.CONNECTION_TIMEOUT
    charset: str = "utf8mb4"
    fast_executemany: bool = ProcessingDefaults.FAST_EXECUTEMANY

    @classmethod
    def from_environment(cls) -> 'DatabaseConfig':
        fast_executemany = os.environ.get(
            'DBXML_DB_FAST_EXECUTEMANY', str(cls.fast_executemany)
        ).lower() == 'true'

        explicit = os.environ.get('DBXML_CONNECTION_STRING')
        if explicit:
            return cls(connection_string=explicit, fast_executemany=fast_executemany)

        settings = {
            'driver': os.environ.get('DBXML_DB_DRIVER', cls.driver),
            'server': os.environ.get('DBXML_DB_SERVER', cls.server),
            'port': _env_int('DBXML_DB_PORT', cls.port),
            'database': os.environ.get('DBXML_DB_DATABASE', cls.database),
            'username': os.environ.get('DBXML_DB_USERNAME', cls.username),
            'connection_timeout': _env_int('DBXML_DB_CONNECTION_TIMEOUT', cls.connection_timeout),
            'charset': os.environ.get('DBXML_DB_CHARSET', cls.charset),
        }
        parts = [
            f"DRIVER={{{settings['driver']}}}",
            f"SERVER={settings['server']}",
            f"PORT={settings['port']}",
            f"DATABASE={settings['database']}",
            f"UID={settings['username']}",
            f"PWD={os.environ.get('DBXML_DB_PASSWORD', '')}",
        ]
        if settings['charset']:
            parts.append(f"CHARSET={settings['charset']}")

        return cls(connection_string=';'.join(parts) + ';', fast_executemany=fast_executemany, **settings)


@dataclass
class ProcessingParameters:
    """Paging, threading and inference knobs (DBXML_PAGE_SIZE and friends)."""
    page_size: int = ProcessingDefaults.PAGE_SIZE
    export_workers: int = ProcessingDefaults.EXPORT_WORKERS
    subtree_workers: int = ProcessingDefaults.SUBTREE_WORKERS
    async_depth: int = ProcessingDefaults.ASYNC_DEPTH
    import_batch_size: int = ProcessingDefaults.IMPORT_BATCH_SIZE
    max_identifier_length: int = ProcessingDefaults.MAX_IDENTIFIER_LENGTH
    row_id_tables: Tuple[str, ...] = ()

    @classmethod
    def from_environment(cls) -> 'ProcessingParameters':
        row_id_tables = os.environ.get('DBXML_ROW_ID_TABLES', '')
        return cls(
            page_size=_env_int('DBXML_PAGE_SIZE', cls.page_size),
            export_workers=_env_int('DBXML_EXPORT_WORKERS', cls.export_workers),
            subtree_workers=_env_int('DBXML_SUBTREE_WORKERS', cls.subtree_workers),
            async_depth=_env_int('DBXML_ASYNC_DEPTH', cls.async_depth),
            import_batch_size=_env_int('DBXML_IMPORT_BATCH_SIZE', cls.import_batch_size),
            max_identifier_length=_env_int('DBXML_MAX_IDENTIFIER_LENGTH', cls.max_identifier_length),
            row_id_tables=tuple(name.strip() for name in row_id_tables.split(',') if name.strip()),
        )


@dataclass
class ConfigPaths:
    """Where Table Configs are read from and where exports and DDL go."""
    base_config_path: Path = field(default_factory=lambda: Path.cwd() / "conf")
    export_path: Path = field(default_factory=lambda: Path.cwd() / "export")
    ddl_subdir: str = "sql"

    @classmethod
    def from_environment(cls, base_path: Optional[Union[str, Path]] = None) -> 'ConfigPaths':
        """``base_path`` (usually --config-dir) beats DBXML_CONFIG_PATH."""
        config_dir = base_path or os.environ.get('DBXML_CONFIG_PATH') or Path.cwd() / "conf"
        return cls(
            base_config_path=Path(config_dir),
            export_path=Path(os.environ.get('DBXML_EXPORT_PATH', Path.cwd() / "export")),
            ddl_subdir=os.environ.get('DBXML_DDL_SUBDIR', cls.ddl_subdir),
        )


class ConfigManager(TableConfigSourceInterface):
    """
    Process-wide configuration.

    Owns the database settings, the processing parameters and the Table
    Configs found in the config directory. Configs are parsed once and cached
    together with the table forest built from them; call clear_cache() after
    the directory changes.
    """

    def __init__(self, base_config_path: Optional[Union[str, Path]] = None,
                 processing_overrides: Optional[Dict[str, Any]] = None):
        """
        Args:
            base_config_path: Directory of Table Config files; falls back to
                              DBXML_CONFIG_PATH, then ./conf
            processing_overrides: Processing parameters taking precedence over
                                  the environment; None values are ignored
        """
        self.logger = logging.getLogger(__name__)

        self.paths = ConfigPaths.from_environment(base_config_path)
        self.database_config = DatabaseConfig.from_environment()
        self.processing_params = ProcessingParameters.from_environment()
        for key, value in (processing_overrides or {}).items():
            if value is None:
                continue
            if not hasattr(self.processing_params, key):
                raise ConfigurationError(f"Unknown processing parameter: {key}")
            setattr(self.processing_params, key, value)

        self._table_config_cache: Dict[str, TableConfig] = {}
        self._forest: Optional[TableForest] = None

        self.logger.info(f"Using table configs from {self.paths.base_config_path}")
        self.logger.debug(f"Database server: {self.database_config.server}")

    def get_database_connection_string(self) -> str:
        return self.database_config.connection_string

    def get_processing_config(self) -> ProcessingConfig:
        """
        Freeze the current processing parameters into a ProcessingConfig.

        Raises:
            ConfigurationError: If a parameter is out of range
        """
        params = self.processing_params
        try:
            return ProcessingConfig(
                page_size=params.page_size,
                export_workers=params.export_workers,
                subtree_workers=params.subtree_workers,
                async_depth=params.async_depth,
                import_batch_size=params.import_batch_size,
                max_identifier_length=params.max_identifier_length,
                row_id_tables=params.row_id_tables,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid processing parameters: {e}") from e

    def _resolve_config_path(self, name_or_path: Union[str, Path]) -> Path:
        candidate = Path(name_or_path)
        if candidate.suffix.lower() in CONFIG_SUFFIXES:
            if not candidate.is_absolute() and not candidate.exists():
                candidate = self.paths.base_config_path / candidate
            return candidate
        for suffix in CONFIG_SUFFIXES:
            path = self.paths.base_config_path / f"{name_or_path}{suffix}"
            if path.exists():
                return path
        return self.paths.base_config_path / f"{name_or_path}.json"

    def load_table_config(self, name_or_path: Union[str, Path]) -> TableConfig:
        """
        Load a Table Config with caching.

        Args:
            name_or_path: Root table name (looked up in the config directory) or
                          a path to a .json/.yaml file

        Returns:
            Loaded and validated Table Config

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        full_path = self._resolve_config_path(name_or_path)
        cache_key = str(full_path)
        if cache_key in self._table_config_cache:
            self.logger.debug(f"Returning cached table config for {cache_key}")
            return self._table_config_cache[cache_key]

        if not full_path.exists():
            raise ConfigurationError(f"Table config file not found: {full_path}", source_file=str(full_path))

        try:
            with open(full_path, 'r', encoding='utf-8') as file:
                if full_path.suffix.lower() in YAML_SUFFIXES:
                    config_data = yaml.safe_load(file)
                elif full_path.suffix.lower() == '.json':
                    config_data = json.load(file)
                else:
                    raise ConfigurationError(f"Unsupported file format: {full_path.suffix}",
                                             source_file=str(full_path))
        except (json.JSONDecodeError, yaml.YAMLError, ValueError) as e:
            raise ConfigurationError(f"Failed to parse table config file {full_path}: {e}",
                                     source_file=str(full_path)) from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read table config file {full_path}: {e}",
                                     source_file=str(full_path)) from e

        table_config = TableConfig.from_dict(config_data, source_path=str(full_path))
        self._table_config_cache[cache_key] = table_config
        self.logger.info(f"Loaded table config '{table_config.table_name}' from {full_path}")
        return table_config

    def list_table_configs(self) -> List[TableConfig]:
        """
        Load every Table Config in the configuration directory.

        Returns:
            Configs sorted by file name

        Raises:
            ConfigurationError: If the directory is missing or any file is invalid
        """
        config_dir = self.paths.base_config_path
        if not config_dir.is_dir():
            raise ConfigurationError(f"Config directory not found: {config_dir}", source_file=str(config_dir))
        files = sorted(path for path in config_dir.iterdir()
                       if path.is_file() and path.suffix.lower() in CONFIG_SUFFIXES)
        return [self.load_table_config(path) for path in files]

    def build_forest(self) -> TableForest:
        """Build (once) the forest of every table named by the configuration directory."""
        if self._forest is None:
            self._forest = TableForestBuilder().build_forest(self.list_table_configs())
        return self._forest

    def get_root_table_name(self, table_name: str) -> str:
        """
        Get the ultimate root table owning ``table_name``.

        Raises:
            ConfigurationError: If no config mentions the table
        """
        return self.build_forest().root_table_of(table_name)

    def find_table_config(self, table_name: str) -> TableConfig:
        """
        Locate the Table Config whose forest contains ``table_name``.

        Raises:
            ConfigurationError: If no config mentions the table
        """
        root_name = self.get_root_table_name(table_name)
        for table_config in self.list_table_configs():
            if table_config.table_name == root_name:
                return table_config
        raise ConfigurationError(f"No table config found for root table '{root_name}'")

    def validate_configuration(self) -> bool:
        """
        Check that a job could start with these settings.

        Raises:
            ConfigurationError: Listing every problem found
        """
        problems = []
        if not self.database_config.connection_string:
            problems.append("no database connection string")
        if not self.paths.base_config_path.is_dir():
            problems.append(f"config directory {self.paths.base_config_path} is missing")
        try:
            self.get_processing_config()
        except ConfigurationError as e:
            problems.append(str(e))

        if problems:
            raise ConfigurationError(f"Invalid configuration: {'; '.join(problems)}")
        self.logger.info(f"Configuration OK for {self.paths.base_config_path}")
        return True

    def get_configuration_summary(self) -> Dict[str, Any]:
        """Settings worth logging, without credentials."""
        db = self.database_config
        params = self.processing_params
        return {
            'database': {key: getattr(db, key) for key in ('server', 'port', 'database', 'driver', 'charset')},
            'processing': {
                'page_size': params.page_size,
                'export_workers': params.export_workers,
                'subtree_workers': params.subtree_workers,
                'async_depth': params.async_depth,
                'import_batch_size': params.import_batch_size,
                'row_id_tables': list(params.row_id_tables),
            },
            'paths': {
                'config': str(self.paths.base_config_path),
                'export': str(self.paths.export_path),
            },
        }

    def clear_cache(self):
        """Drop cached Table Configs and the table forest."""
        self._table_config_cache.clear()
        self._forest = None
        self.logger.debug("Configuration cache cleared")
