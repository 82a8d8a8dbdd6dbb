"""
Configuration loading and management for davserve
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from .fs import Dir, FileSystem
from .models import (
    Config, ListenConfig, TlsConfig, DavConfig, LoggingConfig, ServerConfig
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "davserve.yaml"


class ConfigManager:
    """Loads the YAML configuration once and keeps the parsed result"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path).resolve()
        self.config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file"""
        try:
            if not self.config_path.exists():
                logger.warning(f"Configuration file not found: {self.config_path}")
                self.config = Config()
                return self.config

            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}

            config = self._parse_config(data)
            self.config = config
            logger.info(f"Configuration loaded from {self.config_path}")
            return config

        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load configuration: {e}")
            self.config = Config()
            return self.config

    def _parse_config(self, data: Dict[str, Any]) -> Config:
        """Parse configuration data into Config object"""

        # Listening socket
        server_data = data.get('server') or {}
        tls_data = server_data.get('tls') or {}
        server = ListenConfig(
            addr=server_data.get('addr', '0.0.0.0'),
            port=int(server_data.get('port', 8080)),
            tls=TlsConfig(
                enabled=bool(tls_data.get('enabled', False)),
                certfile=tls_data.get('certfile', ''),
                keyfile=tls_data.get('keyfile', '')
            )
        )

        # Served tree
        dav_data = data.get('dav') or {}
        dav = DavConfig(
            root=str(dav_data.get('root', './data')),
            prefix=dav_data.get('prefix', '') or '',
            readOnly=bool(dav_data.get('readOnly', False)),
            listings=bool(dav_data.get('listings', False)),
            createParents=bool(dav_data.get('createParents', True))
        )

        # Logging
        logging_data = data.get('logging') or {}
        logging_config = LoggingConfig(
            json=bool(logging_data.get('json', False)),
            file=logging_data.get('file', ''),
            level=logging_data.get('level', 'INFO'),
            max_size_mb=int(logging_data.get('max_size_mb', 100)),
            backup_count=int(logging_data.get('backup_count', 5))
        )

        return Config(server=server, dav=dav, logging=logging_config)


def build_server_config(config: Config, fs: Optional[FileSystem] = None) -> ServerConfig:
    """Freeze the served-tree settings, rooting a Dir backend when none is given"""
    dav = config.dav
    return ServerConfig(
        fs=fs if fs is not None else Dir(dav.root),
        prefix=dav.prefix,
        read_only=dav.readOnly,
        listings=dav.listings,
        create_parents=dav.createParents,
    )
