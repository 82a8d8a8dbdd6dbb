"""
Main application factory for davserve
"""

import argparse
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import __version__
from .config import DEFAULT_CONFIG_PATH, ConfigManager, build_server_config
from .fs import Dir
from .middleware import setup_middleware
from .models import Config, LoggingConfig
from .server import DavServer


logger = logging.getLogger(__name__)


def setup_logging(log_config: LoggingConfig):
    """Setup logging configuration"""

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_config.level.upper(), logging.INFO))

    # Clear existing handlers
    root_logger.handlers.clear()

    # Create formatter
    if log_config.json:
        formatter = logging.Formatter(
            '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","msg":"%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler if configured
    if log_config.file:
        log_file = Path(log_config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def flush_logs():
    """Flush every handler on the root logger, call before the process exits"""
    for handler in logging.getLogger().handlers:
        handler.flush()


def make_app(server: DavServer, title: str = "davserve") -> FastAPI:
    """Wrap a DavServer in a FastAPI application with middleware"""

    app = FastAPI(
        title=title,
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.dav = server

    setup_middleware(app)

    # Every path and method belongs to the DAV tree
    app.mount("/", server)

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("davserve shutdown complete")
        flush_logs()

    return app


def create_app(config_path: Optional[str] = None, config: Optional[Config] = None) -> FastAPI:
    """Create FastAPI application from a configuration file"""

    # If not provided explicitly, fall back to env or default
    if config is None:
        if not config_path:
            config_path = os.getenv("DAVSERVE_CONFIG", DEFAULT_CONFIG_PATH)
        config = ConfigManager(config_path).load_config()

    setup_logging(config.logging)

    root = Path(config.dav.root)
    root.mkdir(parents=True, exist_ok=True)
    logger.info(f"Ensured root directory exists: {root.resolve()}")

    server = DavServer(
        build_server_config(config, Dir(root)),
        logger=logging.getLogger("davserve.dav"),
    )
    app = make_app(server)

    @app.on_event("startup")
    async def startup_event():
        logger.info(f"davserve starting on {config.server.addr}:{config.server.port}")
        logger.info(f"Root: {root.resolve()} prefix: {config.dav.prefix!r}")
        logger.info(f"Read-only: {config.dav.readOnly} listings: {config.dav.listings}")
        logger.info(f"TLS: {'enabled' if config.server.tls.enabled else 'disabled'}")

    return app


def main():
    """Main entry point for running the server"""

    parser = argparse.ArgumentParser(description="davserve file server")
    parser.add_argument("--config", "-c", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--root", default=None, help="Directory to serve")
    parser.add_argument("--prefix", default=None, help="URL prefix to strip")
    parser.add_argument("--read-only", action="store_true", help="Reject PUT and DELETE")
    parser.add_argument("--listings", action="store_true", help="Render directory listings")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    config = ConfigManager(args.config).load_config()

    # Override with command line args
    if args.root is not None:
        config.dav.root = args.root
    if args.prefix is not None:
        config.dav.prefix = args.prefix
    if args.read_only:
        config.dav.readOnly = True
    if args.listings:
        config.dav.listings = True
    if args.debug:
        config.logging.level = "DEBUG"

    host = args.host or config.server.addr
    port = args.port or config.server.port

    # SSL context
    ssl_keyfile = None
    ssl_certfile = None
    if config.server.tls.enabled:
        ssl_keyfile = config.server.tls.keyfile
        ssl_certfile = config.server.tls.certfile

    try:
        if args.reload:
            # The reloader imports the factory in a fresh process
            os.environ["DAVSERVE_CONFIG"] = args.config
            uvicorn.run(
                "davserve.main:create_app",
                factory=True,
                host=host,
                port=port,
                reload=True,
                ssl_keyfile=ssl_keyfile,
                ssl_certfile=ssl_certfile,
                access_log=False,
            )
        else:
            uvicorn.run(
                create_app(config=config),
                host=host,
                port=port,
                ssl_keyfile=ssl_keyfile,
                ssl_certfile=ssl_certfile,
                access_log=False,  # We handle access logging ourselves
                server_header=False,
            )
    finally:
        flush_logs()


if __name__ == "__main__":
    main()
