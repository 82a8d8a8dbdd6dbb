"""
davserve: serve a directory tree over GET, HEAD, PUT and DELETE
Built with FastAPI + Uvicorn + aiofiles
"""

__version__ = "1.0.0"
__author__ = "davserve"
__description__ = "Minimal WebDAV-style file server"
