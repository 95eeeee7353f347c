"""
Command line interface for bundle-rescue.
"""
from .main import app

__all__ = ["app"]
