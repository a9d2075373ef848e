"""Shared utilities."""
from .logging import setup_logging
from .schema import json_type_name, validate_arguments

__all__ = ["json_type_name", "setup_logging", "validate_arguments"]
