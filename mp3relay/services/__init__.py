"""
Services module for conversion business logic
"""

from .relay_pipeline import ConvertPipeline, PreparedAudio
from .resolver_client import ResolverClient, get_resolver_client
from .temp_store import TempFileStore

__all__ = ["ConvertPipeline", "PreparedAudio", "ResolverClient", "TempFileStore", "get_resolver_client"]
