"""
YouTube to MP3 relay service
"""

__version__ = "1.0.0"
