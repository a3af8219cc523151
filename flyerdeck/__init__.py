"""
Flyer-to-deck generation service.
"""

__version__ = "0.1.0"
