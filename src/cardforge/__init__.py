"""
CardForge - card artwork generation and processing pipeline.
"""

__version__ = "0.1.0"
