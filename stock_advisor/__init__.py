"""
Stock advisor backend: conversational memory and streaming engine.
"""

__version__ = "0.1.0"
