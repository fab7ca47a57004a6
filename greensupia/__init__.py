"""
Greensupia security and operations toolkit
"""

__version__ = "1.0.0"
