"""
ImageLens Shared Module
=======================

Configuration, logging and console helpers shared by the ImageLens
core, its output renderers and the command line.
"""

from shared.config import LensConfig, get_config

__all__ = ["LensConfig", "get_config"]
