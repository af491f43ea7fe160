"""
Warden Shared Module
====================

Configuration, structured logging, console helpers and report models
shared by every part of the Warden entitlement extractor.
"""

from shared.config import WardenConfig, get_config

__all__ = ["WardenConfig", "get_config"]
