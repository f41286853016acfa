"""Utility modules for the Taxonomy Opportunity Engine."""

from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
