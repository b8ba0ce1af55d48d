"""
Enumeration views for GeoSet - cross-set identifier listings.
"""

from .enumeration import EnumerationViews, IdentifierMembership, SetMembership

__all__ = ["EnumerationViews", "IdentifierMembership", "SetMembership"]
