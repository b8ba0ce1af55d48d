"""
Set algebra for GeoSet - union, intersection, difference, symmetric difference.

Results are persisted as new versions of an output set.
"""

from .operations import (
    DerivedSet,
    SetAlgebra,
    difference_of,
    intersection_of,
    symmetric_difference_of,
    union_of,
)

__all__ = [
    "DerivedSet",
    "SetAlgebra",
    "difference_of",
    "intersection_of",
    "symmetric_difference_of",
    "union_of",
]
