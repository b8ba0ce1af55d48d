"""
Set algebra over GEOID sets.

The pure functions work on any identifier collections and return sorted
lists. SetAlgebra reads the current version of each input set, applies
one of them and persists the result as the next version of the output
set through VersionedSetStore.create_version.

Invariants:
    - Inputs are read at their current version
    - Each call creates exactly one new version of the output set
    - Duplicate input names never duplicate members

How to change safely:
    - New operations must persist through create_version so history stays linear
    - Keep the change description formats stable; they show up in list_versions
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..store.versioned_store import VersionedSetStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivedSet:
    """Result of a persisted set operation.

    Attributes:
        name: Output set name
        version: Version created for the output set
        identifiers: Members of that version, sorted
    """

    name: str
    version: int
    identifiers: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.identifiers)


def union_of(collections: Sequence[Iterable[str]]) -> list[str]:
    """Identifiers present in at least one collection."""
    result: set[str] = set()
    for collection in collections:
        result.update(collection)
    return sorted(result)


def intersection_of(collections: Sequence[Iterable[str]]) -> list[str]:
    """Identifiers present in every collection. Empty input gives an empty result."""
    if not collections:
        return []
    result = set(collections[0])
    for collection in collections[1:]:
        result.intersection_update(collection)
    return sorted(result)


def difference_of(base: Iterable[str], subtract: Iterable[str]) -> list[str]:
    return sorted(set(base) - set(subtract))


def symmetric_difference_of(a: Iterable[str], b: Iterable[str]) -> list[str]:
    return sorted(set(a) ^ set(b))


class SetAlgebra:
    """Persisted set operations on named GEOID sets.

    Example:
        >>> algebra = SetAlgebra(store)
        >>> result = await algebra.union(["fl", "ga"], "fl_ga")
        >>> result.version
        1
    """

    def __init__(self, store: VersionedSetStore) -> None:
        self.store = store

    async def _read_inputs(self, names: Sequence[str]) -> list[list[str]]:
        return [await self.store.get_set(name) for name in dict.fromkeys(names)]

    async def _persist(
        self,
        output: str,
        identifiers: list[str],
        change_description: str,
        description: str,
    ) -> DerivedSet:
        version = await self.store.create_version(
            output,
            identifiers,
            change_description,
            0,
            description,
        )
        logger.info(
            "Persisted set operation result",
            extra={
                "set_name": output,
                "version": version,
                "members": len(identifiers),
                "operation": change_description,
            },
        )
        return DerivedSet(name=output, version=version, identifiers=tuple(identifiers))

    async def union(
        self,
        names: Sequence[str],
        output: str,
        description: str = "",
    ) -> DerivedSet:
        """Persist the union of the named sets.

        Raises:
            NotFoundError: If an input set does not exist
        """
        result = union_of(await self._read_inputs(names))
        return await self._persist(
            output, result, f"Union of sets: {', '.join(names)}", description
        )

    async def intersect(
        self,
        names: Sequence[str],
        output: str,
        description: str = "",
    ) -> DerivedSet:
        """Persist the intersection of the named sets.

        Raises:
            NotFoundError: If an input set does not exist
        """
        result = intersection_of(await self._read_inputs(names))
        return await self._persist(
            output, result, f"Intersection of sets: {', '.join(names)}", description
        )

    async def difference(
        self,
        base: str,
        subtract: str,
        output: str,
        description: str = "",
    ) -> DerivedSet:
        """Persist the members of base that are not in subtract."""
        base_members = await self.store.get_set(base)
        subtract_members = await self.store.get_set(subtract)
        result = difference_of(base_members, subtract_members)
        return await self._persist(
            output, result, f"Difference: {base} - {subtract}", description
        )

    async def symmetric_difference(
        self,
        a: str,
        b: str,
        output: str,
        description: str = "",
    ) -> DerivedSet:
        """Persist the members that are in exactly one of a and b."""
        a_members = await self.store.get_set(a)
        b_members = await self.store.get_set(b)
        result = symmetric_difference_of(a_members, b_members)
        return await self._persist(
            output, result, f"Symmetric difference of {a} and {b}", description
        )
