"""
In-memory die design repository.

A ``DieLibrary`` owns die records and the editing rules for them: components
are placed at their default size unless one is given, must lie inside the
die, and may not overlap. Lookups of unknown ids return None (or False for
deletions) rather than raising.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import fields, replace
from typing import Any, Optional

from fabsim.constants import DEFAULT_PROCESS_NODE
from fabsim.errors import ValidationError
from fabsim.layout import (
    Component,
    Die,
    find_overlap,
    fits_on_die,
    next_component_name,
    renumber_components,
)
from fabsim.sizing import default_component_size

logger = logging.getLogger(__name__)

_DIE_FIELDS = frozenset(f.name for f in fields(Die)) - {"id"}
_COMPONENT_FIELDS = frozenset(f.name for f in fields(Component))


def _new_id() -> str:
    return f"die_{uuid.uuid4().hex[:12]}"


def _check_placement(die: Die, component: Component, ignore: Optional[Component] = None) -> None:
    """Raise ValidationError if the component leaves the die or overlaps another."""
    x, y, width, height = component.x, component.y, component.width, component.height
    if not fits_on_die(die, x, y, width, height):
        raise ValidationError(
            f"{component.name} at ({x}, {y}) size {width}x{height} "
            f"does not fit on {die.width}x{die.height}mm die"
        )
    blocking = find_overlap(die, x, y, width, height, ignore=ignore)
    if blocking is not None:
        raise ValidationError(f"{component.name} overlaps {blocking.name}")


def _check_layout(die: Die) -> None:
    """Check every component of a die against the die and the others."""
    for comp in die.components:
        _check_placement(die, comp, ignore=comp)


class DieLibrary:
    """
    Collection of die designs keyed by id.

    Examples
    --------
    >>> library = DieLibrary()
    >>> die = library.create_die(width=12, height=10, sku="Test CPU")
    >>> library.add_component(die.id, "cpu_core", 0, 0)
    Component(type='cpu_core', name='CPU Core 0', x=0, y=0, width=1.0, height=1.0)
    """

    def __init__(self) -> None:
        self._dies: dict[str, Die] = {}

    @classmethod
    def with_default_dies(cls) -> DieLibrary:
        """Library seeded with an example CPU die and an example GPU die."""
        library = cls()
        library.create_die(
            width=12, height=10, process_node=7, die_type="cpu",
            sku="Example 8-Core CPU", description="Sample 8-core processor design",
        )
        library.create_die(
            width=18, height=15, process_node=7, die_type="gpu",
            sku="Example GPU", description="Sample graphics processor",
        )
        return library

    def __len__(self) -> int:
        return len(self._dies)

    def __contains__(self, die_id: object) -> bool:
        return die_id in self._dies

    # ------------------------------------------------------------------
    # Dies
    # ------------------------------------------------------------------

    def create_die(
        self,
        width: float = 10.0,
        height: float = 10.0,
        process_node: float = DEFAULT_PROCESS_NODE,
        die_type: str = "cpu",
        sku: str = "Untitled Die",
        description: str = "",
        reticle_width: float = 26.0,
        reticle_height: float = 33.0,
    ) -> Die:
        """Create and store an empty die."""
        die = Die(
            width=width,
            height=height,
            process_node=process_node,
            die_type=die_type,
            sku=sku,
            id=_new_id(),
            reticle_width=reticle_width,
            reticle_height=reticle_height,
            description=description,
        )
        self._dies[die.id] = die
        logger.debug("Created die %s (%s)", die.id, die.sku)
        return die

    def get(self, die_id: str) -> Optional[Die]:
        return self._dies.get(die_id)

    def all(self) -> list[Die]:
        """All dies in creation order."""
        return list(self._dies.values())

    def by_type(self, die_type: str) -> list[Die]:
        return [d for d in self._dies.values() if d.die_type == die_type]

    def update(self, die_id: str, **changes: Any) -> Optional[Die]:
        """
        Replace fields of a die.

        The updated record is validated as a whole, including the bounds and
        overlap of every component; on error the stored die is left
        unchanged.

        Raises
        ------
        ValidationError
            If a field name is unknown, the updated die is invalid, or a
            component no longer fits.
        """
        die = self._dies.get(die_id)
        if die is None:
            return None
        unknown = set(changes) - _DIE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update unknown die fields {sorted(unknown)}")
        if "components" in changes:
            changes["components"] = list(changes["components"])
        updated = replace(die, **changes)
        _check_layout(updated)
        self._dies[die_id] = updated
        return updated

    def clone(self, die_id: str) -> Optional[Die]:
        """Copy a die under a new id with " (Copy)" appended to its SKU."""
        original = self._dies.get(die_id)
        if original is None:
            return None
        clone = replace(
            original,
            id=_new_id(),
            sku=f"{original.sku} (Copy)",
            components=list(original.components),
        )
        self._dies[clone.id] = clone
        return clone

    def delete(self, die_id: str) -> bool:
        return self._dies.pop(die_id, None) is not None

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def add_component(
        self,
        die_id: str,
        component_type: str,
        x: float,
        y: float,
        width: Optional[float] = None,
        height: Optional[float] = None,
    ) -> Optional[Component]:
        """
        Place a component on a die.

        Parameters
        ----------
        die_id : str
            Target die.
        component_type : str
            Component type id.
        x, y : float
            Top-left corner [mm].
        width, height : float, optional
            Footprint [mm]. Defaults to the type's size at the die's node.

        Returns
        -------
        component : Component or None
            The placed component, or None if the die does not exist.

        Raises
        ------
        ValidationError
            If the component leaves the die or overlaps another component.
        """
        die = self._dies.get(die_id)
        if die is None:
            return None

        if width is None or height is None:
            default_w, default_h = default_component_size(component_type, die.process_node)
            width = default_w if width is None else width
            height = default_h if height is None else height

        component = Component(
            type=component_type,
            name=next_component_name(die, component_type),
            x=x,
            y=y,
            width=width,
            height=height,
        )
        _check_placement(die, component)
        die.components.append(component)
        return component

    def update_component(self, die_id: str, name: str, **changes: Any) -> Optional[Component]:
        """
        Move or resize a placed component.

        Parameters
        ----------
        die_id : str
            Die holding the component.
        name : str
            Current component name.
        **changes
            Component fields to replace (usually x, y, width, height).

        Returns
        -------
        component : Component or None
            The updated component, or None if the die or component does not
            exist.

        Raises
        ------
        ValidationError
            If a field name is unknown, or the updated component leaves the
            die or overlaps another component. The die is left unchanged.
        """
        die = self._dies.get(die_id)
        if die is None:
            return None
        unknown = set(changes) - _COMPONENT_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update unknown component fields {sorted(unknown)}")
        for index, comp in enumerate(die.components):
            if comp.name == name:
                updated = replace(comp, **changes)
                _check_placement(die, updated, ignore=comp)
                die.components[index] = updated
                return updated
        return None

    def remove_component(self, die_id: str, name: str) -> bool:
        """Remove a component by name and renumber the rest of its type."""
        die = self._dies.get(die_id)
        if die is None:
            return False
        for index, comp in enumerate(die.components):
            if comp.name == name:
                del die.components[index]
                renumber_components(die, comp.type)
                return True
        return False

    def __repr__(self) -> str:
        return f"DieLibrary(dies={len(self._dies)})"
