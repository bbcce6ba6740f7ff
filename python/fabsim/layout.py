"""
Die Layout Model

A die is a rectangle (mm) on a given process node, populated with
non-overlapping rectangular components whose positions are measured from
the die's top-left corner. The editor enforces bounds and overlap rules
when components are placed; the engines trust the layout they are given
and only read it.

Component names are numbered per type ("CPU Core 0", "CPU Core 1", ...)
and renumbered to close gaps when a component is removed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Optional

from fabsim.constants import DEFAULT_PROCESS_NODE
from fabsim.errors import ValidationError

logger = logging.getLogger(__name__)


# type id -> display label
COMPONENT_TYPES = MappingProxyType({
    "cpu_core": "CPU Core",
    "l2_cache": "L2 Cache",
    "l3_cache": "L3 Cache",
    "mem_ctrl": "Memory Controller",
    "interconnect": "Interconnect",
    "power_mgmt": "Power Management",
    "io_ctrl": "I/O Controller",
    "igpu": "Integrated GPU",
    "gpu_sm": "GPU SM/CU",
    "texture_unit": "Texture Units",
    "display_engine": "Display Engine",
    "memory_array": "Memory Array",
    "control_logic": "Control Logic",
    "npu": "NPU Core",
})

DIE_TYPES = ("cpu", "gpu", "memory", "io_die", "npu", "custom")

# die type -> ((component type, minimum count), ...)
DIE_REQUIREMENTS = MappingProxyType({
    "cpu": (("cpu_core", 1), ("l2_cache", 1), ("mem_ctrl", 1), ("power_mgmt", 1)),
    "gpu": (("gpu_sm", 1), ("mem_ctrl", 1), ("power_mgmt", 1)),
    "memory": (("memory_array", 1), ("control_logic", 1)),
    "io_die": (("io_ctrl", 1), ("interconnect", 1)),
    "npu": (("power_mgmt", 1),),
    "custom": (),
})

_TRAILING_NUMBER = re.compile(r"(\d+)$")


@dataclass(frozen=True)
class Component:
    """
    Rectangular functional block placed on a die.

    Parameters
    ----------
    type : str
        Usually one of ``COMPONENT_TYPES``. Other strings are accepted and
        resolve to the documented fallback in every lookup table.
    name : str
        Display name, numbered per type (e.g. "CPU Core 0").
    x, y : float
        Top-left corner [mm], relative to the die origin.
    width, height : float
        Footprint [mm]. Must be positive.
    """
    type: str
    name: str
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValidationError(
                f"Component dimensions must be positive, got {self.width}x{self.height}"
            )

    @property
    def area(self) -> float:
        """Footprint area [mm²]."""
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        """Footprint center [mm]."""
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass
class Die:
    """
    Die design record.

    Parameters
    ----------
    width, height : float
        Die dimensions [mm].
    process_node : float
        Process node [nm]; resolved to the nearest tabulated node.
    components : list of Component
        Placed blocks. The engines never mutate this list.
    die_type : str
        One of ``DIE_TYPES``. Default: "cpu".
    sku : str
        Product name.
    id : str, optional
        Library key, assigned by ``DieLibrary``.
    reticle_width, reticle_height : float
        Exposure field the die was designed for [mm]. Default: 26 x 33.
    description : str
        Free text.
    """
    width: float
    height: float
    process_node: float = DEFAULT_PROCESS_NODE
    components: list[Component] = field(default_factory=list)
    die_type: str = "cpu"
    sku: str = "Untitled Die"
    id: Optional[str] = None
    reticle_width: float = 26.0
    reticle_height: float = 33.0
    description: str = ""

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValidationError(
                f"Die dimensions must be positive, got {self.width}x{self.height}"
            )
        if self.process_node <= 0:
            raise ValidationError(f"Process node must be positive, got {self.process_node}")
        if self.reticle_width <= 0 or self.reticle_height <= 0:
            raise ValidationError(
                f"Reticle dimensions must be positive, "
                f"got {self.reticle_width}x{self.reticle_height}"
            )
        if self.die_type not in DIE_TYPES:
            raise ValidationError(f"Unknown die type {self.die_type!r}")
        if isinstance(self.components, (str, bytes)) or not isinstance(self.components, Sequence):
            raise ValidationError("Die components must be a sequence of Component")
        self.components = list(self.components)

    @property
    def area(self) -> float:
        """Die area [mm²]."""
        return self.width * self.height

    def components_of(self, component_type: str) -> list[Component]:
        """All components of one type, in placement order."""
        return [c for c in self.components if c.type == component_type]

    def count(self, component_type: str) -> int:
        """Number of components of one type."""
        return sum(1 for c in self.components if c.type == component_type)

    def __repr__(self) -> str:
        return (
            f"Die(sku={self.sku!r}, {self.width:g}x{self.height:g}mm, "
            f"node={self.process_node:g}nm, components={len(self.components)})"
        )


@dataclass(frozen=True)
class DieStats:
    """Area bookkeeping for a die."""
    area: float
    components_area: float
    utilization_percent: float
    component_count: int


def die_stats(die: Die) -> DieStats:
    """Die area, occupied area and utilization percentage."""
    area = die.area
    components_area = sum(c.area for c in die.components)
    utilization = components_area / area * 100 if area > 0 else 0.0
    return DieStats(
        area=area,
        components_area=components_area,
        utilization_percent=utilization,
        component_count=len(die.components),
    )


def rectangles_overlap(
    a: tuple[float, float, float, float],
    b: tuple[float, float, float, float],
) -> bool:
    """
    Overlap test for (x, y, width, height) rectangles.

    Rectangles that only share an edge do not overlap.
    """
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    return not (
        ax + aw <= bx
        or ax >= bx + bw
        or ay + ah <= by
        or ay >= by + bh
    )


def find_overlap(
    die: Die,
    x: float,
    y: float,
    width: float,
    height: float,
    ignore: Optional[Component] = None,
) -> Optional[Component]:
    """
    First component on the die overlapping the given rectangle, if any.

    ``ignore`` is skipped by identity, so a component being moved does not
    block itself.
    """
    for comp in die.components:
        if comp is ignore:
            continue
        if rectangles_overlap((x, y, width, height), (comp.x, comp.y, comp.width, comp.height)):
            return comp
    return None


def fits_on_die(die: Die, x: float, y: float, width: float, height: float) -> bool:
    """True when the rectangle lies within [0, width] x [0, height]."""
    return x >= 0 and y >= 0 and x + width <= die.width and y + height <= die.height


def missing_requirements(die: Die) -> list[str]:
    """
    Required component types the die is short of.

    Returns
    -------
    missing : list of str
        Human-readable messages, empty when the die satisfies its type.
    """
    missing = []
    for component_type, min_count in DIE_REQUIREMENTS.get(die.die_type, ()):
        have = die.count(component_type)
        if have < min_count:
            missing.append(
                f"{die.die_type} die requires at least {min_count} "
                f"{COMPONENT_TYPES[component_type]} (has {have})"
            )
    return missing


def component_label(component_type: str) -> str:
    """Display label for a component type; unknown types use the CPU core label."""
    return COMPONENT_TYPES.get(component_type, COMPONENT_TYPES["cpu_core"])


def _name_number(name: str) -> int:
    match = _TRAILING_NUMBER.search(name)
    return int(match.group(1)) if match else -1


def next_component_name(die: Die, component_type: str) -> str:
    """Name for a new component: one past the highest number already in use."""
    numbers = [
        n for n in (_name_number(c.name) for c in die.components_of(component_type))
        if n >= 0
    ]
    next_number = max(numbers) + 1 if numbers else 0
    return f"{component_label(component_type)} {next_number}"


def renumber_components(die: Die, component_type: str) -> int:
    """
    Renumber components of one type sequentially from 0, closing gaps.

    Components whose names carry no trailing number are left untouched.

    Returns
    -------
    count : int
        Number of components renamed.
    """
    numbered = sorted(
        (
            (_name_number(c.name), i)
            for i, c in enumerate(die.components)
            if c.type == component_type and _name_number(c.name) >= 0
        ),
    )
    label = component_label(component_type)
    for new_number, (_, index) in enumerate(numbered):
        die.components[index] = replace(die.components[index], name=f"{label} {new_number}")

    logger.debug("Renumbered %d components of type %s", len(numbered), component_type)
    return len(numbered)
