"""
Component Sizing Model

Default component footprints by process node, and the size -> performance
scaling curves that reward (or penalize) drawing a component larger (or
smaller) than its default footprint.

Theory:
    Default size = base size at the 130nm reference × node scale factor,
    rounded half-up to a 0.5mm grid with a 0.1mm floor on each side.

    Scaling ratio:
        ratio = actual_area / default_area(type, node)

    Curves (each clamped to [min_penalty, max_bonus]):
        cpu core          ratio^0.5             (diminishing returns)
        gpu / npu         ratio^0.6
        caches / arrays   ratio                 (capacity is linear in area)
        memory ctrl       0.8 + 0.2·log2(ratio) (logarithmic saturation)
        interconnect      0.95 + 0.05·log2(ratio)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable

from fabsim.constants import nearest_key
from fabsim.layout import Component


# (width, height) in mm at the 130nm reference (scale factor 1.0)
BASE_COMPONENT_SIZES = MappingProxyType({
    "cpu_core": (3.0, 3.0),
    "l2_cache": (2.5, 2.5),
    "l3_cache": (4.0, 4.0),
    "mem_ctrl": (2.0, 1.5),
    "interconnect": (6.0, 1.0),
    "power_mgmt": (1.5, 1.5),
    "io_ctrl": (2.5, 1.5),
    "igpu": (4.0, 3.0),
    "gpu_sm": (3.5, 3.5),
    "texture_unit": (2.0, 2.0),
    "display_engine": (2.0, 2.0),
    "memory_array": (6.0, 6.0),
    "control_logic": (2.0, 2.0),
    "npu": (3.0, 3.0),
})
DEFAULT_BASE_SIZE = (3.0, 3.0)

# Linear scale of a component at each node; 0.2x at 3nm up to 70x at 10μm
NODE_SCALE_FACTORS = MappingProxyType({
    10000: 70, 6000: 42, 3000: 21, 1500: 11, 1000: 7,
    800: 5.5, 600: 4, 350: 2.5, 250: 1.8, 180: 1.3,
    130: 1.0, 90: 0.85, 65: 0.7, 45: 0.6, 32: 0.5,
    22: 0.45, 14: 0.4, 12: 0.38, 10: 0.35, 7: 0.3, 5: 0.25, 3: 0.2,
})

SIZE_GRID_MM = 0.5
MIN_SIDE_MM = 0.1


@dataclass(frozen=True)
class ScalingCurve:
    """
    Size -> performance response for one family of components.

    Parameters
    ----------
    name : str
        Curve identifier.
    function : callable
        Maps the area ratio (> 0) to an unclamped scaling factor.
    min_penalty : float
        Lower clamp for undersized components.
    max_bonus : float
        Upper clamp for oversized components.
    """
    name: str
    function: Callable[[float], float]
    min_penalty: float
    max_bonus: float

    def __call__(self, ratio: float) -> float:
        return min(self.max_bonus, max(self.min_penalty, self.function(ratio)))


SQRT_CURVE = ScalingCurve("sqrt", lambda r: r ** 0.5, 0.6, 1.5)
COMPUTE_CURVE = ScalingCurve("pow0.6", lambda r: r ** 0.6, 0.5, 1.6)
LINEAR_CURVE = ScalingCurve("linear", lambda r: r, 0.5, 2.0)
LOG_CURVE = ScalingCurve("log", lambda r: 0.8 + math.log2(r) * 0.2, 0.5, 1.5)
FLAT_CURVE = ScalingCurve("near-flat", lambda r: 0.95 + math.log2(r) * 0.05, 0.85, 1.1)

SCALING_CURVES = MappingProxyType({
    "cpu_core": SQRT_CURVE,
    "gpu_sm": COMPUTE_CURVE,
    "npu": COMPUTE_CURVE,
    "igpu": COMPUTE_CURVE,
    "texture_unit": COMPUTE_CURVE,
    "l2_cache": LINEAR_CURVE,
    "l3_cache": LINEAR_CURVE,
    "memory_array": LINEAR_CURVE,
    "mem_ctrl": LOG_CURVE,
    "interconnect": FLAT_CURVE,
})


def _round_to_grid(value: float) -> float:
    # half-up, so 0.75 -> 1.0 rather than banker's rounding
    return max(MIN_SIDE_MM, math.floor(value / SIZE_GRID_MM + 0.5) * SIZE_GRID_MM)


def node_scale_factor(process_node: float) -> float:
    """Linear component scale at the nearest tabulated node."""
    return NODE_SCALE_FACTORS[nearest_key(NODE_SCALE_FACTORS, process_node)]


def default_component_size(component_type: str, process_node: float) -> tuple[float, float]:
    """
    Default footprint of a component type on a process node.

    Parameters
    ----------
    component_type : str
        Component type id. Unknown types use a 3mm x 3mm base.
    process_node : float
        Process node [nm].

    Returns
    -------
    (width, height) : tuple of float
        Footprint [mm] on a 0.5mm grid, each side at least 0.1mm.
    """
    base_w, base_h = BASE_COMPONENT_SIZES.get(component_type, DEFAULT_BASE_SIZE)
    scale = node_scale_factor(process_node)
    return _round_to_grid(base_w * scale), _round_to_grid(base_h * scale)


def default_component_area(component_type: str, process_node: float) -> float:
    """Area of the default footprint [mm²]."""
    w, h = default_component_size(component_type, process_node)
    return w * h


def scaling_curve(component_type: str) -> ScalingCurve:
    """Curve for a component type; types without one use the CPU core curve."""
    return SCALING_CURVES.get(component_type, SQRT_CURVE)


def size_scaling(component: Component, process_node: float) -> float:
    """
    Performance scaling factor from a component's drawn size.

    Parameters
    ----------
    component : Component
        Placed component.
    process_node : float
        Process node of the die [nm].

    Returns
    -------
    factor : float
        1.0 at the default footprint, clamped to the type's
        [min_penalty, max_bonus] range.
    """
    ratio = component.area / default_component_area(component.type, process_node)
    return scaling_curve(component.type)(ratio)
