"""
Foundry market: contract pricing, capacity and node availability.

Wafer price:
    P = base_price(node) · foundry.pricing_multiplier · contract_adjustment

    spot         +10%
    short-term   -5% / -7% / -10%   at < 5k / >= 5k / >= 10k total wafers
    long-term    -10% .. -20%       at < 10k .. >= 100k total wafers

Capacity (wafers/week) is linearly interpolated between tabulated years;
available nodes step to the most recent tabulated year.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Union

import numpy as np

from fabsim.constants import interpolate_by_year
from fabsim.errors import ValidationError

logger = logging.getLogger(__name__)

CONTRACT_TYPES = ("spot", "short-term", "long-term")
SPOT_PREMIUM = 0.10

# (minimum total wafers, discount), checked in order
SHORT_TERM_DISCOUNTS = ((10000, 0.10), (5000, 0.07), (0, 0.05))
LONG_TERM_DISCOUNTS = ((100000, 0.20), (50000, 0.17), (20000, 0.15), (10000, 0.12), (0, 0.10))

DEPOSIT_PERCENT = MappingProxyType({"spot": 0.0, "short-term": 0.10, "long-term": 0.20})

# (max node nm, $ per wafer), first match wins
BASE_WAFER_PRICES = (
    (3, 30000), (5, 25000), (7, 18000), (10, 12000), (14, 8000),
    (22, 5000), (28, 4000), (45, 3000), (65, 2500), (90, 2000),
    (130, 1500), (180, 1200), (250, 1000), (350, 800), (600, 600),
)
LEGACY_WAFER_PRICE = 400

BASE_UTILIZATION = MappingProxyType({"premium": 0.90, "budget": 0.65})
DEFAULT_UTILIZATION = 0.75
UTILIZATION_NOISE = 0.10
UTILIZATION_BOUNDS = (0.4, 0.98)


@dataclass(frozen=True)
class LeadTime:
    """Weeks from signing to first wafer out, per contract type."""
    spot: int
    short_term: int
    long_term: int

    def for_contract(self, contract_type: str) -> int:
        return {
            "spot": self.spot,
            "short-term": self.short_term,
            "long-term": self.long_term,
        }[contract_type]


@dataclass(frozen=True)
class Foundry:
    """
    Contract manufacturer.

    Parameters
    ----------
    id, name : str
    founded : int
        First year the foundry takes orders.
    tier : str
        "premium", "mid-range", "budget" or "specialty".
    pricing_multiplier : float
        Price relative to the base wafer price.
    quality_multiplier : float
        Yield relative to baseline.
    capacity_by_year : Mapping[int, int]
        Wafers per week at tabulated years.
    nodes_by_year : Mapping[int, tuple]
        Offered process nodes [nm] from each tabulated year on.
    lead_time : LeadTime
    """
    id: str
    name: str
    founded: int
    tier: str
    pricing_multiplier: float
    quality_multiplier: float
    capacity_by_year: Mapping[int, int]
    nodes_by_year: Mapping[int, tuple[float, ...]]
    lead_time: LeadTime


FOUNDRIES = MappingProxyType({f.id: f for f in (
    Foundry(
        "tsmc", "TSMC", 1987, "premium", 1.15, 1.15,
        MappingProxyType({1990: 500, 1995: 2000, 2000: 5000, 2005: 15000,
                          2010: 30000, 2015: 50000, 2020: 80000, 2025: 120000}),
        MappingProxyType({1987: (800, 600), 1990: (600, 350), 1995: (350, 250),
                          2000: (250, 180, 130), 2005: (130, 90, 65),
                          2010: (65, 45, 32, 28), 2015: (28, 16, 10, 7),
                          2020: (7, 5), 2022: (5, 3)}),
        LeadTime(4, 8, 12),
    ),
    Foundry(
        "globalfoundries", "GlobalFoundries", 2009, "mid-range", 0.95, 1.05,
        MappingProxyType({2010: 8000, 2015: 25000, 2020: 40000, 2025: 45000}),
        MappingProxyType({2009: (65, 45, 32), 2012: (32, 28), 2015: (28, 14),
                          2018: (14, 12), 2020: (14, 12), 2025: (14, 12, 22)}),
        LeadTime(3, 6, 10),
    ),
    Foundry(
        "umc", "UMC", 1980, "budget", 0.80, 0.95,
        MappingProxyType({1990: 300, 1995: 1500, 2000: 4000, 2005: 10000,
                          2010: 20000, 2015: 30000, 2020: 35000, 2025: 38000}),
        MappingProxyType({1980: (3000, 1500), 1990: (800, 600), 1995: (600, 350),
                          2000: (250, 180), 2005: (130, 90), 2010: (65, 45, 40),
                          2015: (40, 28), 2020: (28, 22), 2025: (22, 14)}),
        LeadTime(2, 4, 8),
    ),
    Foundry(
        "smic", "SMIC", 2000, "mid-range", 0.85, 0.90,
        MappingProxyType({2005: 2000, 2010: 8000, 2015: 20000, 2020: 35000, 2025: 50000}),
        MappingProxyType({2000: (250, 180), 2005: (130, 90), 2010: (65, 45),
                          2015: (28, 22), 2019: (14,), 2020: (14, 28), 2025: (14, 28)}),
        LeadTime(3, 6, 10),
    ),
    Foundry(
        "samsung", "Samsung Foundry", 2017, "premium", 1.10, 1.10,
        MappingProxyType({2018: 15000, 2020: 25000, 2025: 40000}),
        MappingProxyType({2017: (14, 10), 2018: (10, 8, 7), 2020: (7, 5),
                          2022: (5, 3), 2025: (3, 2)}),
        LeadTime(5, 10, 14),
    ),
    Foundry(
        "intel_foundry", "Intel Foundry Services", 2021, "premium", 1.05, 1.08,
        MappingProxyType({2022: 5000, 2025: 15000, 2030: 40000}),
        MappingProxyType({2021: (10, 7), 2023: (7, 4), 2025: (4, 3, 1.8)}),
        LeadTime(6, 12, 16),
    ),
    Foundry(
        "tower", "Tower Semiconductor", 1993, "specialty", 1.20, 1.12,
        MappingProxyType({1995: 200, 2000: 800, 2005: 3000, 2010: 8000,
                          2015: 12000, 2020: 15000, 2025: 18000}),
        MappingProxyType({1993: (600, 350), 2000: (250, 180), 2005: (180, 130),
                          2010: (130, 90, 65), 2015: (65, 45), 2020: (65, 45),
                          2025: (65, 45, 40)}),
        LeadTime(4, 8, 12),
    ),
)})

FoundryRef = Union[Foundry, str]


def get_foundry(foundry: FoundryRef) -> Foundry:
    """Resolve a foundry id; Foundry instances pass through."""
    if isinstance(foundry, Foundry):
        return foundry
    try:
        return FOUNDRIES[foundry]
    except KeyError:
        raise ValidationError(f"Unknown foundry {foundry!r}") from None


def base_wafer_price(process_node: float) -> int:
    """Baseline price of one processed wafer [$]."""
    for max_node, price in BASE_WAFER_PRICES:
        if process_node <= max_node:
            return price
    return LEGACY_WAFER_PRICE


def _volume_discount(tiers: tuple[tuple[int, float], ...], total_wafers: float) -> float:
    for threshold, discount in tiers:
        if total_wafers >= threshold:
            return discount
    return tiers[-1][1]


@dataclass(frozen=True)
class ContractQuote:
    """
    Priced manufacturing contract.

    ``price_per_wafer`` and ``total_value`` are rounded to whole dollars;
    ``deposit`` is charged on signing.
    """
    foundry_id: str
    contract_type: str
    process_node: float
    base_price: int
    foundry_multiplier: float
    price_before_discount: float
    discount: float
    price_per_wafer: int
    wafers_per_week: int
    duration_weeks: int
    total_wafers: int
    total_value: int
    deposit_percent: float
    deposit: float
    lead_time_weeks: int

    @property
    def remaining_balance(self) -> float:
        return self.total_value - self.deposit


def contract_pricing(
    foundry: FoundryRef,
    contract_type: str,
    process_node: float,
    wafers_per_week: int,
    duration_weeks: int,
) -> ContractQuote:
    """
    Price a wafer supply contract.

    Parameters
    ----------
    foundry : Foundry or str
        Foundry or its id.
    contract_type : {"spot", "short-term", "long-term"}
    process_node : float
        Process node [nm].
    wafers_per_week : int
        Weekly wafer starts, positive.
    duration_weeks : int
        Contract length, positive.

    Returns
    -------
    quote : ContractQuote
    """
    foundry = get_foundry(foundry)
    if contract_type not in CONTRACT_TYPES:
        raise ValidationError(
            f"Unknown contract type {contract_type!r}, expected one of {CONTRACT_TYPES}"
        )
    if wafers_per_week <= 0 or duration_weeks <= 0:
        raise ValidationError(
            f"Wafer volume and duration must be positive, "
            f"got {wafers_per_week}/week for {duration_weeks} weeks"
        )

    base = base_wafer_price(process_node)
    foundry_price = base * foundry.pricing_multiplier
    total_wafers = wafers_per_week * duration_weeks

    discount = 0.0
    if contract_type == "spot":
        final_price = foundry_price * (1 + SPOT_PREMIUM)
    else:
        tiers = SHORT_TERM_DISCOUNTS if contract_type == "short-term" else LONG_TERM_DISCOUNTS
        discount = _volume_discount(tiers, total_wafers)
        final_price = foundry_price * (1 - discount)

    total_value = int(math.floor(final_price * total_wafers + 0.5))
    deposit_percent = DEPOSIT_PERCENT[contract_type]

    return ContractQuote(
        foundry_id=foundry.id,
        contract_type=contract_type,
        process_node=process_node,
        base_price=base,
        foundry_multiplier=foundry.pricing_multiplier,
        price_before_discount=foundry_price,
        discount=discount,
        price_per_wafer=int(math.floor(final_price + 0.5)),
        wafers_per_week=wafers_per_week,
        duration_weeks=duration_weeks,
        total_wafers=total_wafers,
        total_value=total_value,
        deposit_percent=deposit_percent,
        deposit=total_value * deposit_percent,
        lead_time_weeks=foundry.lead_time.for_contract(contract_type),
    )


def foundry_capacity(foundry: FoundryRef, year: float) -> int:
    """Wafers per week, interpolated between tabulated years."""
    return interpolate_by_year(get_foundry(foundry).capacity_by_year, year)


def foundry_nodes(foundry: FoundryRef, year: float) -> tuple[float, ...]:
    """Nodes offered in ``year``: the entry of the most recent tabulated year <= year."""
    table = get_foundry(foundry).nodes_by_year
    for data_year in sorted(table, reverse=True):
        if data_year <= year:
            return table[data_year]
    return ()


def available_foundries(year: float, process_node: Optional[float] = None) -> list[Foundry]:
    """Foundries operating in ``year``, optionally restricted to those offering ``process_node``."""
    return [
        f for f in FOUNDRIES.values()
        if year >= f.founded
        and (process_node is None or process_node in foundry_nodes(f, year))
    ]


@dataclass(frozen=True)
class MarketConditions:
    """
    Snapshot of a foundry's order book.

    Parameters
    ----------
    utilization : float
        Booked fraction of capacity [0.4, 0.98].
    spot_price_multiplier : float
        1.25 above 95% utilization, 1.15 above 90%, 0.90 below 60%, else 1.0.
    available_capacity : int
        Unbooked wafers per week.
    """
    utilization: float
    spot_price_multiplier: float
    available_capacity: int


def market_conditions(
    foundry: FoundryRef,
    year: float,
    rng: Optional[np.random.Generator] = None,
) -> MarketConditions:
    """
    Simulated utilization and spot pricing.

    Utilization is the tier baseline (premium 90%, budget 65%, others 75%)
    with ±5% uniform noise.
    """
    foundry = get_foundry(foundry)
    rng = rng if rng is not None else np.random.default_rng()

    base = BASE_UTILIZATION.get(foundry.tier, DEFAULT_UTILIZATION)
    variance = (rng.random() - 0.5) * UTILIZATION_NOISE
    low, high = UTILIZATION_BOUNDS
    utilization = max(low, min(high, base + variance))

    if utilization > 0.95:
        spot = 1.25
    elif utilization > 0.90:
        spot = 1.15
    elif utilization < 0.60:
        spot = 0.90
    else:
        spot = 1.0

    capacity = foundry_capacity(foundry, year)
    available = int(math.floor(capacity * (1 - utilization) + 0.5))
    logger.debug(
        "%s %s: utilization=%.3f spot=%.2f available=%d",
        foundry.id, year, utilization, spot, available,
    )
    return MarketConditions(
        utilization=utilization,
        spot_price_multiplier=spot,
        available_capacity=available,
    )
