# pricing_engine.py
import logging
import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Sequence

import pricing_config as cfg

logger = logging.getLogger(__name__)

ACCURACY_LEVELS = ("high", "medium", "mocked", "none")


@dataclass(frozen=True)
class Dimensions:
    length: float
    width: float
    height: float


@dataclass(frozen=True)
class Geometry:
    volume: float            # cm^3
    dimensions: Dimensions   # mm, bounding box
    wall_thickness: float    # mm
    surface_area: Optional[float] = None
    accuracy: str = "none"   # informational only

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Geometry":
        """Build from the analysis service payload (camelCase) or our own snake_case."""
        dims = data.get("dimensions") or {}
        wall = data.get("wallThickness", data.get("wall_thickness", 0))
        area = data.get("surfaceArea", data.get("surface_area"))
        return cls(
            volume=float(data.get("volume") or 0),
            dimensions=Dimensions(
                length=float(dims.get("length") or 0),
                width=float(dims.get("width") or 0),
                height=float(dims.get("height") or 0),
            ),
            wall_thickness=float(wall or 0),
            surface_area=float(area) if area is not None else None,
            accuracy=str(data.get("accuracy") or "none"),
        )

    def to_dict(self) -> Dict[str, Any]:
        # Same shape the analysis service sends back.
        out = {
            "volume": self.volume,
            "dimensions": asdict(self.dimensions),
            "wallThickness": self.wall_thickness,
            "accuracy": self.accuracy,
        }
        if self.surface_area is not None:
            out["surfaceArea"] = self.surface_area
        return out


EMPTY_GEOMETRY = Geometry(volume=0.0, dimensions=Dimensions(0.0, 0.0, 0.0), wall_thickness=0.0)


@dataclass(frozen=True)
class Material:
    name: str
    density: float        # g/cm^3
    price_per_kg: float
    factor: float         # not read by the formula


@dataclass(frozen=True)
class MachineTier:
    size: str
    rate_per_hour: float
    max_mold_size: float  # mm


@dataclass(frozen=True)
class ProcessParameters:
    material_id: str
    quantity: int
    cavities: int
    color: str = "natural"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessParameters":
        return cls(
            material_id=str(data.get("material_id", data.get("materialId", ""))),
            quantity=int(data.get("quantity") or 0),
            cavities=int(data.get("cavities") or 0),
            color=str(data.get("color") or "natural"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CostBreakdown:
    material_cost: float      # per part, color premium included
    machine_cost: float       # per part
    mold_cost: float          # per part, amortized over the run
    color_premium: float      # per part
    scrap_cost: float         # per part
    total_per_part: float
    total_quote: float
    cycle_time: float         # seconds per shot
    parts_per_hour: float
    recommended_machine: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostBreakdown":
        return cls(**{f.name: data[f.name] for f in fields(cls)})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def material_catalog(rows: Optional[Sequence[Dict[str, Any]]] = None) -> List[Material]:
    rows = cfg.MATERIALS if rows is None else rows
    return [
        Material(
            name=r["name"],
            density=float(r["density"]),
            price_per_kg=float(r["price_per_kg"]),
            factor=float(r.get("factor", 1.0)),
        )
        for r in rows
    ]


def machine_catalog(rows: Optional[Sequence[Dict[str, Any]]] = None) -> List[MachineTier]:
    rows = cfg.MACHINE_RATES if rows is None else rows
    return [
        MachineTier(
            size=r["size"],
            rate_per_hour=float(r["rate_per_hour"]),
            max_mold_size=float(r["max_mold_size"]),
        )
        for r in rows
    ]


def resolve_material(material_id: str, materials: Sequence[Material]) -> Material:
    """Exact name match, otherwise the first catalog entry."""
    for m in materials:
        if m.name == material_id:
            return m
    logger.debug("unknown material %r; using %r", material_id, materials[0].name)
    return materials[0]


def select_machine(mold_size_mm: float, machines: Sequence[MachineTier]) -> MachineTier:
    """Smallest tier that fits the mold, or the largest tier if none does."""
    tiers = sorted(machines, key=lambda t: t.max_mold_size)

    for tier in tiers:
        if tier.max_mold_size >= mold_size_mm:
            return tier

    return tiers[-1]


def _finite_count(value) -> bool:
    # Ints past float range would overflow in the per-part division.
    try:
        return math.isfinite(float(value)) and value > 0
    except OverflowError:
        return False


def _computable(geometry: Geometry, params: ProcessParameters) -> bool:
    # Comparisons are False for NaN, so NaN inputs are rejected too.
    return geometry.volume > 0 and _finite_count(params.quantity) and _finite_count(params.cavities)


def calculate_quote(
    geometry: Geometry,
    params: ProcessParameters,
    materials: Optional[Sequence[Material]] = None,
    machines: Optional[Sequence[MachineTier]] = None,
) -> Optional[CostBreakdown]:
    """
    Per-part and total molding cost for one part geometry.

    Returns None when the inputs cannot produce a quote (no volume, no
    quantity, no cavities, or a cycle time so long the press makes nothing).
    Never raises for those cases.
    """
    materials = material_catalog() if materials is None else materials
    machines = machine_catalog() if machines is None else machines

    if not _computable(geometry, params) or not materials or not machines:
        logger.debug("quote not computable for %s / %s", geometry, params)
        return None

    material = resolve_material(params.material_id, materials)

    # ---- Material ----
    weight_g = geometry.volume * material.density
    weight_kg = weight_g / 1000
    material_cost_raw = weight_kg * material.price_per_kg
    color_premium = material_cost_raw * cfg.COLOR_PREMIUM_RATE
    total_material_cost = material_cost_raw + color_premium

    # ---- Cycle time + throughput ----
    cycle_time = cfg.BASE_CYCLE_TIME_S + (geometry.wall_thickness * cfg.THICKNESS_FACTOR)
    if not math.isfinite(cycle_time) or cycle_time <= 0:
        logger.debug("degenerate cycle time %r", cycle_time)
        return None

    parts_per_shot = params.cavities
    parts_per_minute = (60 / cycle_time) * parts_per_shot
    parts_per_hour = parts_per_minute * 60
    if not math.isfinite(parts_per_hour) or parts_per_hour <= cfg.MIN_PARTS_PER_HOUR:
        logger.debug("degenerate throughput %r parts/hr", parts_per_hour)
        return None

    # ---- Press selection ----
    dims = geometry.dimensions
    mold_size_mm = max(dims.length, dims.width) * cfg.MOLD_BASE_MULTIPLIER
    machine = select_machine(mold_size_mm, machines)
    machine_cost_per_part = machine.rate_per_hour / parts_per_hour

    # ---- Mold amortization ----
    mold_estimate = cfg.FIXED_MOLD_BASE + (machine.rate_per_hour * cfg.MOLD_RATE_MULTIPLIER)
    mold_cost_per_part = mold_estimate / params.quantity

    # ---- Aggregation ----
    cost_before_scrap = total_material_cost + machine_cost_per_part + mold_cost_per_part
    scrap_cost_per_part = cost_before_scrap * cfg.SCRAP_RATE
    total_per_part = cost_before_scrap * (1 + cfg.SCRAP_RATE)
    total_quote = total_per_part * params.quantity

    breakdown = CostBreakdown(
        material_cost=total_material_cost,
        machine_cost=machine_cost_per_part,
        mold_cost=mold_cost_per_part,
        color_premium=color_premium,
        scrap_cost=scrap_cost_per_part,
        total_per_part=total_per_part,
        total_quote=total_quote,
        cycle_time=cycle_time,
        parts_per_hour=parts_per_hour,
        recommended_machine=machine.size,
    )

    numbers = [v for v in asdict(breakdown).values() if isinstance(v, float)]
    if not all(math.isfinite(v) for v in numbers):
        logger.debug("non-finite breakdown for %s / %s", geometry, params)
        return None

    return breakdown


if __name__ == "__main__":
    geometry = Geometry(
        volume=187.35,
        dimensions=Dimensions(length=65, width=42, height=75),
        wall_thickness=1.8,
        accuracy="high",
    )
    params = ProcessParameters(
        material_id=cfg.MATERIALS[0]["name"],
        quantity=1000,
        cavities=1,
    )

    result = calculate_quote(geometry, params)
    print("PER PART:", round(result.total_per_part, 4))
    print("TOTAL:", round(result.total_quote, 2))
    print("PRESS:", result.recommended_machine)
    print("CYCLE:", result.cycle_time, "s")
