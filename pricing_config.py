# pricing_config.py
"""
TUNING KNOBS (EDIT THIS FILE)

Material catalog, press tiers and the constants of the molding cost formula.
"""

# ============================================================
# 1) MATERIALS (density g/cm^3, $/kg)
# ============================================================
MATERIALS_MASTER = [
    {"name": "ABS (Acrylonitrile Butadiene Styrene)", "density": 1.05, "price_per_kg": 3.50, "factor": 0.8},
    {"name": "PP (Polypropylene)", "density": 0.90, "price_per_kg": 2.10, "factor": 0.5},
    {"name": "PC (Polycarbonate)", "density": 1.20, "price_per_kg": 5.80, "factor": 1.2},
]

# "factor" is carried in the catalog but the cost formula does not read it.

MATERIAL_ENABLED = {
    "ABS (Acrylonitrile Butadiene Styrene)": True,
    "PP (Polypropylene)": True,
    "PC (Polycarbonate)": True,
}

# Unknown material ids fall back to the first enabled entry, so keep ABS on top.
MATERIALS = [m for m in MATERIALS_MASTER if MATERIAL_ENABLED.get(m["name"], False)]

# ============================================================
# 2) PRESS TIERS (ascending by max mold size, mm)
# ============================================================
MACHINE_RATES = [
    {"size": "Small (50-100T)", "rate_per_hour": 45, "max_mold_size": 300},
    {"size": "Medium (100-250T)", "rate_per_hour": 65, "max_mold_size": 550},
    {"size": "Large (250-500T)", "rate_per_hour": 90, "max_mold_size": 900},
]

# ============================================================
# 3) CYCLE TIME + MOLD SIZING
# ============================================================
BASE_CYCLE_TIME_S = 5
THICKNESS_FACTOR = 4          # seconds of cooling per mm of wall
MOLD_BASE_MULTIPLIER = 2.8    # mold footprint vs. largest part side

# Below this the press is effectively not producing; quote is not computable.
MIN_PARTS_PER_HOUR = 1e-6

# ============================================================
# 4) TOOLING, SCRAP, COLOR
# ============================================================
FIXED_MOLD_BASE = 10000
MOLD_RATE_MULTIPLIER = 100

SCRAP_RATE = 0.05
COLOR_PREMIUM_RATE = 0.02     # flat, applied whatever color is picked

# ============================================================
# 5) UI OPTIONS
# ============================================================
COLOR_OPTIONS = {
    "natural": "Natural (No Premium)",
    "black": "Black (+2% Premium)",
    "custom": "Custom Color (+2% Premium)",
}

CAVITY_OPTIONS = [1, 2, 4, 8]

MIN_QUANTITY = 100
QUANTITY_STEP = 100
DEFAULT_QUANTITY = 1000
