"""
core/constants.py
Hard-coded decision policy and system constants.
These values are NOT configurable via environment — they are the law.
"""

from typing import Final

# ---------------------------------------------------------------------------
# Minimum edge per market category (percentage points)
# ---------------------------------------------------------------------------
CATEGORY_EDGE_THRESHOLDS: Final[dict[str, float]] = {
    "weather": 8.0,          # scientific models, meteorological data
    "sports": 10.0,          # rich statistics, lower volatility
    "politics": 12.0,        # polls, official statements
    "economics": 12.0,       # official data, subject to revisions
    "crypto": 15.0,          # high volatility, speculation-driven
    "technology": 15.0,      # company secrecy, surprise announcements
    "entertainment": 18.0,   # high subjectivity
    "world": 20.0,           # geopolitical uncertainty
    "other": 25.0,           # unclassified, highest bar
}
DEFAULT_EDGE_THRESHOLD: Final[float] = 25.0

# ---------------------------------------------------------------------------
# Belief updates
# ---------------------------------------------------------------------------
SIGNAL_IMPACT_CAPS: Final[dict[str, float]] = {
    "authoritative": 0.20,
    "procedural": 0.15,
    "quantitative": 0.10,
    "interpretive": 0.07,
    "speculative": 0.03,
}
MAX_SIGNAL_STRENGTH: Final[int] = 5
MAX_RANGE_SHIFT_RATIO: Final[float] = 0.6      # shift never exceeds 60% of width
CONFLICT_WIDENING_RATIO: Final[float] = 0.25   # each side widens by 25% of width

INITIAL_BELIEF_LOW: Final[float] = 40.0
INITIAL_BELIEF_HIGH: Final[float] = 60.0

BASE_CONFIDENCE: Final[float] = 50.0
CONFIDENCE_AUTHORITATIVE_BONUS: Final[float] = 10.0
CONFIDENCE_PROCEDURAL_BONUS: Final[float] = 5.0
UNKNOWN_PENALTY: Final[float] = 7.0
CONFLICT_PENALTY: Final[float] = 10.0
TIME_DECAY_PER_DAY: Final[float] = 0.5
MIN_CONFIDENCE_BOUND: Final[float] = 30.0
MAX_CONFIDENCE_BOUND: Final[float] = 95.0

# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------
CALIBRATION_BUCKET_WIDTH: Final[float] = 10.0
EXPECTED_BELIEF_COVERAGE: Final[float] = 85.0   # percent
BRIER_WARNING_LEVEL: Final[float] = 0.25
CALIBRATION_ERROR_WARNING: Final[float] = 15.0
BUCKET_ERROR_WARNING: Final[float] = 20.0
BUCKET_MIN_TRADES: Final[int] = 3

EDGE_RANGES: Final[tuple[tuple[float, float], ...]] = (
    (0.0, 10.0), (10.0, 15.0), (15.0, 20.0), (20.0, 100.0),
)
BELIEF_WIDTH_RANGES: Final[tuple[tuple[float, float], ...]] = (
    (0.0, 10.0), (10.0, 15.0), (15.0, 20.0), (20.0, 25.0),
)

# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------
SIGNAL_INBOX_CAPACITY: Final[int] = 200         # queued signals per market
SYSTEM_VERSION: Final[str] = "v1.0-belief-engine"
