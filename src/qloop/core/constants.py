"""Golden-ratio constants shared by scoring, gating and learning layers."""

from __future__ import annotations

PHI = 1.618033988749895
PHI_INV = 0.618033988749895
PHI_INV_2 = 0.381966011250105
PHI_INV_3 = 0.236067977499790

# Global confidence ceiling: no layer may report more certainty than this.
MAX_CONFIDENCE = PHI_INV
MIN_CONFIDENCE = 0.1

STATE_VERSION = 1
STATE_STALENESS_DAYS = 30
