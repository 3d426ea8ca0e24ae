"""AdBox — Ad Metric Registry.

Defines the performance fields carried by every ad entity level and which of
them count as a significant change for the change detector.
"""

from typing import Dict, List


class MetricDefinition:
    """A stored metric field; ``significant`` ones are diffed between polls."""

    def __init__(self, name: str, significant: bool = False):
        self.name = name
        self.significant = significant

    def __repr__(self) -> str:
        return f"<Metric {self.name}{' *' if self.significant else ''}>"


def _define(*names: str, significant: bool = False) -> Dict[str, MetricDefinition]:
    return {name: MetricDefinition(name, significant) for name in names}


# ─────────────────────────────────────────────
# SHARED METRICS: every level (campaign, adset, ad)
# ─────────────────────────────────────────────

ENTITY_METRICS: Dict[str, MetricDefinition] = _define(
    "impressions", "reach", "spend", "clicks", "results", significant=True
)


# ─────────────────────────────────────────────
# AD-ONLY METRICS
# ─────────────────────────────────────────────

AD_METRICS: Dict[str, MetricDefinition] = _define(
    "post_engagements",
    "video_plays",
    "video_p25",
    "video_p50",
    "video_p75",
    "video_p95",
    "video_p100",
    "video_avg_time",
)


ALL_METRICS = {**ENTITY_METRICS, **AD_METRICS}

# Order matters: field diffs are reported in this order
SIGNIFICANT_METRICS: List[str] = [
    name for name, m in ALL_METRICS.items() if m.significant
]
