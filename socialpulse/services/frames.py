"""
pandas helpers shared by the aggregation, dashboard and predictive services.

Samples become one row each; metric columns are float with NaN for absent
values so "absent" and "zero" stay distinguishable until a formula decides
to treat absent as zero.
"""
import math
from datetime import datetime
from typing import Dict, Iterable, List

import pandas as pd

from socialpulse.schemas.metrics import (
    ENGAGEMENT_FIELDS,
    METRIC_FIELDS,
    SUM_FIELDS,
    Granularity,
    Sample,
)

ID_COLUMNS = [
    "workspace_id",
    "account_id",
    "platform",
    "kind",
    "timestamp",
    "post_id",
    "platform_post_id",
    "content_type",
]
FRAME_COLUMNS = ID_COLUMNS + METRIC_FIELDS
SERIES_METRICS = ["engagement", "reach", "impressions", "followers"] + ENGAGEMENT_FIELDS


def samples_to_frame(samples: Iterable[Sample]) -> pd.DataFrame:
    rows = []
    for s in samples:
        ref = s.entity_ref
        row = {
            "workspace_id": s.workspace_id,
            "account_id": s.account_id,
            "platform": s.platform,
            "kind": s.kind.value,
            "timestamp": s.timestamp,
            "post_id": ref.post_id if ref else None,
            "platform_post_id": ref.platform_post_id if ref else None,
            "content_type": ref.content_type if ref else None,
        }
        for field in METRIC_FIELDS:
            value = getattr(s.metrics, field)
            row[field] = float(value) if value is not None else math.nan
        rows.append(row)

    frame = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    if frame.empty:
        return frame
    return frame.sort_values("timestamp", kind="mergesort").reset_index(drop=True)


def counters(frame: pd.DataFrame, fields: List[str] = SUM_FIELDS) -> pd.DataFrame:
    """Flow counters with absent values read as zero."""
    return frame[fields].fillna(0)


def engagement_of(frame: pd.DataFrame) -> pd.Series:
    return frame[ENGAGEMENT_FIELDS].fillna(0).sum(axis=1)


def sample_engagement_rates(frame: pd.DataFrame) -> pd.Series:
    """
    Per-sample engagement rate in percent: the collector's own value when it
    sent one, else engagement / reach (impressions when reach is missing).
    NaN where neither is available.
    """
    engagement = engagement_of(frame)
    reach = frame["reach"].fillna(0)
    impressions = frame["impressions"].fillna(0)
    denominator = reach.where(reach > 0, impressions)
    derived = engagement / denominator.where(denominator > 0) * 100
    return frame["engagement_rate"].fillna(derived)


def bucket_label(ts: datetime, granularity: Granularity) -> str:
    if granularity == Granularity.HOURLY:
        return ts.strftime("%Y-%m-%d %H:00")
    if granularity == Granularity.WEEKLY:
        year, week, _ = ts.isocalendar()
        return f"{year}-W{week:02d}"
    if granularity == Granularity.MONTHLY:
        return ts.strftime("%Y-%m")
    return ts.strftime("%Y-%m-%d")


def with_buckets(frame: pd.DataFrame, granularity: Granularity) -> pd.DataFrame:
    framed = frame.copy()
    framed["bucket"] = [bucket_label(ts, granularity) for ts in framed["timestamp"]]
    return framed


def latest_followers(frame: pd.DataFrame, first: bool = False) -> float:
    """Sum over (account, platform) of the last (or first) follower count seen."""
    bearing = frame.dropna(subset=["followers"])
    if bearing.empty:
        return 0.0
    grouped = bearing.groupby(["account_id", "platform"], sort=False)["followers"]
    per_account = grouped.first() if first else grouped.last()
    return float(per_account.sum())


def followers_by_account(frame: pd.DataFrame, first: bool = False) -> dict:
    bearing = frame.dropna(subset=["followers"])
    if bearing.empty:
        return {}
    grouped = bearing.groupby(["account_id", "platform"], sort=False)["followers"]
    per_account = grouped.first() if first else grouped.last()
    return {key: float(value) for key, value in per_account.items()}


def bucket_followers(framed: pd.DataFrame) -> pd.Series:
    """Per bucket: sum over accounts of the last follower count in that bucket."""
    bearing = framed.dropna(subset=["followers"])
    if bearing.empty:
        return pd.Series(dtype="float64")
    per_account = bearing.groupby(["bucket", "account_id", "platform"], sort=False)["followers"].last()
    return per_account.groupby(level="bucket").sum()


def daily_series(frame: pd.DataFrame) -> pd.DataFrame:
    """
    One row per UTC day that has samples, ascending: summed engagement, reach,
    impressions and engagement components, plus the day's follower count.
    """
    if frame.empty:
        return pd.DataFrame(columns=SERIES_METRICS, dtype="float64")

    framed = with_buckets(frame, Granularity.DAILY)
    flows = counters(framed, ENGAGEMENT_FIELDS + ["reach", "impressions"])
    flows["engagement"] = engagement_of(framed)
    flows["bucket"] = framed["bucket"]

    daily = flows.groupby("bucket", sort=True).sum()
    daily["followers"] = bucket_followers(framed).reindex(daily.index).fillna(0)
    return daily[SERIES_METRICS]


def to_int(value) -> int:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return 0
    return int(round(float(value)))


def round2(value: float) -> float:
    if value is None or math.isnan(value) or math.isinf(value):
        return 0.0
    return round(float(value), 2)


def safe_pct(numerator: float, denominator: float) -> float:
    return round2(numerator / denominator * 100) if denominator else 0.0


def totals(frame: pd.DataFrame, fields: List[str] = SUM_FIELDS) -> Dict[str, float]:
    if frame.empty:
        return {f: 0.0 for f in fields}
    return {f: float(v) for f, v in counters(frame, fields).sum().items()}


def post_count(frame: pd.DataFrame) -> int:
    return int((frame["kind"] == "post").sum()) if not frame.empty else 0
