"""
Predictive analytics over daily sample series.

Everything here is statistically simple on purpose: ordinary least squares
for trends and engagement, z-score style thresholds for anomalies. The pure
functions at module level do the maths; `PredictiveAnalyticsService` loads
the windows and keeps the fitted engagement models.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from socialpulse.schemas.metrics import MetricKind, SampleQuery
from socialpulse.schemas.predictive import (
    Anomaly,
    AnomalyType,
    EngagementFeatures,
    EngagementPrediction,
    Insight,
    InsightType,
    ModelState,
    PerformanceTrend,
    ReachForecast,
    Severity,
    TrendDirection,
    TrendFit,
)
from socialpulse.services.frames import SERIES_METRICS, daily_series, round2, samples_to_frame
from socialpulse.services.post_directory import lookup_posts
from socialpulse.utils.dates import start_of_day, utcnow, validate_range
from socialpulse.utils.errors import InvalidQueryError
from socialpulse.utils.logger import logger

HISTORY_DAYS = 90
MIN_FORECAST_DAYS = 30
MIN_SERIES_POINTS = 7
MIN_TRAINING_SAMPLES = 50
MAX_TRAINING_SAMPLES = 1000
RETRAIN_INTERVAL = timedelta(hours=24)
PREDICTION_CONFIDENCE = 0.75
PLACEHOLDER_FEATURE = 0.5

ANOMALY_METRICS = ["engagement", "reach", "impressions", "followers"]
DEFAULT_TREND_METRICS = ["engagement", "reach", "followers"]
SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}
ENGAGEMENT_OUTPUTS = ["likes", "comments", "shares", "saves"]


# ---- trend fitting -------------------------------------------------------


def fit_trend(series: Sequence[float], metric: str = "") -> TrendFit:
    """OLS of the series against its index 0..n-1."""
    y = np.asarray(series, dtype=float)
    n = len(y)
    if n == 0:
        return TrendFit(metric=metric, slope=0.0, intercept=0.0, r_squared=0.0)

    x = np.arange(n, dtype=float)
    sum_x, sum_y = x.sum(), y.sum()
    denominator = n * (x * x).sum() - sum_x * sum_x
    slope = (n * (x * y).sum() - sum_x * sum_y) / denominator if denominator else 0.0
    intercept = (sum_y - slope * sum_x) / n

    ss_total = ((y - y.mean()) ** 2).sum()
    ss_residual = ((y - (slope * x + intercept)) ** 2).sum()
    # A constant series is fitted exactly
    r_squared = 1 - ss_residual / ss_total if ss_total else 1.0

    return TrendFit(metric=metric, slope=float(slope), intercept=float(intercept), r_squared=float(r_squared))


def trend_direction(slope: float, series: Sequence[float]) -> TrendDirection:
    """Stable when |slope| is under 1% of the series mean."""
    mean = float(np.mean(series)) if len(series) else 0.0
    if slope == 0 or abs(slope) < abs(mean) * 0.01:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if slope > 0 else TrendDirection.DECREASING


def trend_confidence(r_squared: float) -> float:
    return min(0.95, max(0.5, r_squared))


def project(fit: TrendFit, n: int, days_ahead: int) -> List[float]:
    """Values of the fitted line for indices n .. n + days_ahead - 1."""
    last = n - 1
    return [fit.slope * (last + i) + fit.intercept for i in range(1, days_ahead + 1)]


def future_dates(today: datetime, days_ahead: int) -> List[str]:
    day = start_of_day(today)
    return [(day + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(1, days_ahead + 1)]


def build_trend(
    metric: str, series: Sequence[float], days_ahead: int, today: datetime
) -> PerformanceTrend:
    fit = fit_trend(series, metric)
    prediction = [max(0, int(round(v))) for v in project(fit, len(series), days_ahead)]
    return PerformanceTrend(
        metric=metric,
        trend=trend_direction(fit.slope, series),
        change_rate=round2(fit.slope),
        prediction=prediction,
        dates=future_dates(today, days_ahead),
        confidence=round2(trend_confidence(fit.r_squared)),
        fit=fit,
    )


def forecast_points(
    reach: Sequence[float], impressions: Sequence[float], days_ahead: int, today: datetime
) -> List[ReachForecast]:
    if len(reach) < MIN_FORECAST_DAYS:
        return []

    reach_fit = fit_trend(reach, "reach")
    impressions_fit = fit_trend(impressions, "impressions")
    margin = 1.96 * float(np.std(reach))
    confidence = round2(trend_confidence(reach_fit.r_squared))

    points = []
    for date, predicted_reach, predicted_impressions in zip(
        future_dates(today, days_ahead),
        project(reach_fit, len(reach), days_ahead),
        project(impressions_fit, len(impressions), days_ahead),
    ):
        points.append(
            ReachForecast(
                date=date,
                predicted_reach=max(0, int(round(predicted_reach))),
                predicted_impressions=max(0, int(round(predicted_impressions))),
                lower_bound=max(0, int(round(predicted_reach - margin))),
                upper_bound=max(0, int(round(predicted_reach + margin))),
                confidence=confidence,
            )
        )
    return points


# ---- anomalies -----------------------------------------------------------


def anomaly_severity(deviation: float, threshold: float) -> Severity:
    ratio = deviation / threshold if threshold else 0.0
    if ratio > 2:
        return Severity.HIGH
    if ratio > 1.5:
        return Severity.MEDIUM
    return Severity.LOW


def detect_series_anomalies(
    daily: pd.DataFrame, sensitivity: float = 2.5, metrics: Sequence[str] = ANOMALY_METRICS
) -> List[Anomaly]:
    """
    Flag days whose value lies more than sensitivity x stddev from the mean
    of the window. Metrics with fewer than seven days are skipped.
    """
    anomalies = []
    for metric in metrics:
        if metric not in daily.columns:
            continue
        series = daily[metric].fillna(0)
        if len(series) < MIN_SERIES_POINTS:
            continue

        mean = float(series.mean())
        threshold = sensitivity * float(np.std(series.values))

        for date, value in series.items():
            deviation = abs(float(value) - mean)
            if deviation > threshold:
                anomalies.append(
                    Anomaly(
                        date=date,
                        metric=metric,
                        value=float(value),
                        expected_value=round(mean),
                        deviation=round(deviation),
                        severity=anomaly_severity(deviation, threshold),
                        type=AnomalyType.SPIKE if value > mean else AnomalyType.DROP,
                    )
                )
    return sort_anomalies(anomalies)


def sort_anomalies(anomalies: List[Anomaly]) -> List[Anomaly]:
    """Most severe first; within a severity, most recent first."""
    return sorted(anomalies, key=lambda a: (SEVERITY_RANK[a.severity], a.date), reverse=True)


# ---- insights ------------------------------------------------------------


def _percent_of_expected(anomaly: Anomaly) -> int:
    if not anomaly.expected_value:
        return 0
    return int(round(anomaly.deviation / anomaly.expected_value * 100))


def build_insights(anomalies: List[Anomaly], trends: List[PerformanceTrend], limit: int = 5) -> List[Insight]:
    insights = []

    for anomaly in sort_anomalies(anomalies)[:3]:
        if anomaly.severity != Severity.HIGH:
            continue
        pct = _percent_of_expected(anomaly)
        value = int(round(anomaly.value))
        if anomaly.type == AnomalyType.SPIKE:
            insights.append(
                Insight(
                    type=InsightType.OPPORTUNITY,
                    title=f"Exceptional {anomaly.metric} performance detected",
                    description=(
                        f"Your {anomaly.metric} spiked to {value} on {anomaly.date}, which is {pct}% above normal. "
                        "Analyze what worked and replicate this success."
                    ),
                    impact=Severity.HIGH,
                    suggested_action=f"Review content posted on {anomaly.date} and identify successful patterns",
                    data=anomaly.model_dump(mode="json", by_alias=True),
                )
            )
        else:
            insights.append(
                Insight(
                    type=InsightType.WARNING,
                    title=f"Significant {anomaly.metric} decline detected",
                    description=(
                        f"Your {anomaly.metric} dropped to {value} on {anomaly.date}, which is {pct}% below normal. "
                        "Investigate potential causes."
                    ),
                    impact=Severity.HIGH,
                    suggested_action="Review recent changes in content strategy or posting schedule",
                    data=anomaly.model_dump(mode="json", by_alias=True),
                )
            )

    for trend in trends:
        if trend.confidence <= 0.7 or trend.trend == TrendDirection.STABLE:
            continue
        confidence = int(round(trend.confidence * 100))
        summary = {
            "metric": trend.metric,
            "trend": trend.trend.value,
            "changeRate": trend.change_rate,
            "confidence": trend.confidence,
        }
        if trend.trend == TrendDirection.DECREASING:
            insights.append(
                Insight(
                    type=InsightType.WARNING,
                    title=f"Declining {trend.metric} trend",
                    description=(
                        f"Your {trend.metric} is trending downward with {confidence}% confidence. "
                        "Take action to reverse this trend."
                    ),
                    impact=Severity.MEDIUM,
                    suggested_action="Experiment with new content formats or posting times",
                    data=summary,
                )
            )
        else:
            insights.append(
                Insight(
                    type=InsightType.OPPORTUNITY,
                    title=f"Growing {trend.metric} momentum",
                    description=(
                        f"Your {trend.metric} is trending upward with {confidence}% confidence. "
                        "Maintain this momentum."
                    ),
                    impact=Severity.MEDIUM,
                    suggested_action="Continue current strategy and consider increasing posting frequency",
                    data=summary,
                )
            )

    return insights[:limit]


# ---- engagement model ----------------------------------------------------


def normalize_features(
    time_of_day: float, day_of_week: float, content_length: float, hashtag_count: float, media_count: float
) -> List[float]:
    return [
        time_of_day / 23,
        day_of_week / 6,
        min(content_length / 500, 1),
        min(hashtag_count / 30, 1),
        min(media_count / 10, 1),
    ]


def sunday_first_weekday(dt: datetime) -> int:
    return (dt.weekday() + 1) % 7


def fit_engagement_model(features: np.ndarray, labels: np.ndarray) -> List[List[float]]:
    """Least squares weights (features + bias) x outputs."""
    design = np.hstack([features, np.ones((features.shape[0], 1))])
    weights, _, _, _ = np.linalg.lstsq(design, labels, rcond=None)
    return weights.tolist()


def apply_engagement_model(weights: List[List[float]], normalized: List[float]) -> np.ndarray:
    return np.append(np.asarray(normalized, dtype=float), 1.0) @ np.asarray(weights, dtype=float)


class PredictiveAnalyticsService:
    def __init__(self, sample_store, post_directory=None, clock: Callable[[], datetime] = utcnow):
        self.sample_store = sample_store
        self.post_directory = post_directory
        self.clock = clock
        self.models: Dict[Tuple[str, str], ModelState] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    async def _daily(self, workspace_id: str, platform: str, start: datetime, end: datetime) -> pd.DataFrame:
        samples = await self.sample_store.find(
            SampleQuery(workspace_id=workspace_id, platforms=[platform], start=start, end=end)
        )
        return daily_series(samples_to_frame(samples))

    async def _recent_daily(self, workspace_id: str, platform: str) -> pd.DataFrame:
        now = self.clock()
        return await self._daily(workspace_id, platform, now - timedelta(days=HISTORY_DAYS), now)

    # ---- engagement prediction -------------------------------------------

    async def predict_engagement(
        self, workspace_id: str, platform: str, features: EngagementFeatures
    ) -> EngagementPrediction:
        logger.info(f"Predicting engagement for workspace {workspace_id} on {platform}")

        state = await self.ensure_model(workspace_id, platform)
        if state is None:
            return EngagementPrediction(factors=features)

        normalized = normalize_features(
            features.time_of_day,
            features.day_of_week,
            features.content_length,
            features.hashtag_count,
            features.media_count,
        )
        likes, comments, shares, saves = apply_engagement_model(state.weights, normalized)

        return EngagementPrediction(
            predicted_engagement=max(0, int(round(likes + comments + shares + saves))),
            predicted_likes=max(0, int(round(likes))),
            predicted_comments=max(0, int(round(comments))),
            predicted_shares=max(0, int(round(shares))),
            confidence=PREDICTION_CONFIDENCE,
            factors=features,
        )

    async def ensure_model(self, workspace_id: str, platform: str) -> Optional[ModelState]:
        """
        Current model for (workspace, platform), retrained when older than 24h.
        None when there is not enough history to train one.
        """
        key = (workspace_id, platform)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            state = self.models.get(key)
            if state is not None and self.clock() - state.trained_at < RETRAIN_INTERVAL:
                return state

            trained = await self._train(workspace_id, platform)
            if trained is not None:
                self.models[key] = trained
                return trained
            return state

    async def _train(self, workspace_id: str, platform: str) -> Optional[ModelState]:
        logger.info(f"Training engagement model for workspace {workspace_id} on {platform}")
        samples = await self.sample_store.find(
            SampleQuery(
                workspace_id=workspace_id,
                platforms=[platform],
                kind=MetricKind.POST,
                require_post_id=True,
                newest_first=True,
                limit=MAX_TRAINING_SAMPLES,
            )
        )
        if len(samples) < MIN_TRAINING_SAMPLES:
            logger.warning(
                f"Insufficient data for training engagement model ({len(samples)} samples) "
                f"for workspace {workspace_id} on {platform}"
            )
            return None

        details = await lookup_posts(self.post_directory, [s.post_id for s in samples])

        rows, labels = [], []
        for sample in samples:
            info = details.get(sample.post_id)
            when = (info.published_at if info else None) or sample.timestamp
            if info is not None:
                row = normalize_features(
                    when.hour, sunday_first_weekday(when), len(info.content), info.hashtag_count, info.media_count
                )
            else:
                # No content details: time features only, content features neutral
                row = normalize_features(when.hour, sunday_first_weekday(when), 0, 0, 0)[:2]
                row += [PLACEHOLDER_FEATURE] * 3
            rows.append(row)
            labels.append([sample.metrics.value(f) for f in ENGAGEMENT_OUTPUTS])

        try:
            weights = await asyncio.to_thread(
                fit_engagement_model, np.asarray(rows, dtype=float), np.asarray(labels, dtype=float)
            )
        except np.linalg.LinAlgError as e:
            logger.error(f"Failed to train engagement model for workspace {workspace_id}: {e}", exc_info=True)
            return None

        logger.info(f"Engagement model trained on {len(samples)} samples")
        return ModelState(trained_at=self.clock(), weights=weights, sample_count=len(samples))

    # ---- forecasts and trends --------------------------------------------

    async def forecast_reach(self, workspace_id: str, platform: str, days_ahead: int = 7) -> List[ReachForecast]:
        _check_days_ahead(days_ahead)
        logger.info(f"Forecasting reach for {days_ahead} days ahead")

        daily = await self._recent_daily(workspace_id, platform)
        if len(daily) < MIN_FORECAST_DAYS:
            logger.warning(
                f"Insufficient data for reach forecasting ({len(daily)} days) for workspace {workspace_id}"
            )
            return []
        return forecast_points(daily["reach"].tolist(), daily["impressions"].tolist(), days_ahead, self.clock())

    async def predict_trends(
        self,
        workspace_id: str,
        platform: str,
        metrics: Optional[List[str]] = None,
        days_ahead: int = 30,
    ) -> List[PerformanceTrend]:
        metrics = metrics or DEFAULT_TREND_METRICS
        unknown = [m for m in metrics if m not in SERIES_METRICS]
        if unknown:
            raise InvalidQueryError(f"Unsupported trend metrics: {', '.join(unknown)}")
        _check_days_ahead(days_ahead)
        logger.info(f"Predicting performance trends for {', '.join(metrics)}")

        daily = await self._recent_daily(workspace_id, platform)
        if len(daily) < MIN_SERIES_POINTS:
            logger.warning(f"Insufficient data for trend prediction ({len(daily)} days) for workspace {workspace_id}")
            return []

        today = self.clock()
        return [build_trend(metric, daily[metric].tolist(), days_ahead, today) for metric in metrics]

    async def detect_anomalies(
        self,
        workspace_id: str,
        platform: str,
        start: datetime,
        end: datetime,
        sensitivity: float = 2.5,
    ) -> List[Anomaly]:
        start, end = validate_range(start, end)
        if not 1 <= sensitivity <= 5:
            raise InvalidQueryError("sensitivity must be between 1 and 5")
        logger.info(f"Detecting anomalies with sensitivity {sensitivity}")

        daily = await self._daily(workspace_id, platform, start, end)
        return detect_series_anomalies(daily, sensitivity)

    async def generate_insights(
        self, workspace_id: str, platform: str, start: datetime, end: datetime
    ) -> List[Insight]:
        logger.info(f"Generating insights for workspace {workspace_id}")
        anomalies = await self.detect_anomalies(workspace_id, platform, start, end)
        trends = await self.predict_trends(workspace_id, platform)
        return build_insights(anomalies, trends)


def _check_days_ahead(days_ahead: int) -> None:
    if not 1 <= days_ahead <= 90:
        raise InvalidQueryError("daysAhead must be between 1 and 90")
