"""
Tests for trend fitting, reach forecasts, anomaly detection, insight rules
and the per-platform engagement model.
"""

from datetime import timedelta

import numpy as np
import pandas as pd
import pytest
from pydantic import ValidationError

from socialpulse.schemas.predictive import (
    Anomaly,
    AnomalyType,
    EngagementFeatures,
    InsightType,
    PerformanceTrend,
    Severity,
    TrendDirection,
    TrendFit,
)
from socialpulse.services.predictive_service import (
    PredictiveAnalyticsService,
    build_insights,
    build_trend,
    detect_series_anomalies,
    fit_trend,
    forecast_points,
    normalize_features,
    sort_anomalies,
    sunday_first_weekday,
    trend_confidence,
    trend_direction,
)
from socialpulse.utils.errors import InvalidQueryError
from tests.conftest import FakeClock, InMemorySampleStore, make_sample, utc

TODAY = utc(2024, 3, 1, 15)


def daily_frame(metric, values, first_day=utc(2024, 1, 1)):
    dates = [(first_day + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(len(values))]
    return pd.DataFrame({metric: [float(v) for v in values]}, index=dates)


def anomaly(date, severity, kind=AnomalyType.SPIKE, metric="reach", value=200.0, expected=100.0):
    return Anomaly(
        date=date,
        metric=metric,
        value=value,
        expected_value=expected,
        deviation=abs(value - expected),
        severity=severity,
        type=kind,
    )


def trend(metric, direction, confidence):
    return PerformanceTrend(
        metric=metric,
        trend=direction,
        change_rate=1.0,
        confidence=confidence,
        fit=TrendFit(metric=metric, slope=1.0, intercept=0.0, r_squared=confidence),
    )


class TestTrendFit:
    """Tests for least-squares trend fitting."""

    def test_exact_line(self):
        fit = fit_trend([1, 3, 5, 7])

        assert fit.slope == pytest.approx(2.0)
        assert fit.intercept == pytest.approx(1.0)
        assert fit.r_squared == pytest.approx(1.0)

    def test_constant_series_is_stable_and_exact(self):
        fit = fit_trend([5, 5, 5, 5, 5])

        assert fit.slope == 0.0
        assert fit.r_squared == 1.0
        assert trend_direction(fit.slope, [5] * 5) == TrendDirection.STABLE

    def test_direction(self):
        assert trend_direction(2.0, [10, 12, 14]) == TrendDirection.INCREASING
        assert trend_direction(-2.0, [14, 12, 10]) == TrendDirection.DECREASING
        # under 1% of the mean
        assert trend_direction(0.5, [1000, 1000, 1001]) == TrendDirection.STABLE

    @pytest.mark.parametrize("r_squared,expected", [(0.1, 0.5), (0.8, 0.8), (1.0, 0.95)])
    def test_confidence_is_clamped(self, r_squared, expected):
        assert trend_confidence(r_squared) == expected

    def test_build_trend_projects_forward(self):
        result = build_trend("reach", [10, 20, 30, 40], 3, TODAY)

        assert result.trend == TrendDirection.INCREASING
        assert result.prediction == [50, 60, 70]
        assert result.dates == ["2024-03-02", "2024-03-03", "2024-03-04"]
        assert result.change_rate == 10.0
        assert result.confidence == 0.95

    def test_predictions_are_never_negative(self):
        result = build_trend("reach", [30, 20, 10, 0], 3, TODAY)

        assert result.prediction == [0, 0, 0]


class TestForecast:
    def test_needs_thirty_days(self):
        assert forecast_points([100] * 29, [100] * 29, 7, TODAY) == []

    def test_linear_history(self):
        reach = [100 + 10 * i for i in range(30)]
        impressions = [2 * r for r in reach]

        points = forecast_points(reach, impressions, 7, TODAY)

        margin = 1.96 * float(np.std(reach))
        first = points[0]
        assert len(points) == 7
        assert first.date == "2024-03-02"
        assert first.predicted_reach == 400
        assert first.predicted_impressions == 800
        assert first.lower_bound == int(round(400 - margin))
        assert first.upper_bound == int(round(400 + margin))
        assert first.confidence == 0.95
        assert points[-1].date == "2024-03-08"

    def test_lower_bound_is_floored(self):
        reach = [0, 500] * 15

        points = forecast_points(reach, reach, 1, TODAY)

        assert points[0].lower_bound == 0


class TestAnomalies:
    """Nine days at 100 and one at 130: mean 103, stddev 9, deviation 27."""

    @pytest.fixture
    def daily(self):
        return daily_frame("reach", [100] * 9 + [130])

    @pytest.mark.parametrize(
        "sensitivity,severity",
        [(2.0, Severity.LOW), (1.5, Severity.MEDIUM), (1.0, Severity.HIGH)],
    )
    def test_severity_by_sensitivity(self, daily, sensitivity, severity):
        found = detect_series_anomalies(daily, sensitivity)

        assert len(found) == 1
        assert found[0].severity == severity
        assert found[0].type == AnomalyType.SPIKE
        assert found[0].expected_value == 103
        assert found[0].deviation == 27
        assert found[0].date == "2024-01-10"

    def test_nothing_outside_threshold(self, daily):
        assert detect_series_anomalies(daily, 3.0) == []

    def test_drop(self):
        found = detect_series_anomalies(daily_frame("engagement", [100] * 9 + [70]), 1.0)

        assert found[0].type == AnomalyType.DROP
        assert found[0].metric == "engagement"

    def test_short_series_is_skipped(self):
        assert detect_series_anomalies(daily_frame("reach", [100, 100, 100, 100, 100, 900]), 1.0) == []

    def test_flat_series_has_no_anomalies(self):
        assert detect_series_anomalies(daily_frame("reach", [0] * 10), 1.0) == []

    def test_sorted_by_severity_then_recency(self):
        found = sort_anomalies(
            [
                anomaly("2024-01-01", Severity.HIGH),
                anomaly("2024-01-05", Severity.LOW),
                anomaly("2024-01-03", Severity.HIGH),
                anomaly("2024-01-04", Severity.MEDIUM),
            ]
        )

        assert [(a.severity, a.date) for a in found] == [
            (Severity.HIGH, "2024-01-03"),
            (Severity.HIGH, "2024-01-01"),
            (Severity.MEDIUM, "2024-01-04"),
            (Severity.LOW, "2024-01-05"),
        ]


class TestInsights:
    """Tests for the insight rules."""

    def test_high_spike_is_an_opportunity(self):
        insights = build_insights([anomaly("2024-01-10", Severity.HIGH)], [])

        assert len(insights) == 1
        assert insights[0].type == InsightType.OPPORTUNITY
        assert insights[0].impact == Severity.HIGH
        assert "100% above normal" in insights[0].description
        assert insights[0].data["expectedValue"] == 100.0

    def test_high_drop_is_a_warning(self):
        insights = build_insights(
            [anomaly("2024-01-10", Severity.HIGH, kind=AnomalyType.DROP, value=50.0)], []
        )

        assert insights[0].type == InsightType.WARNING
        assert "50% below normal" in insights[0].description

    def test_lower_severities_are_ignored(self):
        found = [anomaly("2024-01-10", Severity.MEDIUM), anomaly("2024-01-11", Severity.LOW)]

        assert build_insights(found, []) == []

    def test_only_top_three_anomalies_are_considered(self):
        found = [anomaly(f"2024-01-{d:02d}", Severity.HIGH) for d in range(1, 6)]

        insights = build_insights(found, [])

        assert len(insights) == 3
        assert "2024-01-05" in insights[0].description

    def test_confident_trends(self):
        insights = build_insights(
            [],
            [
                trend("followers", TrendDirection.INCREASING, 0.9),
                trend("reach", TrendDirection.DECREASING, 0.8),
                trend("engagement", TrendDirection.INCREASING, 0.7),
                trend("likes", TrendDirection.STABLE, 0.95),
            ],
        )

        assert [(i.type, i.impact) for i in insights] == [
            (InsightType.OPPORTUNITY, Severity.MEDIUM),
            (InsightType.WARNING, Severity.MEDIUM),
        ]
        assert insights[0].data["metric"] == "followers"

    def test_capped_at_five(self):
        found = [anomaly(f"2024-01-{d:02d}", Severity.HIGH) for d in range(1, 4)]
        trends = [trend(m, TrendDirection.INCREASING, 0.9) for m in ("likes", "comments", "shares", "saves")]

        assert len(build_insights(found, trends)) == 5


class TestFeatures:
    def test_normalization_is_capped(self):
        assert normalize_features(23, 6, 1000, 60, 20) == [1, 1, 1, 1, 1]
        assert normalize_features(0, 0, 250, 15, 5) == [0, 0, 0.5, 0.5, 0.5]

    def test_sunday_is_day_zero(self):
        assert sunday_first_weekday(utc(2024, 3, 3)) == 0
        assert sunday_first_weekday(utc(2024, 3, 4)) == 1
        assert sunday_first_weekday(utc(2024, 3, 9)) == 6

    def test_hour_out_of_range_is_rejected(self):
        with pytest.raises(ValidationError):
            EngagementFeatures(time_of_day=24, day_of_week=1, content_length=10, hashtag_count=0, media_count=0)


def post_history(count, start=utc(2024, 1, 1)):
    # every 25 hours so hour of day and weekday both vary
    return [
        make_sample(start + timedelta(hours=25 * i), post_id=f"p{i}", likes=100, comments=10, shares=5)
        for i in range(count)
    ]


FEATURES = EngagementFeatures(time_of_day=14, day_of_week=3, content_length=250, hashtag_count=15, media_count=5)


class TestEngagementModel:
    """Tests for training, prediction and the retrain interval."""

    async def test_not_enough_history_returns_zeros(self):
        service = PredictiveAnalyticsService(InMemorySampleStore(post_history(49)))

        result = await service.predict_engagement("ws1", "instagram", FEATURES)

        assert result.predicted_engagement == 0
        assert result.confidence == 0.0
        assert result.factors == FEATURES

    async def test_constant_history_predicts_constant(self):
        clock = FakeClock(utc(2024, 4, 1))
        service = PredictiveAnalyticsService(InMemorySampleStore(post_history(60)), clock=clock)

        result = await service.predict_engagement("ws1", "instagram", FEATURES)

        assert result.predicted_likes == 100
        assert result.predicted_comments == 10
        assert result.predicted_shares == 5
        assert result.predicted_engagement == 115
        assert result.confidence == 0.75

    async def test_model_is_reused_within_a_day(self):
        clock = FakeClock(utc(2024, 4, 1))
        store = InMemorySampleStore(post_history(60))
        service = PredictiveAnalyticsService(store, clock=clock)

        await service.predict_engagement("ws1", "instagram", FEATURES)
        trained_at = service.models[("ws1", "instagram")].trained_at
        calls = store.find_calls

        clock.advance(timedelta(hours=23))
        await service.predict_engagement("ws1", "instagram", FEATURES)
        assert store.find_calls == calls
        assert service.models[("ws1", "instagram")].trained_at == trained_at

        clock.advance(timedelta(hours=2))
        await service.predict_engagement("ws1", "instagram", FEATURES)
        assert store.find_calls == calls + 1
        assert service.models[("ws1", "instagram")].trained_at == utc(2024, 4, 2, 1)

    async def test_models_are_per_platform(self):
        service = PredictiveAnalyticsService(InMemorySampleStore(post_history(60)), clock=FakeClock(utc(2024, 4, 1)))

        twitter = await service.predict_engagement("ws1", "twitter", FEATURES)

        assert twitter.predicted_engagement == 0
        assert ("ws1", "twitter") not in service.models


def reach_history(days, now):
    return [
        make_sample(now - timedelta(days=k), post_id=f"p{k}", reach=1000 + 100 * (days - k), impressions=1500)
        for k in range(days)
    ]


class TestServiceWindows:
    """Service-level forecasts, trends and anomaly detection."""

    async def test_forecast_needs_thirty_days(self):
        service = PredictiveAnalyticsService(InMemorySampleStore(reach_history(20, TODAY)), clock=lambda: TODAY)

        assert await service.forecast_reach("ws1", "instagram", 7) == []

    async def test_forecast_with_enough_history(self):
        service = PredictiveAnalyticsService(InMemorySampleStore(reach_history(35, TODAY)), clock=lambda: TODAY)

        points = await service.forecast_reach("ws1", "instagram", 7)

        assert len(points) == 7
        assert points[0].date == "2024-03-02"
        assert points[-1].predicted_reach > points[0].predicted_reach
        assert points[0].predicted_impressions == 1500

    async def test_trends_need_seven_days(self):
        service = PredictiveAnalyticsService(InMemorySampleStore(reach_history(6, TODAY)), clock=lambda: TODAY)

        assert await service.predict_trends("ws1", "instagram", ["reach"], 7) == []

    async def test_trends_for_requested_metrics(self):
        service = PredictiveAnalyticsService(InMemorySampleStore(reach_history(10, TODAY)), clock=lambda: TODAY)

        trends = await service.predict_trends("ws1", "instagram", ["reach", "impressions"], 5)

        assert [t.metric for t in trends] == ["reach", "impressions"]
        assert trends[0].trend == TrendDirection.INCREASING
        assert trends[1].trend == TrendDirection.STABLE
        assert len(trends[0].prediction) == 5

    @pytest.mark.parametrize("metrics,days_ahead", [(["virality"], 30), (["reach"], 0), (["reach"], 91)])
    async def test_invalid_trend_arguments(self, metrics, days_ahead):
        service = PredictiveAnalyticsService(InMemorySampleStore(), clock=lambda: TODAY)

        with pytest.raises(InvalidQueryError):
            await service.predict_trends("ws1", "instagram", metrics, days_ahead)

    @pytest.mark.parametrize("sensitivity", [0.5, 6])
    async def test_invalid_sensitivity(self, sensitivity):
        service = PredictiveAnalyticsService(InMemorySampleStore(), clock=lambda: TODAY)

        with pytest.raises(InvalidQueryError):
            await service.detect_anomalies("ws1", "instagram", utc(2024, 1, 1), utc(2024, 1, 31), sensitivity)

    async def test_detect_anomalies_over_window(self):
        samples = [
            make_sample(utc(2024, 1, d, 12), post_id=f"p{d}", reach=130 if d == 10 else 100) for d in range(1, 11)
        ]
        service = PredictiveAnalyticsService(InMemorySampleStore(samples), clock=lambda: TODAY)

        found = await service.detect_anomalies("ws1", "instagram", utc(2024, 1, 1), utc(2024, 1, 31), 1.0)

        assert [(a.metric, a.date, a.severity) for a in found] == [("reach", "2024-01-10", Severity.HIGH)]

    async def test_insights_from_a_large_spike(self):
        now = utc(2024, 1, 31)
        samples = [
            make_sample(utc(2024, 1, d, 12), post_id=f"p{d}", reach=1000 if d == 30 else 100) for d in range(1, 31)
        ]
        service = PredictiveAnalyticsService(InMemorySampleStore(samples), clock=lambda: now)

        insights = await service.generate_insights("ws1", "instagram", utc(2024, 1, 1), now)

        spikes = [i for i in insights if i.type == InsightType.OPPORTUNITY and "reach" in i.title]
        assert spikes
        assert "2024-01-30" in spikes[0].description
