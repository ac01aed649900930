from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PredictiveModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnomalyType(str, Enum):
    SPIKE = "spike"
    DROP = "drop"


class InsightType(str, Enum):
    OPPORTUNITY = "opportunity"
    WARNING = "warning"


class TrendFit(PredictiveModel):
    metric: str
    slope: float
    intercept: float
    r_squared: float


class PerformanceTrend(PredictiveModel):
    metric: str
    trend: TrendDirection
    change_rate: float
    prediction: List[int] = []
    dates: List[str] = []
    confidence: float
    fit: TrendFit


class Anomaly(PredictiveModel):
    date: str
    metric: str
    value: float
    expected_value: float
    deviation: float
    severity: Severity
    type: AnomalyType


class ReachForecast(PredictiveModel):
    date: str
    predicted_reach: int
    predicted_impressions: int
    lower_bound: int
    upper_bound: int
    confidence: float


class EngagementFeatures(PredictiveModel):
    time_of_day: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)
    content_length: int = Field(ge=0)
    hashtag_count: int = Field(ge=0)
    media_count: int = Field(ge=0)


class EngagementPrediction(PredictiveModel):
    predicted_engagement: int = 0
    predicted_likes: int = 0
    predicted_comments: int = 0
    predicted_shares: int = 0
    confidence: float = 0.0
    factors: EngagementFeatures


class ModelState(PredictiveModel):
    """Fitted regression for one (workspace, platform)."""

    trained_at: datetime
    # (5 features + bias) x (likes, comments, shares, saves)
    weights: List[List[float]]
    sample_count: int = 0


class Insight(PredictiveModel):
    type: InsightType
    title: str
    description: str
    impact: Severity
    actionable: bool = True
    suggested_action: Optional[str] = None
    data: Optional[Any] = None
