"""Modelos de salida del motor predictivo (efímeros, nunca persistidos)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Out(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RulStatus(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    GOOD = "GOOD"


class RemainingUsefulLife(_Out):
    days: int = Field(ge=0)
    status: RulStatus
    confidence: int = Field(ge=0, le=100)


class BatteryHealth(_Out):
    soh: Optional[float] = None
    cycle_count: Optional[int] = Field(default=None, alias="cycleCount")
    temperature: Optional[float] = None


class PredictionResult(_Out):
    battery_id: str = Field(alias="batteryId")
    remaining_useful_life: RemainingUsefulLife = Field(alias="remainingUsefulLife")
    battery_health: BatteryHealth = Field(alias="batteryHealth")
    next_maintenance_date: datetime = Field(alias="nextMaintenanceDate")
    timestamp: datetime
    # "model" | "heuristic"
    source: str = "heuristic"


class RecommendationPriority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RecommendationAction(str, Enum):
    REPLACE = "REPLACE"
    INSPECT = "INSPECT"
    COOLING = "COOLING"
    MONITOR = "MONITOR"
    CAPACITY_TEST = "CAPACITY_TEST"


class Recommendation(_Out):
    priority: RecommendationPriority
    action: RecommendationAction
    description: str
    deadline: datetime


class RecommendationReport(_Out):
    battery_id: str = Field(alias="batteryId")
    prediction: RemainingUsefulLife
    recommendations: List[Recommendation]
    timestamp: datetime


class StatusDistribution(_Out):
    critical: int = 0
    warning: int = 0
    good: int = 0


class CriticalBattery(_Out):
    battery_id: str = Field(alias="batteryId")
    remaining_days: int = Field(alias="remainingDays")
    next_maintenance_date: datetime = Field(alias="nextMaintenanceDate")


class FleetOverview(_Out):
    total_batteries: int = Field(alias="totalBatteries")
    average_rul: int = Field(alias="averageRUL")
    status_distribution: StatusDistribution = Field(alias="statusDistribution")
    maintenance_required: int = Field(alias="maintenanceRequired")
    critical_batteries: List[CriticalBattery] = Field(default_factory=list, alias="criticalBatteries")
    timestamp: datetime
