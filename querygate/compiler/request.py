"""
AggregationRequest -- the structured request a dashboard card, an alert or
any other caller sends instead of query text.
"""
from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, Field

AggregationType = Literal["count", "sum", "avg", "min", "max", "count_distinct", "none"]
TimeBucket = Literal["day", "week", "month", "year"]
FilterOperator = Literal["=", "!=", ">", "<", ">=", "<=", "contains"]

WILDCARD = "*"


class DimensionSpec(BaseModel):
    column: str = Field(..., min_length=1, description="Column to group by")
    time_bucket: TimeBucket | None = Field(None, description="day | week | month | year")


class MetricSpec(BaseModel):
    column: str = Field(..., min_length=1, description="Column to aggregate, or '*' with count")
    type: AggregationType = Field(..., description="count | sum | avg | min | max | count_distinct | none")
    label: str | None = Field(None, description="Result column name; defaults to '<type>_<column>'")

    @property
    def is_aggregate(self) -> bool:
        return self.type != "none"

    def output_label(self) -> str:
        """Result-column label callers key off (e.g. 'sum_amount', 'count_*')."""
        if self.label:
            return self.label
        if self.type == "none":
            return self.column
        return f"{self.type}_{self.column}"


class FilterSpec(BaseModel):
    column: str = Field(..., min_length=1)
    operator: FilterOperator = "="
    value: Any = None


class AggregationRequest(BaseModel):
    """Dimensions x metrics over one table, with optional filters."""

    connection_id: str = Field(..., min_length=1)
    table: str = Field(..., min_length=1)
    dimensions: list[Union[str, DimensionSpec]] = Field(default_factory=list, description="Group-by columns")
    # Empty metrics are reported by the orchestrator as a structured failure
    metrics: list[MetricSpec] = Field(default_factory=list, description="At least one metric")
    filters: list[FilterSpec] = Field(default_factory=list)
    limit: int | None = Field(None, ge=1, description="Maximum rows (clamped to the configured maximum)")

    def dimension_specs(self) -> list[DimensionSpec]:
        return [
            DimensionSpec(column=d) if isinstance(d, str) else d
            for d in self.dimensions
        ]
