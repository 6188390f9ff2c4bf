"""JSON envelopes shared by the orchestrator, the search engine and the API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class OperationResult(ApiModel):
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls, **kwargs):
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs):
        return cls(success=False, error=error, **kwargs)


class SearchResultItem(ApiModel):
    site_root: str
    site_name: str
    path: str
    title: str
    snippet: str
    relevance_score: float


class SearchResponse(OperationResult):
    total_count: int = 0
    items: List[SearchResultItem] = []


class TotalStatistics(ApiModel):
    sites: int
    pages: int
    lemmas: int
    indexing: bool


class DetailedStatisticsItem(ApiModel):
    url: str
    name: str
    status: str
    status_time: int
    error: Optional[str] = None
    pages: int
    lemmas: int


class StatisticsData(ApiModel):
    total: TotalStatistics
    detailed: List[DetailedStatisticsItem]


class StatisticsResponse(OperationResult):
    statistics: Optional[StatisticsData] = None
