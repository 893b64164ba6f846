from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class WireModel(BaseModel):
    """Immutable result data; serialized with the camelCase names the client expects."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ParseIssue(WireModel):
    row: Optional[int] = None
    column: Optional[str] = None
    issue: str
    value: Optional[str] = None
    action: str


class ComparisonRule(WireModel):
    name: str
    column1: str
    column2: str

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not str(data.get("name") or "").strip():
            data = {**data, "name": f"{data.get('column1')} = {data.get('column2')}"}
        return data

    @field_validator("column1", "column2")
    @classmethod
    def _column_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("column name must not be blank")
        return value


class Match(WireModel):
    first_row_index: int = Field(alias="file1Row")
    second_row_index: int = Field(alias="file2Row")
    rule_name: str = Field(alias="matchedOn")
    column1: str
    column2: str
    normalized_value: str = Field(alias="value")
    first_row_data: Dict[str, Optional[str]] = Field(alias="file1Data")
    second_row_data: Dict[str, Optional[str]] = Field(alias="file2Data")


class UnmatchedRecord(WireModel):
    row_index: int = Field(alias="rowIndex")
    data: Dict[str, Optional[str]]


class MatchStatistics(WireModel):
    first_total: int = Field(alias="file1TotalRows")
    second_total: int = Field(alias="file2TotalRows")
    match_count: int = Field(alias="matchesFound")
    unmatched_count: int = Field(alias="missingInFile1")
    match_rate_percent: float = Field(alias="matchRate")


class ReconciliationResult(WireModel):
    matches: List[Match] = Field(default_factory=list)
    unmatched: List[UnmatchedRecord] = Field(default_factory=list, alias="missingInFile1")
    statistics: MatchStatistics
    first_header: List[str] = Field(default_factory=list, alias="file1Headers")
    second_header: List[str] = Field(default_factory=list, alias="file2Headers")


class CompareResponse(ReconciliationResult):
    warnings: Dict[str, List[ParseIssue]] = Field(default_factory=dict)


class TablePreview(WireModel):
    header: List[str] = Field(alias="headers")
    sample_rows: List[Dict[str, Optional[str]]] = Field(alias="sampleRows")
    total_rows: int = Field(alias="totalRows")


# Request bodies

class CompareRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file1_data: Optional[str] = Field(default=None, alias="file1Data")
    file2_data: Optional[str] = Field(default=None, alias="file2Data")
    comparison_rules: Optional[List[Any]] = Field(default=None, alias="comparisonRules")


class PreviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    csv_data: Optional[str] = Field(default=None, alias="csvData")
    max_rows: Optional[int] = Field(default=None, ge=0, alias="maxRows")


class ExportRequest(BaseModel):
    data: Optional[List[Dict[str, Any]]] = None
    headers: Optional[List[str]] = None
    filename: Optional[str] = None


class UploadedFile(BaseModel):
    name: str
    size: int
    encoding: str
    data: str


class UploadResponse(BaseModel):
    success: bool = True
    files: Dict[str, UploadedFile]


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str
