import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_LOOKBACK_MINUTES = 366 * 24 * 60


class LokiQuery(BaseModel):
    selector: str  # LogQL, e.g. '{level="INFO"} |= `DemoService.log invoked`'
    start: datetime.datetime
    end: datetime.datetime

    @field_validator("start", "end")
    @classmethod
    def _utc_seconds(cls, value: datetime.datetime) -> datetime.datetime:
        # Naive datetimes are taken to be UTC already.
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc).replace(microsecond=0)

    @model_validator(mode="after")
    def _ordered(self) -> "LokiQuery":
        if self.start > self.end:
            raise ValueError(f"start {self.start.isoformat()} is after end {self.end.isoformat()}")
        return self


class LogEntry(BaseModel):
    timestamp: datetime.datetime
    line: str


class LogStream(BaseModel):
    labels: dict[str, str] = Field(default_factory=dict)
    entries: list[LogEntry] = Field(default_factory=list)


class RangeQueryResult(BaseModel):
    streams: list[LogStream] = Field(default_factory=list)

    def lines(self) -> list[str]:
        """All lines, stream by stream, in the order Loki returned them."""
        return [entry.line for stream in self.streams for entry in stream.entries]


class VerificationOutcome(BaseModel):
    matched: bool
    matched_line: Optional[str] = None
    total_lines_scanned: int
    attempts: int = 1  # HTTP attempts the successful query needed


class VerifyRequest(BaseModel):
    # Either a ready LogQL selector, or labels plus line filters to build one from.
    selector: Optional[str] = None              # e.g. '{level="INFO"}'
    labels: Optional[dict[str, str]] = None     # e.g. {"level": "INFO"}
    filters: list[str] = Field(default_factory=list)
    substring: str                              # e.g. "DemoService.log invoked"
    lookback_minutes: Optional[int] = Field(default=None, ge=0, le=MAX_LOOKBACK_MINUTES)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    retry_delay_seconds: Optional[float] = Field(default=None, ge=0)
    # Overall budget for the call; when it runs out the endpoint answers 504.
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _one_selector_source(self) -> "VerifyRequest":
        if (self.selector is None) == (self.labels is None):
            raise ValueError("give exactly one of selector or labels")
        if self.filters and self.labels is None:
            raise ValueError("filters can only be combined with labels")
        return self


class VerifyResponse(BaseModel):
    selector: str
    start: str          # RFC3339, as sent to Loki
    end: str
    outcome: VerificationOutcome
