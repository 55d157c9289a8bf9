from datetime import date

from pydantic import BaseModel


class TopRisingTerm(BaseModel):
    refresh_date: date
    dma_name: str
    dma_id: int
    term: str
    week: date
    score: int
    rank: int
    percent_gain: int


class InsertResponse(BaseModel):
    status: str = "inserted"


class ErrorResponse(BaseModel):
    detail: str
    query: str | None = None


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str = "1.0.0"
