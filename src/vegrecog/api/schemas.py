"""Pydantic request/response schemas for the VegRecog API."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from vegrecog.core.categories import Category, display_name

if TYPE_CHECKING:
    from vegrecog.core.repository import RecognitionRecord
    from vegrecog.core.types import (
        ContextAnalysis,
        DetectedObject,
        ModeDecision,
        Prediction,
        UnknownVerdict,
    )


class PredictionOut(BaseModel):
    """One category score."""

    category: Category
    display_name: str
    confidence: int = Field(ge=0, le=100, description="Confidence in percent")

    @classmethod
    def from_domain(cls, prediction: Prediction) -> PredictionOut:
        return cls(
            category=prediction.category,
            display_name=display_name(prediction.category),
            confidence=prediction.confidence,
        )


class BoundsOut(BaseModel):
    """Pixel bounds of the zone an object was first seen in."""

    left: int
    top: int
    width: int
    height: int


class ObjectOut(BaseModel):
    """A detected object."""

    category: Category
    display_name: str
    confidence: int = Field(ge=0, le=100)
    detection_method: str
    origin_zones: list[str]
    is_reliable: bool
    is_unknown: bool
    uncertainty_score: int | None = None
    bounds: BoundsOut | None = None

    @classmethod
    def from_domain(cls, obj: DetectedObject) -> ObjectOut:
        bounds = None
        if obj.bounds is not None:
            bounds = BoundsOut(
                left=obj.bounds.left,
                top=obj.bounds.top,
                width=obj.bounds.width,
                height=obj.bounds.height,
            )
        return cls(
            category=obj.category,
            display_name=display_name(obj.category),
            confidence=obj.confidence,
            detection_method=obj.method.value,
            origin_zones=list(obj.origin_zones),
            is_reliable=obj.is_reliable,
            is_unknown=obj.is_unknown,
            uncertainty_score=obj.verdict.uncertainty_score if obj.verdict is not None else None,
            bounds=bounds,
        )


class ContextOut(BaseModel):
    """Multi-object context analysis."""

    is_likely_multi_object: bool
    score: int
    max_score: int
    confidence_percent: int
    indicators: dict[str, bool]

    @classmethod
    def from_domain(cls, context: ContextAnalysis) -> ContextOut:
        return cls(
            is_likely_multi_object=context.is_likely_multi_object,
            score=context.score,
            max_score=context.max_score,
            confidence_percent=context.confidence_percent,
            indicators=dict(context.indicators),
        )


class VerdictOut(BaseModel):
    """Unknown-object verdict for a single-object result."""

    is_unknown: bool
    uncertainty_score: int = Field(ge=0, le=4)
    best_guess: PredictionOut | None = None

    @classmethod
    def from_domain(cls, verdict: UnknownVerdict) -> VerdictOut:
        return cls(
            is_unknown=verdict.is_unknown,
            uncertainty_score=verdict.uncertainty_score,
            best_guess=PredictionOut.from_domain(verdict.best_guess) if verdict.best_guess is not None else None,
        )


class DecisionOut(BaseModel):
    """How the processing mode was chosen."""

    mode: str
    score: int
    max_score: int
    triggered_criteria: dict[str, bool]
    context: ContextOut | None = None
    fallback: bool
    reason: str | None = None

    @classmethod
    def from_domain(cls, decision: ModeDecision) -> DecisionOut:
        return cls(
            mode=decision.mode.value,
            score=decision.score,
            max_score=decision.max_score,
            triggered_criteria=dict(decision.triggered_criteria),
            context=ContextOut.from_domain(decision.context) if decision.context is not None else None,
            fallback=decision.fallback,
            reason=decision.reason,
        )


class SummaryOut(BaseModel):
    total_objects: int
    unique_categories: int
    overall_confidence: int = Field(ge=0, le=100)


class RecognizeResponse(BaseModel):
    """Response for the recognition endpoint."""

    id: str
    caller_id: str
    created_at: datetime
    mode: str
    objects: list[ObjectOut]
    alternatives: list[PredictionOut]
    verdict: VerdictOut | None = None
    decision: DecisionOut
    summary: SummaryOut
    fallback: bool
    fallback_reason: str | None = None
    processing_ms: int

    @classmethod
    def from_record(cls, record: RecognitionRecord) -> RecognizeResponse:
        result = record.result
        return cls(
            id=record.id,
            caller_id=result.caller_id,
            created_at=record.created_at,
            mode=result.mode.value,
            objects=[ObjectOut.from_domain(obj) for obj in result.objects],
            alternatives=[PredictionOut.from_domain(p) for p in result.alternatives],
            verdict=VerdictOut.from_domain(result.verdict) if result.verdict is not None else None,
            decision=DecisionOut.from_domain(result.decision),
            summary=SummaryOut(
                total_objects=result.summary.total_objects,
                unique_categories=result.summary.unique_categories,
                overall_confidence=result.summary.overall_confidence,
            ),
            fallback=result.fallback,
            fallback_reason=result.fallback_reason,
            processing_ms=result.processing_ms,
        )


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class HistoryResponse(BaseModel):
    """A page of a caller's past recognitions, newest first."""

    recognitions: list[RecognizeResponse]
    pagination: Pagination


class CategoryStatsOut(BaseModel):
    category: Category
    display_name: str
    count: int
    average_confidence: float
    last_recognition: datetime


class StatsResponse(BaseModel):
    """Aggregate recognition statistics."""

    total_recognitions: int
    average_processing_ms: float
    categories: list[CategoryStatsOut]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    outstanding_artifacts: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    labels: list[Category]


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
