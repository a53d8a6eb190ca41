"""FastAPI server for Reelroute."""

from __future__ import annotations

import dataclasses
import os
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Header, Depends
from pydantic import BaseModel, Field

from reelroute import (
    BudgetExceededError,
    BudgetGovernor,
    CapabilityClass,
    DispatchEngine,
    InMemorySink,
    InvalidRequestError,
    MockBackend,
    NoEligibleProviderError,
    ProviderInvocationError,
    Quality,
    SQLiteSink,
    StaticHealthProbe,
    CostEntry,
    get_providers,
)
from reelroute.schemas import Priority


def _get_api_key() -> Optional[str]:
    return os.getenv("REELROUTE_API_KEY")


def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    api_key = _get_api_key()
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def build_engine() -> DispatchEngine:
    db_path = os.getenv("REELROUTE_DB_PATH")
    sink = SQLiteSink(db_path=db_path) if db_path else InMemorySink()
    providers = get_providers()
    return DispatchEngine(
        backend=MockBackend(providers),
        health_probe=StaticHealthProbe(),
        providers=providers,
        governor=BudgetGovernor(sink=sink),
    )


_engine: Optional[DispatchEngine] = None


def get_engine() -> DispatchEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


app = FastAPI(title="Reelroute API", version="0.3.0")


class PreauthorizeRequest(BaseModel):
    service: str = Field(..., min_length=1)
    estimated_cost: float = Field(..., ge=0)
    environment: Optional[str] = None


class RecordRequest(BaseModel):
    service: str = Field(..., min_length=1)
    cost: float = Field(..., ge=0)
    environment: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ResetRequest(BaseModel):
    environment: Optional[str] = None


class DispatchRequest(BaseModel):
    capability_class: CapabilityClass = CapabilityClass.VIDEO
    duration_units: int = Field(8, ge=1, le=3600)
    max_cost: float = Field(0.15, gt=0, le=100)
    priority: Priority = Priority.NORMAL
    quality: Quality = Quality.HIGH
    environment: Optional[str] = None
    topic: str = "general"
    include_audio: bool = False
    generate_subtitles: bool = False
    allow_fallback: bool = True
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/providers/health", dependencies=[Depends(_require_api_key)])
def providers_health(engine: DispatchEngine = Depends(get_engine)) -> Dict[str, Any]:
    providers = {}
    for provider in engine.providers:
        record = engine.health_cache.get_health(provider.provider_id)
        providers[provider.provider_id] = {
            "capability_class": provider.capability_class.value,
            "rank": provider.rank.value,
            "healthy": record.healthy,
            "last_checked_at": record.last_checked_at.isoformat(),
            "cache_expires_at": record.cache_expires_at.isoformat(),
            "error_message": record.error_message,
        }
    return {"providers": providers}


@app.post("/budget/preauthorize", dependencies=[Depends(_require_api_key)])
def preauthorize(req: PreauthorizeRequest, engine: DispatchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        decision = engine.governor.preauthorize(
            req.service, req.estimated_cost, environment=req.environment
        )
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return dataclasses.asdict(decision)


@app.post("/budget/record", dependencies=[Depends(_require_api_key)])
def record_cost(req: RecordRequest, engine: DispatchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        result = engine.governor.record(
            CostEntry(
                service=req.service,
                cost=req.cost,
                environment=req.environment,
                metadata=req.metadata,
            )
        )
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "service": result.entry.service,
        "cost": result.entry.cost,
        "environment": result.entry.environment,
        "timestamp": result.entry.timestamp_iso,
        "status": result.status.value,
        "daily_spend": result.daily_spend,
        "service_spend": result.service_spend,
        "alert": dataclasses.asdict(result.alert) if result.alert else None,
        "recommendations": [dataclasses.asdict(r) for r in result.recommendations],
    }


@app.get("/budget/history/{day}", dependencies=[Depends(_require_api_key)])
def budget_history(
    day: str,
    environment: Optional[str] = None,
    engine: DispatchEngine = Depends(get_engine),
) -> Dict[str, Any]:
    archived = engine.governor.get_history(day, environment=environment)
    persisted = engine.governor.load_historical_data(day, environment=environment)
    if archived is None and not persisted["total"]:
        raise HTTPException(status_code=404, detail="No history for date")
    return {"archived": archived, "persisted": persisted}


@app.get("/budget/{environment}", dependencies=[Depends(_require_api_key)])
def budget_summary(environment: str, engine: DispatchEngine = Depends(get_engine)) -> Dict[str, Any]:
    return engine.governor.get_summary(environment)


@app.post("/budget/reset", dependencies=[Depends(_require_api_key)])
def budget_reset(req: ResetRequest, engine: DispatchEngine = Depends(get_engine)) -> Dict[str, Any]:
    archived = engine.governor.reset_daily(environment=req.environment)
    return {"archived": archived}


@app.post("/dispatch", dependencies=[Depends(_require_api_key)])
def dispatch(req: DispatchRequest, engine: DispatchEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        result = engine.dispatch(req.model_dump(exclude_none=True))
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BudgetExceededError as exc:
        raise HTTPException(status_code=402, detail=str(exc)) from exc
    except NoEligibleProviderError as exc:
        raise HTTPException(
            status_code=503,
            detail={"message": str(exc), "skip_reasons": exc.skip_reasons},
        ) from exc
    except ProviderInvocationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return {
        "dispatch_id": result.dispatch_id,
        "request_id": result.request.request_id,
        "provider_id": result.provider_id,
        "selection_reason": result.selection.reason.value,
        "estimated_cost": result.selection.estimated_cost,
        "cost": result.cost,
        "duration_actual": result.invocation.duration_actual,
        "attempt": result.attempt,
        "degraded": result.degraded,
        "duration_units": result.request.duration_units,
        "quality": result.request.quality.value,
        "budget_status": result.budget.status.value,
        "daily_spend": result.budget.daily_spend,
        "output": result.invocation.output,
    }
