# service/app.py
from __future__ import annotations

import logging
import os
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from recommender.config import AppConfig, load_config
from recommender.engine import PredictionEngine
from recommender.errors import RecommenderError
from recommender.event_store import EventStore
from recommender.factory import get_engine
from recommender.logger import get_logger
from recommender.schemas import PredictedResult, Query
from service.loader import ModelManager, ModelRegistryError
from service.middleware import RequestIDMiddleware, TraceStore, get_request_id

# ------------------------------------------------------------------
# Prometheus metrics (module level: registered once per process)
# ------------------------------------------------------------------
REQS = Counter("recommend_requests_total", "Total recommendation requests", ["status", "endpoint"])

# Buckets: 5ms .. 2.5s; store reads alone are bounded at 2 x 200ms
LAT = Histogram(
    "recommend_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)
ERRORS = Counter("recommend_errors_total", "Total errors by type", ["error_type", "endpoint"])
STRATEGY = Counter("recommend_strategy_total", "Predictions by scoring strategy", ["strategy"])
UPTIME = Gauge("service_uptime_seconds", "Service uptime in seconds")
MODEL_SWITCHES = Counter("model_switches_total", "Model hot-swap operations", ["to_version", "status"])
MODEL_VERSION_INFO = Gauge("model_version_info", "Active model version", ["model_name", "version", "git_sha"])

SERVICE_START_TIME = time.time()


def export_model_info(manager: ModelManager) -> None:
    """Publish the active model version as a labelled gauge (value 1)."""
    info = manager.describe_active()
    if info["model_version"] is None:
        return
    git_sha = info["meta"].get("version", {}).get("git_sha", "unknown")
    MODEL_VERSION_INFO.clear()
    MODEL_VERSION_INFO.labels(
        model_name=info["model_name"], version=info["model_version"], git_sha=git_sha[:8]
    ).set(1)


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[EventStore] = None,
    model_manager: Optional[ModelManager] = None,
) -> FastAPI:
    config = config or load_config()
    app_logger = get_logger("ecomm-recs", config.log_level)

    app = FastAPI(title="E-Commerce Recommendation API")
    app.add_middleware(RequestIDMiddleware)

    app.state.config = config
    app.state.engine = get_engine(config, store=store, engine_logger=app_logger)
    app.state.model_manager = model_manager or ModelManager(
        config.registry, config.model_version, model_name=config.model_name
    )
    app.state.traces = TraceStore()
    export_model_info(app.state.model_manager)

    # ------------------------------------------------------------------
    # API Endpoints
    # ------------------------------------------------------------------
    @app.get("/healthz")
    def healthz():
        manager: ModelManager = app.state.model_manager
        return {
            "status": "ok" if manager.active() else "no_model",
            "version": manager.current_version,
            "app_name": config.algorithm.app_name,
        }

    @app.post("/queries.json", response_model=PredictedResult)
    def queries(query: Query):
        """Return the top `num` items for `query.user`."""
        endpoint = "queries"
        start_time = time.time()
        request_id = get_request_id() or "unknown"

        active = app.state.model_manager.active()
        if active is None:
            REQS.labels(status="503", endpoint=endpoint).inc()
            raise HTTPException(status_code=503, detail="No model loaded")

        engine: PredictionEngine = app.state.engine
        try:
            strategy, result = engine.explain(active.model, query)
        except RecommenderError as e:
            latency = time.time() - start_time
            LAT.labels(endpoint=endpoint).observe(latency)
            REQS.labels(status="500", endpoint=endpoint).inc()
            ERRORS.labels(error_type=type(e).__name__, endpoint=endpoint).inc()
            app_logger.exception(
                f"[{request_id}] Recommendation error for user {query.user}",
                extra={"request_id": request_id, "model_version": active.version,
                       "error_type": type(e).__name__, "latency_ms": int(latency * 1000)},
            )
            raise HTTPException(status_code=500, detail=f"{type(e).__name__}: {e}")

        latency = time.time() - start_time
        LAT.labels(endpoint=endpoint).observe(latency)
        REQS.labels(status="200", endpoint=endpoint).inc()
        STRATEGY.labels(strategy=strategy.value).inc()

        provenance = {
            "request_id": request_id,
            "timestamp": int(start_time * 1000),
            "model_version": active.version,
            "git_sha": active.meta.get("version", {}).get("git_sha", "unknown"),
            "strategy": strategy.value,
            "user": query.user,
            "num": query.num,
            "num_items": len(result.item_scores),
            "latency_ms": int(latency * 1000),
        }
        app_logger.info(f"[{request_id}] Recommendation success for user {query.user}", extra=provenance)
        app.state.traces.put(request_id, provenance)
        return result

    @app.get("/trace/{request_id}")
    def trace(request_id: str):
        """Provenance trace of a recent request (last 1000 kept)."""
        trace_data = app.state.traces.get(request_id)
        if not trace_data:
            raise HTTPException(
                status_code=404,
                detail=f"Trace not found for request_id={request_id}. "
                       "Traces are kept for the last 1000 requests only.",
            )
        return {"request_id": request_id, "trace": trace_data}

    @app.get("/metrics")
    def metrics():
        UPTIME.set(time.time() - SERVICE_START_TIME)
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/switch")
    def switch(model: str):
        """Hot-swap the active model version (e.g. /switch?model=v0.2)."""
        if not model:
            raise HTTPException(status_code=400, detail="Model query parameter required")
        try:
            info = app.state.model_manager.switch(model)
        except (ModelRegistryError, FileNotFoundError) as exc:
            MODEL_SWITCHES.labels(to_version=model, status="not_found").inc()
            raise HTTPException(status_code=404, detail=str(exc))
        except RecommenderError as exc:
            MODEL_SWITCHES.labels(to_version=model, status="error").inc()
            app_logger.exception("Model switch failed")
            raise HTTPException(status_code=500, detail=str(exc))
        MODEL_SWITCHES.labels(to_version=model, status="success").inc()
        export_model_info(app.state.model_manager)
        return {"status": "ok", **info}

    return app


def main():
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "service.app:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
    )


if __name__ == "__main__":
    main()
