"""
Read-only HTTP API over the tuning layer.

Exposes telemetry, monitor alerts, analysis results and optimization
history of a running system so external dashboards can poll them.

Run with:
    bt-tuner serve --preset deterministic_test --port 8000
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .health import engine_health_check, get_health_checker, monitor_health_check
from .metrics import get_metrics
from .version import __version__

logger = logging.getLogger(__name__)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class TreeSummary(BaseModel):
    """One monitored tree."""
    tree_id: str
    node_count: int
    depth: int
    total_executions: int
    success_rate: float
    failure_rate: float
    average_execution_time_ms: float
    optimizing: bool = False


class AlertModel(BaseModel):
    id: str
    type: str
    source: str
    severity: str
    message: str
    timestamp: float
    resolved: bool
    resolved_time: Optional[float] = None


class StatusResponse(BaseModel):
    status: str = "ok"
    service: str = "bt-tuner"
    version: str = __version__
    trees: List[str] = Field(default_factory=list)


# ============================================================================
# API Server
# ============================================================================

class TunerAPIServer:
    """
    FastAPI app bound to live tuning components.

    Any component may be None; its routes then answer 404 (or an empty
    list for collection routes).
    """

    def __init__(
        self,
        monitor=None,
        analyzer=None,
        engine=None,
        aggregator=None,
    ):
        self.monitor = monitor
        self.analyzer = analyzer
        self.engine = engine
        self.aggregator = aggregator

        self.health = get_health_checker()
        if monitor is not None:
            self.health.add_check("monitor", monitor_health_check(monitor))
        if engine is not None:
            self.health.add_check("optimizer", engine_health_check(engine))

        self.app = FastAPI(
            title="Behavior Tree Tuner API",
            description="Read-only telemetry, analysis and optimization queries",
            version=__version__,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET"],
            allow_headers=["*"],
        )
        self._register_routes()

    def _tree_ids(self) -> List[str]:
        ids: List[str] = []
        for source in (self.aggregator, self.monitor, self.engine):
            if source is None:
                continue
            for tree_id in source.tree_ids():
                if tree_id not in ids:
                    ids.append(tree_id)
        return ids

    def _telemetry(self, tree_id: str):
        telemetry = None
        if self.aggregator is not None:
            telemetry = self.aggregator.get(tree_id)
        if telemetry is None and self.monitor is not None:
            telemetry = self.monitor.telemetry(tree_id)
        if telemetry is None:
            raise HTTPException(status_code=404, detail=f"Unknown tree: {tree_id}")
        return telemetry

    def _require_analyzer(self):
        if self.analyzer is None:
            raise HTTPException(status_code=404, detail="Analyzer not attached")
        return self.analyzer

    def _register_routes(self):
        """Register all API routes."""

        @self.app.get("/", response_model=StatusResponse)
        async def root():
            return StatusResponse(trees=self._tree_ids())

        @self.app.get("/health")
        async def health():
            return self.health.run_all().to_dict()

        @self.app.get("/metrics")
        async def metrics():
            return get_metrics().summary()

        @self.app.get("/trees", response_model=List[TreeSummary])
        async def list_trees():
            out = []
            for tree_id in self._tree_ids():
                try:
                    t = self._telemetry(tree_id)
                except HTTPException:
                    continue
                out.append(TreeSummary(
                    tree_id=tree_id,
                    node_count=t.node_count,
                    depth=t.depth,
                    total_executions=t.total_executions,
                    success_rate=t.success_rate,
                    failure_rate=t.failure_rate,
                    average_execution_time_ms=t.average_execution_time_ms,
                    optimizing=self.engine is not None and self.engine.is_optimizing(tree_id),
                ))
            return out

        @self.app.get("/trees/{tree_id}/telemetry")
        async def tree_telemetry(tree_id: str):
            return self._telemetry(tree_id).to_dict()

        @self.app.get("/performance/history")
        async def performance_history(count: int = Query(50, ge=1, le=1000)):
            if self.monitor is None:
                return {"status": None, "history": []}
            return {
                "status": self.monitor.current_status().to_dict(),
                "history": [s.to_dict() for s in self.monitor.history(count)],
            }

        @self.app.get("/alerts", response_model=List[AlertModel])
        async def alerts(active_only: bool = Query(True)):
            if self.monitor is None:
                return []
            found = self.monitor.active_alerts() if active_only else self.monitor.all_alerts()
            return [AlertModel(**a.to_dict()) for a in found]

        @self.app.get("/analysis/{tree_id}")
        async def analysis(tree_id: str):
            result = self._require_analyzer().statistical_result(tree_id)
            if result is None:
                raise HTTPException(status_code=404, detail=f"No analysis for tree: {tree_id}")
            return result.to_dict()

        @self.app.get("/analysis/{tree_id}/regression")
        async def regression(tree_id: str):
            result = self._require_analyzer().regression_result(tree_id)
            if result is None:
                raise HTTPException(status_code=404, detail=f"No regression analysis for tree: {tree_id}")
            return result.to_dict()

        @self.app.get("/analysis/{tree_id}/recommendations")
        async def recommendations(tree_id: str):
            result = self._require_analyzer().recommendation(tree_id)
            if result is None:
                raise HTTPException(status_code=404, detail=f"No recommendations for tree: {tree_id}")
            return result.to_dict()

        @self.app.get("/analysis/{tree_id}/trend")
        async def trend(tree_id: str):
            result = self._require_analyzer().trend(tree_id)
            if result is None:
                raise HTTPException(status_code=404, detail=f"No trend for tree: {tree_id}")
            return result.to_dict()

        @self.app.get("/optimization/history")
        async def optimization_history():
            if self.engine is None:
                return []
            return [r.to_dict() for r in self.engine.optimization_history()]

        @self.app.get("/experiments")
        async def experiments() -> Dict:
            if self.engine is None:
                return {"active": [], "completed": []}
            return {
                "active": [s.to_dict() for s in self.engine.active_experiments()],
                "completed": [r.to_dict() for r in self.engine.experiment_results()],
            }


def create_app(monitor=None, analyzer=None, engine=None, aggregator=None) -> FastAPI:
    """Create the FastAPI application for the given components."""
    return TunerAPIServer(
        monitor=monitor,
        analyzer=analyzer,
        engine=engine,
        aggregator=aggregator,
    ).app
