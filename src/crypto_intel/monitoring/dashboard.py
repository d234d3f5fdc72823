"""
Dashboard for the crypto intelligence views.

Provides a Flask application with REST endpoints and SSE streaming.
Rendering happens in the browser; every endpoint serves data the core
has already computed.

The Flask app runs in its own thread. Anything that touches the core is
dispatched to the main event loop with run_coroutine_threadsafe().
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Generator, List, Optional

from flask import Flask, Response, jsonify, request

from crypto_intel.ingestion.models import COIN_WIRE_FIELDS

from .error_log import DEFAULT_RETRIEVAL_LIMIT

if TYPE_CHECKING:
    from crypto_intel.core.background_tasks import RefreshScheduler
    from crypto_intel.core.pipeline import RefreshPipeline
    from crypto_intel.core.score_service import ScoringEngine
    from crypto_intel.ingestion import MarketDataSource
    from crypto_intel.monitoring.self_healing import SelfHealingMonitor

logger = logging.getLogger(__name__)

MAX_ERROR_LIMIT = 500

# Events buffered per SSE subscriber; newer events are dropped once full
SSE_QUEUE_SIZE = 100


class Dashboard:
    """
    Dashboard web application.

    Endpoints:
        GET  /                   - HTML shell
        GET  /health             - Live health probe
        GET  /api/views          - Current dashboard views
        GET  /api/status         - Status line and refresh countdown
        GET  /api/history        - Market history snapshots
        GET  /api/errors         - Recent error log entries (?limit=N)
        GET  /api/system         - Model info and monitor state
        GET  /api/influencers    - Influencer feed
        GET  /api/stream         - SSE event stream
        POST /api/sort           - Select sort field ({"field": ...})
        POST /api/filter         - Select filter ({"filter": ...})
        POST /api/retrain        - Retrain models
        POST /api/diagnostics    - Run diagnostics
        POST /api/optimize       - Run feature optimization
        POST /api/refresh        - Refresh now
        POST /api/recovery/reset - Reset the recovery fuse

    Usage:
        dashboard = Dashboard(pipeline=pipeline, monitor=monitor, ...)
        app = dashboard.create_app()
        app.run(port=9060)
    """

    def __init__(
        self,
        pipeline: Optional["RefreshPipeline"] = None,
        monitor: Optional["SelfHealingMonitor"] = None,
        data_source: Optional["MarketDataSource"] = None,
        scoring_engine: Optional["ScoringEngine"] = None,
        scheduler: Optional["RefreshScheduler"] = None,
        event_loop: Optional[asyncio.AbstractEventLoop] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        """
        Initialize the dashboard.

        Args:
            pipeline: RefreshPipeline holding views and UI actions
            monitor: SelfHealingMonitor (health, error log, fuse)
            data_source: MarketDataSource (history, influencers)
            scoring_engine: ScoringEngine (model info)
            scheduler: RefreshScheduler (countdown, manual refresh)
            event_loop: Main asyncio event loop for dispatching async calls
            started_at: Process start time
        """
        self._pipeline = pipeline
        self._monitor = monitor
        self._data_source = data_source
        self._scoring_engine = scoring_engine
        self._scheduler = scheduler
        self._event_loop = event_loop
        self._started_at = started_at or datetime.now(timezone.utc)

        # SSE subscribers
        self._sse_queues: List[queue.Queue] = []
        self._sse_lock = threading.Lock()

    def _run_async(self, coro, timeout: float = 10.0) -> Any:
        """
        Run an async coroutine from the Flask thread safely.

        Args:
            coro: Coroutine to execute
            timeout: Timeout in seconds

        Returns:
            Result of the coroutine

        Raises:
            RuntimeError: If event loop is not running (shutdown in progress)
            TimeoutError: If operation times out
        """
        if self._event_loop is None:
            # No main loop (testing): run on a private loop
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(coro)
            finally:
                loop.close()

        if self._event_loop.is_closed() or not self._event_loop.is_running():
            coro.close()
            raise RuntimeError("Event loop is not running (shutdown in progress)")

        future = asyncio.run_coroutine_threadsafe(coro, self._event_loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(f"Async operation timed out after {timeout}s")
            raise TimeoutError(f"Operation timed out after {timeout}s")

    def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a synchronous core call on the main loop."""

        async def invoke() -> Any:
            return func(*args)

        return self._run_async(invoke())

    def create_app(self, testing: bool = False) -> Flask:
        """
        Create the Flask application.

        Args:
            testing: Whether to enable testing mode

        Returns:
            Flask application instance
        """
        app = Flask(__name__)
        app.config["TESTING"] = testing

        # Store reference for routes
        app.dashboard = self  # type: ignore

        self._register_routes(app)

        return app

    def _register_routes(self, app: Flask) -> None:
        """Register all HTTP routes."""

        @app.route("/health")
        def health() -> Response:
            """Probe component health (no recovery)."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._monitor:
                return jsonify({
                    "status": "unknown",
                    "message": "Health monitor not configured",
                })

            try:
                report = dashboard._run_async(dashboard._monitor.probe())
            except Exception as e:
                logger.error(f"Health check failed: {e}")
                return jsonify({"status": "error", "error": str(e)}), 500

            return jsonify({
                "status": report.overall.value,
                "components": [c.to_dict() for c in report.components],
                "checked_at": report.checked_at.isoformat(),
                "recovery_attempts": dashboard._monitor.recovery_attempts,
                "fuse_tripped": dashboard._monitor.fuse_tripped,
            })

        @app.route("/api/views")
        def views() -> Response:
            """Current dashboard views."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._pipeline:
                return jsonify({"error": "Pipeline not configured"}), 500

            current = dashboard._pipeline.views
            if current is None:
                return jsonify({"error": "No data loaded yet"}), 503

            return jsonify(current.to_dict())

        @app.route("/api/status")
        def status() -> Response:
            """Status line, refresh countdown and selection."""
            dashboard: Dashboard = app.dashboard  # type: ignore
            now = datetime.now(timezone.utc)

            payload: Dict[str, Any] = {
                "started_at": dashboard._started_at.isoformat(),
                "uptime_seconds": int((now - dashboard._started_at).total_seconds()),
            }

            if dashboard._pipeline:
                pipeline = dashboard._pipeline
                last = pipeline.last_refresh_at
                payload.update({
                    "status": pipeline.status.current.to_dict(),
                    "filter": pipeline.filter_mode.value,
                    "sort": {
                        "field": COIN_WIRE_FIELDS.get(pipeline.sort_field, pipeline.sort_field),
                        "direction": pipeline.sort_direction.value,
                    },
                    "last_refresh_at": last.isoformat() if last else None,
                    "passes_succeeded": pipeline.passes_succeeded,
                    "passes_failed": pipeline.passes_failed,
                })

            if dashboard._scheduler:
                payload["refresh"] = {
                    "seconds_remaining": dashboard._scheduler.seconds_remaining,
                    "period": dashboard._scheduler.period,
                    "pass_running": dashboard._scheduler.pass_running,
                    "pending": dashboard._scheduler.pending,
                }

            return jsonify(payload)

        @app.route("/api/history")
        def history() -> Response:
            """Market history snapshots, oldest first."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._data_source:
                return jsonify({"history": [], "error": "Data source not configured"})

            snapshots = dashboard._data_source.get_history()
            return jsonify({
                "history": [s.to_dict() for s in snapshots],
                "count": len(snapshots),
            })

        @app.route("/api/errors")
        def errors() -> Response:
            """Most recent error log entries."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._monitor:
                return jsonify({"errors": [], "error": "Health monitor not configured"})

            try:
                limit = int(request.args.get("limit", DEFAULT_RETRIEVAL_LIMIT))
            except ValueError:
                return jsonify({"error": "limit must be an integer"}), 400
            limit = max(0, min(limit, MAX_ERROR_LIMIT))

            entries = dashboard._monitor.get_error_log(limit)
            return jsonify({
                "errors": [e.to_dict() for e in entries],
                "count": len(entries),
                "total_recorded": dashboard._monitor.error_log.total_recorded,
            })

        @app.route("/api/system")
        def system() -> Response:
            """Model versions and monitor state."""
            dashboard: Dashboard = app.dashboard  # type: ignore
            payload: Dict[str, Any] = {}

            if dashboard._scoring_engine:
                engine = dashboard._scoring_engine
                payload["models"] = engine.get_model_info()
                payload["model_version"] = engine.model_version
                payload["hours_since_retrain"] = engine.hours_since_retrain()

            if dashboard._monitor:
                payload["health"] = dashboard._monitor.get_health_status()

            return jsonify(payload)

        @app.route("/api/influencers")
        def influencers() -> Response:
            """Influencer feed."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._data_source:
                return jsonify({"influencers": [], "error": "Data source not configured"})

            try:
                items = dashboard._run_async(dashboard._data_source.fetch_influencer_data())
            except Exception as e:
                logger.error(f"Failed to fetch influencers: {e}")
                return jsonify({"influencers": [], "error": str(e)}), 500

            return jsonify({"influencers": [i.to_dict() for i in items]})

        @app.route("/api/sort", methods=["POST"])
        def sort() -> Response:
            """Select the sort field; the active field toggles direction."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._pipeline:
                return jsonify({"error": "Pipeline not configured"}), 500

            field_name = (request.get_json(silent=True) or {}).get("field")
            if not field_name:
                return jsonify({"error": "field is required"}), 400

            try:
                updated = dashboard._call(dashboard._pipeline.set_sort, field_name)
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            return jsonify(updated.to_dict())

        @app.route("/api/filter", methods=["POST"])
        def filter_() -> Response:
            """Select the coin filter."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._pipeline:
                return jsonify({"error": "Pipeline not configured"}), 500

            mode = (request.get_json(silent=True) or {}).get("filter")
            if not mode:
                return jsonify({"error": "filter is required"}), 400

            try:
                updated = dashboard._call(dashboard._pipeline.set_filter, mode)
            except ValueError:
                return jsonify({"error": f"Unknown filter: {mode}"}), 400

            return jsonify(updated.to_dict())

        @app.route("/api/retrain", methods=["POST"])
        def retrain() -> Response:
            """Retrain the score models."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._pipeline:
                return jsonify({"error": "Pipeline not configured"}), 500

            try:
                ok = dashboard._run_async(dashboard._pipeline.retrain_models(), timeout=30.0)
            except Exception as e:
                logger.error(f"Retrain request failed: {e}")
                return jsonify({"success": False, "error": str(e)}), 500

            return jsonify({
                "success": ok,
                "status": dashboard._pipeline.status.current.to_dict(),
            })

        @app.route("/api/diagnostics", methods=["POST"])
        def diagnostics() -> Response:
            """Run a manual health check (resets the fuse when healthy)."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._pipeline:
                return jsonify({"error": "Pipeline not configured"}), 500

            try:
                report = dashboard._run_async(dashboard._pipeline.run_diagnostics(), timeout=30.0)
            except Exception as e:
                logger.error(f"Diagnostics failed: {e}")
                return jsonify({"error": str(e)}), 500

            return jsonify({
                "report": report.to_dict(),
                "status": dashboard._pipeline.status.current.to_dict(),
            })

        @app.route("/api/optimize", methods=["POST"])
        def optimize() -> Response:
            """Run the feature optimization job."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._pipeline:
                return jsonify({"error": "Pipeline not configured"}), 500

            try:
                ok = dashboard._run_async(dashboard._pipeline.optimize_features(), timeout=30.0)
            except Exception as e:
                logger.error(f"Optimization failed: {e}")
                return jsonify({"success": False, "error": str(e)}), 500

            return jsonify({
                "success": ok,
                "status": dashboard._pipeline.status.current.to_dict(),
            })

        @app.route("/api/refresh", methods=["POST"])
        def refresh() -> Response:
            """Refresh now and reset the countdown."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._pipeline:
                return jsonify({"error": "Pipeline not configured"}), 500

            if dashboard._scheduler:
                coro = dashboard._scheduler.trigger_now()
            else:
                coro = dashboard._pipeline.run_pass()

            try:
                dashboard._run_async(coro, timeout=30.0)
            except Exception as e:
                logger.error(f"Manual refresh failed: {e}")
                return jsonify({"success": False, "error": str(e)}), 500

            return jsonify({
                "success": dashboard._pipeline.views is not None,
                "status": dashboard._pipeline.status.current.to_dict(),
            })

        @app.route("/api/recovery/reset", methods=["POST"])
        def recovery_reset() -> Response:
            """Reset the recovery fuse."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._monitor:
                return jsonify({"error": "Health monitor not configured"}), 500

            previous = dashboard._monitor.recovery_attempts
            dashboard._call(dashboard._monitor.reset_recovery_attempts)
            dashboard.broadcast_event({
                "type": "recovery_reset",
                "previous_attempts": previous,
            })
            return jsonify({"recovery_attempts": 0, "previous_attempts": previous})

        @app.route("/api/stream")
        def stream() -> Response:
            """SSE stream for real-time updates."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            def generate() -> Generator[str, None, None]:
                q = dashboard._subscribe()

                try:
                    yield f"data: {json.dumps({'type': 'connected'})}\n\n"

                    while True:
                        try:
                            event = q.get(timeout=30)
                            yield f"data: {json.dumps(event)}\n\n"
                        except queue.Empty:
                            yield ": keepalive\n\n"

                finally:
                    dashboard._unsubscribe(q)

            return Response(
                generate(),
                mimetype="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "X-Accel-Buffering": "no",
                },
            )

        @app.route("/")
        def index() -> Response:
            """Dashboard home page."""
            return Response(INDEX_HTML, mimetype="text/html")

    def _subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=SSE_QUEUE_SIZE)
        with self._sse_lock:
            self._sse_queues.append(q)
        return q

    def _unsubscribe(self, q: queue.Queue) -> None:
        with self._sse_lock:
            if q in self._sse_queues:
                self._sse_queues.remove(q)

    @property
    def subscriber_count(self) -> int:
        with self._sse_lock:
            return len(self._sse_queues)

    def broadcast_event(self, event: Dict[str, Any]) -> None:
        """Broadcast event to all SSE subscribers."""
        if "timestamp" not in event:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
        with self._sse_lock:
            for q in self._sse_queues:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    pass  # Skip if queue is full


def create_app(
    pipeline: Optional["RefreshPipeline"] = None,
    monitor: Optional["SelfHealingMonitor"] = None,
    data_source: Optional["MarketDataSource"] = None,
    scoring_engine: Optional["ScoringEngine"] = None,
    scheduler: Optional["RefreshScheduler"] = None,
    started_at: Optional[datetime] = None,
    testing: bool = False,
) -> Flask:
    """
    Factory function to create the dashboard app.

    Returns:
        Flask application
    """
    dashboard = Dashboard(
        pipeline=pipeline,
        monitor=monitor,
        data_source=data_source,
        scoring_engine=scoring_engine,
        scheduler=scheduler,
        started_at=started_at,
    )
    return dashboard.create_app(testing=testing)


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Crypto Intelligence Dashboard</title>
<style>
  body { background: #1a1a2e; color: #e6e6e6; font-family: sans-serif; margin: 0; padding: 16px; }
  h1 { font-size: 20px; margin: 0 0 8px; }
  #status { padding: 6px 10px; border-radius: 4px; margin-bottom: 12px; }
  .blink { animation: blink 1s step-start infinite; }
  @keyframes blink { 50% { opacity: 0.4; } }
  .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
  .card { background: #16213e; border-radius: 6px; padding: 12px; }
  table { width: 100%; border-collapse: collapse; font-size: 13px; }
  th { cursor: pointer; text-align: left; border-bottom: 1px solid #333; }
  td { padding: 3px 4px; }
  .positive { color: #4cc9f0; }
  .negative { color: #f72585; }
  .neutral { color: #e6e6e6; }
  .counters span { margin-right: 16px; }
  button { background: #0f3460; color: #e6e6e6; border: 0; padding: 6px 10px; margin-right: 6px; cursor: pointer; }
</style>
</head>
<body>
<h1>Crypto Intelligence Dashboard</h1>
<div id="status">Initializing...</div>
<div class="counters">
  <span>Breakouts: <b id="c-breakout">-</b></span>
  <span>Gainers: <b id="c-gainers">-</b></span>
  <span>Inflows: <b id="c-inflow">-</b></span>
  <span>Total: <b id="c-total">-</b></span>
  <span>Model: <b id="model-version">-</b></span>
  <span>Next refresh: <b id="countdown">-</b>s</span>
</div>
<p>
  <button data-filter="all">All</button>
  <button data-filter="gainers">Gainers</button>
  <button data-filter="losers">Losers</button>
  <button data-action="refresh">Refresh</button>
  <button data-action="retrain">Retrain</button>
  <button data-action="optimize">Optimize</button>
  <button data-action="diagnostics">Diagnostics</button>
</p>
<div class="grid">
  <div class="card">
    <h2>Predictions</h2>
    <table id="predictions"><thead><tr>
      <th data-sort="symbol">Coin</th><th data-sort="price">Price</th>
      <th data-sort="breakoutScore">Breakout</th><th data-sort="inflowScore">Inflow</th>
      <th>Signal</th></tr></thead><tbody></tbody></table>
  </div>
  <div class="card">
    <h2>Performance</h2>
    <table id="performance"><thead><tr>
      <th>Coin</th><th>Price</th><th>24h</th><th>Volume</th></tr></thead><tbody></tbody></table>
  </div>
  <div class="card">
    <h2>Money flow</h2>
    <table id="money-flow"><thead><tr><th>Coin</th><th>Inflow</th><th>Outflow</th></tr></thead><tbody></tbody></table>
  </div>
  <div class="card">
    <h2>Recent errors</h2>
    <table id="errors"><thead><tr><th>Time</th><th>Type</th><th>Severity</th><th>Message</th></tr></thead><tbody></tbody></table>
  </div>
</div>
<script>
function esc(v) {
  return String(v === null || v === undefined ? "" : v)
    .replace(/&/g, "&amp;").replace(/</g, "&lt;").replace(/>/g, "&gt;");
}
function rows(id, html) { document.querySelector("#" + id + " tbody").innerHTML = html.join(""); }

function renderViews(v) {
  rows("predictions", v.predictions.map(r =>
    `<tr><td>${esc(r.displayName)}</td><td>${esc(r.priceDisplay)}</td>` +
    `<td style="color:${r.breakoutColor}">${esc(r.breakoutDisplay)}</td>` +
    `<td>${esc(r.inflowDisplay)}</td><td class="${r.class}">${esc(r.prediction)}</td></tr>`));
  rows("performance", v.performance.map(r =>
    `<tr><td>${esc(r.symbol)}</td><td>${esc(r.priceDisplay)}</td>` +
    `<td class="${r.class}">${esc(r.changeDisplay)}</td><td>${esc(r.volumeDisplay)}</td></tr>`));
  rows("money-flow", v.moneyFlow.labels.map((s, i) =>
    `<tr><td>${esc(s)}</td><td>${v.moneyFlow.inflow[i].toFixed(1)}</td>` +
    `<td>${v.moneyFlow.outflow[i].toFixed(1)}</td></tr>`));
  document.getElementById("c-breakout").textContent = v.counters.breakout;
  document.getElementById("c-gainers").textContent = v.counters.gainers;
  document.getElementById("c-inflow").textContent = v.counters.inflow;
  document.getElementById("c-total").textContent = v.counters.total;
  document.getElementById("model-version").textContent =
    "v" + (v.system.modelVersion || "-") + " (" + (v.system.hoursSinceRetrain ?? "-") + "h)";
}
function renderStatus(s) {
  const el = document.getElementById("status");
  el.textContent = s.message;
  el.style.color = s.color;
  el.className = s.blink ? "blink" : "";
}
async function getJSON(url, opts) {
  const r = await fetch(url, opts);
  return r.json();
}
async function post(url, body) {
  return getJSON(url, {method: "POST", headers: {"Content-Type": "application/json"},
                       body: JSON.stringify(body || {})});
}
async function loadAll() {
  const v = await getJSON("/api/views");
  if (v.predictions) renderViews(v);
  const s = await getJSON("/api/status");
  if (s.status) renderStatus(s.status);
  if (s.refresh) document.getElementById("countdown").textContent = s.refresh.seconds_remaining;
  const e = await getJSON("/api/errors?limit=10");
  rows("errors", (e.errors || []).slice().reverse().map(x =>
    `<tr><td>${esc(x.timestamp.slice(11, 19))}</td><td>${esc(x.type)}</td>` +
    `<td>${esc(x.severity)}</td><td>${esc(x.message)}</td></tr>`));
}
document.querySelectorAll("[data-filter]").forEach(b => b.onclick = async () => {
  const v = await post("/api/filter", {filter: b.dataset.filter}); if (v.predictions) renderViews(v);
});
document.querySelectorAll("[data-sort]").forEach(h => h.onclick = async () => {
  const v = await post("/api/sort", {field: h.dataset.sort}); if (v.predictions) renderViews(v);
});
document.querySelectorAll("[data-action]").forEach(b => b.onclick = async () => {
  await post("/api/" + b.dataset.action); loadAll();
});
const es = new EventSource("/api/stream");
es.onmessage = m => {
  const ev = JSON.parse(m.data);
  if (ev.type === "views") renderViews(ev.data);
  if (ev.type === "status") renderStatus(ev);
};
loadAll();
setInterval(loadAll, 5000);
</script>
</body>
</html>
"""
