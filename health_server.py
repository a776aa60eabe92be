"""Background HTTP server for liveness and readiness probes."""
import json
import logging
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger("trade_journal")


class HealthStatus:
    """Ingestion daemon state shared between the scheduler and the probes."""

    def __init__(self):
        self.started_at: datetime = datetime.now(timezone.utc)
        self.is_running: bool = True
        self.last_cycle_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.cycles_completed = 0
        self.last_new_trades = 0
        self.total_new_trades = 0
        self.last_wallets_failed = 0
        self.last_cycle_aborted = False
        self._lock = threading.Lock()

    def record_cycle(self, summary: Any) -> None:
        """Fold in a finished scheduler.CycleSummary."""
        with self._lock:
            self.cycles_completed += 1
            self.last_cycle_at = summary.finished_at or datetime.now(timezone.utc)
            self.last_new_trades = summary.new_trades
            self.total_new_trades += summary.new_trades
            self.last_wallets_failed = summary.wallets_failed
            self.last_cycle_aborted = summary.aborted
            if summary.error:
                self.last_error = summary.error

    def update(self, error: Optional[str] = None) -> None:
        with self._lock:
            if error:
                self.last_error = error

    def readiness(self) -> Tuple[bool, Optional[str]]:
        """Ready once a cycle has finished and the latest one was not aborted."""
        with self._lock:
            if self.last_cycle_at is None:
                return False, "Initial ingestion cycle not finished"
            if self.last_cycle_aborted:
                return False, f"Last ingestion cycle aborted: {self.last_error}"
            return True, None

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            now = datetime.now(timezone.utc)
            return {
                "status": "healthy" if self.is_running else "unhealthy",
                "started_at": self.started_at.isoformat(),
                "uptime_seconds": (now - self.started_at).total_seconds(),
                "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
                "cycles_completed": self.cycles_completed,
                "last_new_trades": self.last_new_trades,
                "total_new_trades": self.total_new_trades,
                "last_wallets_failed": self.last_wallets_failed,
                "last_cycle_aborted": self.last_cycle_aborted,
                "last_error": self.last_error,
            }


_health_status = HealthStatus()


def get_health_status() -> HealthStatus:
    """Process-wide status the CLI wires into the scheduler."""
    return _health_status


def _health_response() -> Tuple[int, Dict[str, Any]]:
    status = get_health_status()
    return (200 if status.is_running else 503), status.to_dict()


def _ready_response() -> Tuple[int, Dict[str, Any]]:
    ready, reason = get_health_status().readiness()
    if ready:
        return 200, {"ready": True}
    return 503, {"ready": False, "reason": reason}


ROUTES: Dict[str, Callable[[], Tuple[int, Dict[str, Any]]]] = {
    "/": _health_response,
    "/health": _health_response,
    "/ready": _ready_response,
}


class HealthHandler(BaseHTTPRequestHandler):

    def log_message(self, format: str, *args) -> None:
        logger.debug("Health check: %s", format % args)

    def do_GET(self) -> None:
        route = ROUTES.get(self.path.split("?", 1)[0])
        if route is None:
            self._send_json(404, {"error": "Not found"})
            return
        status_code, body = route()
        self._send_json(status_code, body)

    def _send_json(self, status_code: int, data: Dict[str, Any]) -> None:
        payload = json.dumps(data).encode()
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


class HealthServer:
    """Serves the probes from a daemon thread."""

    def __init__(self, port: int = 8080, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def server_port(self) -> Optional[int]:
        return self._server.server_address[1] if self._server else None

    def start(self) -> None:
        self._server = HTTPServer((self.host, self.port), HealthHandler)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="health-server",
            daemon=True,
        )
        self._thread.start()
        logger.info("Health server listening on %s:%s", self.host, self.server_port)

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            logger.info("Health server stopped")
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        get_health_status().is_running = False
