"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary

REQUEST_COUNTER = Counter(
	"buzzcore_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"buzzcore_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"buzzcore_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"buzzcore_socketio_events_total",
	"Socket.IO events handled per namespace",
	["namespace", "event"],
)

PRESENCE_ONLINE = Gauge(
	"buzzcore_presence_online_users",
	"Users with a registered live connection",
)

DISCOVERY_QUERIES = Counter(
	"buzzcore_discovery_queries_total",
	"Candidate discovery queries by the radius tier that produced results",
	["tier"],
)

DISCOVERY_RESULTS = Summary(
	"buzzcore_discovery_results",
	"Candidate discovery result sizes",
)

DISCOVERY_DURATION = Histogram(
	"buzzcore_discovery_duration_seconds",
	"Candidate discovery latency",
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

LIKES_TOTAL = Counter(
	"buzzcore_likes_total",
	"Likes processed by outcome",
	["result"],
)

MATCHES_CREATED = Counter(
	"buzzcore_matches_created_total",
	"Mutual matches created",
)

BUZZ_TOTAL = Counter(
	"buzzcore_buzz_total",
	"Matched buzzes by outcome",
	["result"],
)

RELAY_EVENTS = Counter(
	"buzzcore_relay_events_total",
	"Relayed live events by delivery outcome",
	["event", "delivered"],
)

MEET_SESSIONS = Counter(
	"buzzcore_meet_sessions_total",
	"Meet sessions reaching a terminal or notable state",
	["state"],
)

MEET_ACTIVE = Gauge(
	"buzzcore_meet_sessions_active",
	"Meet sessions currently tracked",
)

VENUE_SEARCH_LATENCY = Histogram(
	"buzzcore_venue_search_duration_seconds",
	"Venue search upstream latency",
	["result"],
	buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)

NOTIFICATIONS_PERSISTED = Counter(
	"buzzcore_notifications_persisted_total",
	"Notifications stored by kind",
	["kind"],
)

NOTIFICATION_EMIT_FAILURES = Counter(
	"buzzcore_notification_emit_failures_total",
	"Live notification pushes that failed",
)

RATE_LIMITED_EVENTS = Counter(
	"buzzcore_rate_limited_total",
	"Events rejected by the rate limiter",
	["kind"],
)

REDIS_UP = Gauge("buzzcore_redis_up", "Redis availability (1=up,0=down)")
POSTGRES_UP = Gauge("buzzcore_postgres_up", "Postgres availability (1=up,0=down)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def presence_online(count: int) -> None:
	PRESENCE_ONLINE.set(count)


def inc_discovery_query(tier: str, results: int) -> None:
	DISCOVERY_QUERIES.labels(tier=tier).inc()
	DISCOVERY_RESULTS.observe(results)


def observe_discovery(latency_seconds: float) -> None:
	DISCOVERY_DURATION.observe(max(0.0, latency_seconds))


def inc_like(result: str) -> None:
	LIKES_TOTAL.labels(result=result).inc()


def inc_match_created() -> None:
	MATCHES_CREATED.inc()


def inc_buzz(result: str) -> None:
	BUZZ_TOTAL.labels(result=result).inc()


def inc_relay(event: str, delivered: bool) -> None:
	RELAY_EVENTS.labels(event=event, delivered="true" if delivered else "false").inc()


def inc_meet_state(state: str) -> None:
	MEET_SESSIONS.labels(state=state).inc()


def meet_active(count: int) -> None:
	MEET_ACTIVE.set(count)


def observe_venue_search(result: str, latency_seconds: float) -> None:
	VENUE_SEARCH_LATENCY.labels(result=result).observe(latency_seconds)


def inc_notification_persisted(kind: str) -> None:
	NOTIFICATIONS_PERSISTED.labels(kind=kind).inc()


def inc_notification_emit_failure() -> None:
	NOTIFICATION_EMIT_FAILURES.inc()


def inc_rate_limited(kind: str) -> None:
	RATE_LIMITED_EVENTS.labels(kind=kind).inc()


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)


def mark_postgres(ok: bool) -> None:
	POSTGRES_UP.set(1 if ok else 0)
