#!/usr/bin/env python3
from prometheus_client import Counter, Gauge, Histogram

# Métricas básicas para observabilidad
LEADERBOARD_REQUESTS_TOTAL = Counter(
    "leaderboard_requests_total",
    "Total de solicitudes al servicio de leaderboard",
    labelnames=["tool"],
)

LEADERBOARD_ERRORS_TOTAL = Counter(
    "leaderboard_errors_total",
    "Total de errores del servicio de leaderboard",
    labelnames=["tool"],
)

LEADERBOARD_TOOL_DURATION_MS = Histogram(
    "leaderboard_tool_duration_ms",
    "Duración de cada herramienta en milisegundos",
    labelnames=["tool"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

LEADERBOARD_COMPUTE_REJECTED_TOTAL = Counter(
    "leaderboard_compute_rejected_total",
    "Cálculos rechazados porque ya había uno en curso",
)

LEADERBOARD_RANKED_USERS = Gauge(
    "leaderboard_ranked_users",
    "Usuarios en el último leaderboard calculado",
)
