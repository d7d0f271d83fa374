# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Auth flow metrics ---
LOGIN_SUCCESSES = Counter("auth_login_success_total",
                          "Login successes", registry=APP_REGISTRY)
LOGIN_FAILURES = Counter("auth_login_failure_total", "Login failures", [
                         "reason"], registry=APP_REGISTRY)
FORBIDDEN = Counter(
    "auth_forbidden_total", "Non-admin attempted an admin endpoint", registry=APP_REGISTRY
)
CSV_DOWNLOADS = Counter("csv_downloads_total", "CSV downloads", [
                        "kind"], registry=APP_REGISTRY)

# --- Ledger ---
ENTRIES_POSTED = Counter("ledger_entries_posted_total", "Journal entries posted", [
                         "kind"], registry=APP_REGISTRY)  # standard|reversal
POST_REJECTED = Counter("ledger_post_rejected_total", "Post/reverse attempts rejected", [
                        "reason"], registry=APP_REGISTRY)
POST_RETRIES = Counter("ledger_post_retries_total",
                       "Posts retried after an entry-number collision", registry=APP_REGISTRY)
POST_LATENCY = Histogram("ledger_post_seconds", "Post/reverse transaction time (seconds)",
                         ["op"], registry=APP_REGISTRY)
PERIOD_TRANSITIONS = Counter("ledger_period_transitions_total", "Fiscal period transitions", [
                             "action"], registry=APP_REGISTRY)

# --- Reconciliation ---
RECON_RUNS = Counter("ledger_reconciliation_runs_total", "Reconciliation runs", [
                     "status"], registry=APP_REGISTRY)
RECON_ALERTS = Counter("ledger_reconciliation_alerts_total", "Reconciliation alerts raised", [
                       "alert_type", "severity"], registry=APP_REGISTRY)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    LOGIN_FAILURES.labels(reason="bad_credentials").inc(0)
    FORBIDDEN.inc(0)
    for k in ("standard", "reversal"):
        ENTRIES_POSTED.labels(kind=k).inc(0)
    for r in ("empty_entry", "unbalanced_entry", "period_locked", "already_posted"):
        POST_REJECTED.labels(reason=r).inc(0)
    POST_RETRIES.inc(0)
    for a in ("close", "reopen", "lock"):
        PERIOD_TRANSITIONS.labels(action=a).inc(0)
    for st in ("success", "warning", "failed"):
        RECON_RUNS.labels(status=st).inc(0)
    CSV_DOWNLOADS.labels(kind="audit").inc(0)
