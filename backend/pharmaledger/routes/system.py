# backend/pharmaledger/routes/system.py
"""
System health and version endpoints.

Provides health checks for the ledger's dependencies and version
information for deployment debugging.
"""

import sys
import time
from datetime import timedelta

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import AuditLogEntry, CreditAccount, IdempotencyRecord, Product
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """
    Check database connectivity and basic ledger table access.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(func.count(Product.id)).scalar()
        account_count = db.session.query(func.count(CreditAccount.id)).scalar()
        audit_count = db.session.query(func.count(AuditLogEntry.id)).scalar()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "credit_accounts": account_count,
                "audit_entries": audit_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_idempotency_store_health() -> dict:
    """
    Idempotency records past their TTL should be purged by
    'flask ledger purge-idempotency'; a backlog is reported as degraded.
    """
    start_time = time.time()
    try:
        ttl_hours = current_app.config.get("IDEMPOTENCY_TTL_HOURS", 72)
        cutoff = utcnow() - timedelta(hours=ttl_hours)
        expired = db.session.query(func.count(IdempotencyRecord.id)).filter(
            IdempotencyRecord.created_at < cutoff
        ).scalar()

        elapsed_ms = (time.time() - start_time) * 1000
        status = "degraded" if expired else "healthy"
        result = {
            "status": status,
            "latency_ms": round(elapsed_ms, 2),
            "details": {"expired_pending_purge": expired, "ttl_hours": ttl_hours},
        }
        if expired:
            result["warning"] = f"{expired} idempotency records are past their TTL"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Idempotency store health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Idempotency store error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    idempotency_health = check_idempotency_store_health()

    all_checks = [database_health, idempotency_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "idempotency_store": idempotency_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose secret keys, database credentials or internal paths.
    """
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
