"""Health endpoints for the API blueprint.

- GET /health
    - Purpose: liveness check used by load balancers and orchestration to
      verify the API process is running and can reach its database.
    - Parameters: none
"""

from flask import jsonify
from sqlalchemy import text

from betalift.api import api_bp
from betalift.models import db


@api_bp.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint. No auth required."""
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        db.session.rollback()
        database = "unavailable"

    status = 200 if database == "ok" else 503
    return (
        jsonify(
            {
                "status": "healthy" if status == 200 else "degraded",
                "database": database,
                "message": "BetaLift API is running",
            }
        ),
        status,
    )
