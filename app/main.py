"""PayOps Settlement Engine - Main Application."""

from fastapi import FastAPI

from app.api.routes import pricing, settlements
from app.core.config import settings
from app.core.database import Base, engine
from app.core.logging import setup_logging

# Register every model on Base.metadata before create_all
from app import models  # noqa: F401

# Configure logging before anything else
logger = setup_logging(settings.log_level)

logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")

# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Settlements",
        "description": (
            "Run the weekly settlement batch, preview fees for a site over any "
            "period, and read or delete the resulting settlement reports."
        ),
    },
    {
        "name": "Pricing",
        "description": (
            "Per-site fee schedules: percentage, per-transaction, refund and "
            "chargeback fees plus the reserve program target."
        ),
    },
]


app = FastAPI(
    title="PayOps Settlement Engine",
    description=(
        "## Weekly Merchant Settlements\n\n"
        "Aggregates the settled transactions synced from Stripe, Airwallex and "
        "the CPT gateway into one immutable settlement report per site and "
        "week, with an itemized fee breakdown, a reserve holdback and the "
        "merchant payout.\n\n"
        "### Fee schedule\n"
        "| Component | Basis |\n"
        "|-----------|-------|\n"
        "| Processing fee | `percentage_fee`% of net (gross - refunds - chargebacks) |\n"
        "| Transaction fee | `per_transaction_fee` x every transaction |\n"
        "| Refund fee | `refund_fee` x refunds |\n"
        "| Chargeback fee | `chargeback_fee` x chargebacks |\n"
        "| Reserve | withheld from positive payouts until `reserve_amount` is reached |\n\n"
        "### Quick Start\n"
        "```bash\n"
        "# 1. Configure a site's fee schedule\n"
        "curl -X PUT /api/v1/pricing/MOHWK-STORE -H 'Content-Type: application/json' "
        "-d '{\"percentage_fee\": 2.9, \"per_transaction_fee\": 0.30}'\n\n"
        "# 2. Settle last week for every active site\n"
        "curl -X POST /api/v1/settlements/weekly-run\n\n"
        "# 3. Read the reports\n"
        "curl /api/v1/settlements/reports?site_id=MOHWK-STORE\n"
        "```\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(
    settlements.router, prefix="/api/v1/settlements", tags=["Settlements"]
)
app.include_router(pricing.router, prefix="/api/v1/pricing", tags=["Pricing"])

logger.info("PayOps settlement API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for load balancers and the scheduler."""
    return {"status": "healthy", "service": "payops-settlement"}
