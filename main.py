"""
KPI Report Hub — API server

Run: python main.py
Then POST /api/reports/generate, or browse http://localhost:8001/docs.
"""

import os

from dotenv import load_dotenv

load_dotenv()

from scripts.lib.logger import setup_logger  # noqa: E402

logger = setup_logger("kpi-report-hub")

PORT = int(os.getenv("DASHBOARD_PORT", "8001"))

# Report generation cannot start without these.
REQUIRED_SETTINGS = ("SUPABASE_URL", "CREDENTIAL_ENCRYPTION_KEY")


def missing_settings():
    missing = [name for name in REQUIRED_SETTINGS if not os.getenv(name)]
    if not (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")):
        missing.append("SUPABASE_SERVICE_ROLE_KEY")
    provider = os.getenv("AI_PROVIDER", "groq").lower()
    ai_key = "ANTHROPIC_API_KEY" if provider == "claude" else "GROQ_API_KEY"
    if not os.getenv(ai_key):
        missing.append(ai_key)
    return missing


if __name__ == "__main__":
    import uvicorn

    logger.info("KPI Report Hub starting on http://0.0.0.0:%d (docs at /docs)", PORT)
    logger.info("Environment=%s AI provider=%s", os.getenv("ENVIRONMENT", "development"),
                os.getenv("AI_PROVIDER", "groq"))
    for name in missing_settings():
        logger.warning("%s is not set; report generation will fail until it is", name)

    uvicorn.run(
        "dashboard.api.main:app",
        host="0.0.0.0",
        port=PORT,
        reload=os.getenv("DEBUG", "false").lower() == "true",
    )
