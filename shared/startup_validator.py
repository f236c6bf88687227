"""
Startup configuration validation module.

This module provides startup-time validation for critical configuration
to catch misconfigurations early (fail-fast) rather than at runtime when
a cron job or a client hits an endpoint.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)
"""

import logging

from database.connection import Database
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

JOBS_TOKEN_MIN_LENGTH = 24


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


async def validate_startup_config(settings: Settings | None = None) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = settings or get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Database URL must use the asyncpg driver
    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        critical_failures.append(
            "DATABASE_URL must use asyncpg driver: postgresql+asyncpg://..."
        )
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True
        logger.info("  [OK] Database URL uses asyncpg driver")

    # 2. Jobs token protects the cron endpoints
    if settings.JOBS_API_TOKEN == "jobs_api_token_placeholder":
        critical_failures.append(
            "JOBS_API_TOKEN is placeholder - set a secret token for the job endpoints"
        )
        results["jobs_token"] = False
    elif len(settings.JOBS_API_TOKEN) < JOBS_TOKEN_MIN_LENGTH:
        critical_failures.append(
            f"JOBS_API_TOKEN must be at least {JOBS_TOKEN_MIN_LENGTH} characters"
        )
        results["jobs_token"] = False
    else:
        results["jobs_token"] = True
        logger.info("  [OK] Jobs API token configured")

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 3. PayPal credentials (external reconciliation is skipped without them)
    if not (settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET):
        logger.warning(
            "  [WARN] PayPal credentials not configured - subscription audit "
            "will only expire trials"
        )
        results["paypal_configured"] = False
    else:
        results["paypal_configured"] = True
        logger.info(f"  [OK] PayPal configured (mode={settings.PAYPAL_MODE})")

    if settings.PAYPAL_MODE not in ("sandbox", "live"):
        logger.warning(f"  [WARN] PAYPAL_MODE '{settings.PAYPAL_MODE}' unknown, using sandbox")
        results["paypal_mode"] = False
    else:
        results["paypal_mode"] = True

    # 4. Webhook signature verification (critical once PayPal credentials are set)
    if not settings.PAYPAL_WEBHOOK_ID and results["paypal_configured"]:
        critical_failures.append(
            "PAYPAL_WEBHOOK_ID must be set when PayPal credentials are configured - "
            "unsigned webhook events would be applied"
        )
        results["paypal_webhook_id"] = False
    elif not settings.PAYPAL_WEBHOOK_ID:
        logger.warning(
            "  [WARN] PAYPAL_WEBHOOK_ID not set - webhook signatures will not be verified"
        )
        results["paypal_webhook_id"] = False
    else:
        results["paypal_webhook_id"] = True
        logger.info("  [OK] PayPal webhook signature verification enabled")

    # 5. Notification collaborators
    if settings.NOTIFICATIONS_API_KEY == "notifications-key-placeholder":
        logger.warning(
            "  [WARN] NOTIFICATIONS_API_KEY is placeholder - reminder delivery will fail"
        )
        results["notifications_key"] = False
    else:
        results["notifications_key"] = True
        logger.info("  [OK] Notification collaborators configured")

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    total = len(results)
    logger.info(f"Startup validation: {passed}/{total} checks passed")

    if critical_failures:
        logger.critical("=" * 60)
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        logger.critical("=" * 60)
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results


async def validate_database_connection(database: Database) -> bool:
    """
    Validate database connection is working.

    Returns:
        True if database connection successful, False otherwise
    """
    try:
        await database.ping()
        logger.info("  [OK] Database connection successful")
        return True

    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
