"""
Health Check Endpoints
---------------------
Liveness plus a dependency report covering the identity store and the two
keys every request relies on: the AES field key and the JWT signing key.
Both paths are on the authentication allow-list.
"""

from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from loguru import logger

from app.auth.field_cipher import FieldCipher
from app.auth.jwt_utils import TokenCodec
from app.auth.providers import get_field_cipher, get_token_codec
from app.core.config_manager import settings
from app.core.database_connection import db_manager
from app.models.health_models import DependencyHealth, Health, HealthStatus


router = APIRouter(prefix="/health", tags=["Health"])

CHECK_VALUE = "health-check"


@router.get("", response_model=HealthStatus)
async def health_check():
    return HealthStatus(
        status=Health.HEALTHY.value,
        timestamp=datetime.now(timezone.utc),
        version=settings.app_version,
    )


@router.get("/dependencies", response_model=DependencyHealth)
async def check_dependencies(
    field_cipher: FieldCipher = Depends(get_field_cipher),
    token_codec: TokenCodec = Depends(get_token_codec),
):
    """
    Component-level health.

    Always answers 200; ``status`` is 'unhealthy' when any component fails.
    """
    components = {
        "postgresql": await _check_database(),
        "field_encryption": check_field_encryption(field_cipher),
        "token_signing": check_token_signing(token_codec),
    }
    failing = [name for name, healthy in components.items() if not healthy]
    if failing:
        logger.warning(f"Dependency health check failing: {', '.join(failing)}")

    return DependencyHealth(
        **components,
        status=(Health.UNHEALTHY if failing else Health.HEALTHY).value,
        timestamp=datetime.now(timezone.utc),
    )


async def _check_database() -> bool:
    try:
        return await db_manager.ping()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def check_field_encryption(field_cipher: FieldCipher) -> bool:
    """Encrypt and decrypt a check value with the configured key."""
    try:
        return field_cipher.decrypt(field_cipher.encrypt(CHECK_VALUE)) == CHECK_VALUE
    except Exception as e:
        logger.error(f"Field encryption health check failed: {e}")
        return False


def check_token_signing(token_codec: TokenCodec) -> bool:
    """Sign and verify a short-lived check token."""
    try:
        token = token_codec.generate_token({"check": CHECK_VALUE}, expires_in=30)
        return token_codec.verify_token(token).get("check") == CHECK_VALUE
    except Exception as e:
        logger.error(f"Token signing health check failed: {e}")
        return False
