"""
Startup Diagnostics Module
-------------------------
Checks run by the lifespan handler before the API accepts traffic: database
reachability and the usability of the signing and field encryption keys.
Failures are printed as an actionable console report.
"""

from dataclasses import dataclass
from typing import Optional, Dict, List, Sequence, Tuple
from loguru import logger

from app.core.config_manager import settings
from app.core.database_connection import db_manager

BORDER = "═" * 80
RULE = "─" * 80


@dataclass
class ServiceStatus:
    """Outcome of one startup check."""

    name: str
    status: str  # "connected", "failed"
    error_message: Optional[str] = None
    suggestion: Optional[str] = None
    connection_details: Optional[Dict[str, str]] = None


def display_startup_failure(failed_services: List[ServiceStatus]):
    print("\n" + BORDER)
    print("[FATAL ERROR] APPLICATION STARTUP FAILED")
    print(BORDER)

    for service in failed_services:
        print(f"\n[FATAL ERROR] {service.name}: {service.status.upper()}")
        print(f"   Error: {service.error_message}")

        if service.connection_details:
            print("   Connection Details:")
            for key, value in service.connection_details.items():
                print(f"     • {key}: {value}")

        if service.suggestion:
            print(f"   >> Suggestion: {service.suggestion}")

    print("\n" + BORDER)
    print("Please fix the issues above and restart the application.")
    print(BORDER + "\n")


def _print_table(title: str, header: Tuple[str, str], rows: Sequence[Tuple[str, str]]):
    print(f"\n{title}")
    print(RULE)
    print(f"{header[0]:<20} | {header[1]:<57}")
    print(RULE)
    for label, value in rows:
        print(f"{label:<20} | {value:<57}")
    print(RULE)


def display_service_info():
    """Print endpoints and effective settings once every check passed."""
    api_base = f"http://localhost:{settings.fastapi_port}"
    pool = f"{settings.database_pool_size} connections (+ {settings.database_max_overflow} overflow)"

    print("\n" + BORDER)
    print("SERVICE ENDPOINTS & CONNECTION INFORMATION")
    print(BORDER)
    _print_table(
        "FASTAPI SERVICE",
        ("Service", "URL"),
        [
            ("Main API", api_base + "/"),
            ("API Documentation", api_base + "/api/docs"),
            ("Auth", api_base + "/api/auth"),
            ("Health Check", api_base + "/health"),
        ],
    )
    _print_table(
        "POSTGRESQL DATABASE",
        ("Parameter", "Value"),
        [
            ("Host", settings.database_host),
            ("Port", str(settings.database_port)),
            ("Database", settings.database_name),
            ("Connection Pool", pool),
        ],
    )
    _print_table(
        "SECURITY",
        ("Parameter", "Value"),
        [
            ("JWT Algorithm", settings.jwt_algorithm),
            ("Access Token TTL", f"{settings.access_token_expiration_secs}s"),
            ("Refresh Token TTL", f"{settings.refresh_token_expiration_secs}s"),
            ("Public Org", settings.public_organization_name),
        ],
    )
    print(BORDER + "\n")
    logger.info("Service endpoints and connection information displayed")


def _database_status(**kwargs) -> ServiceStatus:
    return ServiceStatus(
        name="PostgreSQL",
        connection_details={
            "host": settings.database_host,
            "port": str(settings.database_port),
            "database": settings.database_name,
        },
        **kwargs,
    )


async def verify_database_connectivity() -> ServiceStatus:
    try:
        if await db_manager.ping():
            return _database_status(status="connected")
        return _database_status(
            status="failed",
            error_message="Connection test query failed",
            suggestion="Check database permissions and query execution",
        )
    except ConnectionRefusedError:
        return _database_status(
            status="failed",
            error_message="Connection refused - PostgreSQL is not running or not accessible",
            suggestion=f"Start PostgreSQL server or check if it's running on {settings.database_host}:{settings.database_port}",
        )
    except Exception as e:
        return _database_status(
            status="failed",
            error_message=str(e),
            suggestion="Check database configuration in .env file and verify credentials",
        )


def verify_security_configuration() -> ServiceStatus:
    """Check that the configured keys can sign tokens and encrypt fields."""
    from app.auth.providers import get_field_cipher, get_token_codec

    details = {"jwt_algorithm": settings.jwt_algorithm}
    try:
        sample = "startup-check"
        field_cipher = get_field_cipher()
        if field_cipher.decrypt(field_cipher.encrypt(sample)) != sample:
            raise ValueError("Field encryption round trip mismatch")

        token_codec = get_token_codec()
        token = token_codec.generate_token({"check": sample}, expires_in=60)
        if token_codec.verify_token(token).get("check") != sample:
            raise ValueError("Token signing round trip mismatch")
    except Exception as e:
        return ServiceStatus(
            name="Security",
            status="failed",
            error_message=str(e),
            suggestion="Check JWT_SECRET_KEY and AES_ENCRYPTION_KEY in the .env file",
            connection_details=details,
        )

    return ServiceStatus(name="Security", status="connected", connection_details=details)
