"""
Outbound Notifications
----------------------
Interface to the email collaborator. Delivery itself is handled by another
service; the default dispatcher only records that a message was due.
"""

from typing import Protocol

from loguru import logger


class EmailDispatcher(Protocol):
    async def send_password_reset(self, email: str, recipient: str, url: str) -> None: ...

    async def send_invitation(
        self, email: str, organization_name: str, role: str, url: str
    ) -> None: ...


class LoggingEmailDispatcher:
    """Dispatcher used until a mail collaborator is wired in. Never logs links."""

    async def send_password_reset(self, email: str, recipient: str, url: str) -> None:
        logger.info(f"Password reset email queued for {recipient}")

    async def send_invitation(
        self, email: str, organization_name: str, role: str, url: str
    ) -> None:
        logger.info(f"Invitation email queued for {organization_name} ({role})")
