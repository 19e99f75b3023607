"""Notification utilities for failed sync passes."""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class NotificationService:
    """Posts failed-pass notifications to an optional webhook."""

    def __init__(
        self,
        enabled: Optional[bool] = None,
        webhook_url: Optional[str] = None
    ):
        """Initialize notification service, defaulting to environment settings."""
        if enabled is None:
            enabled = os.getenv("ENABLE_NOTIFICATIONS", "false").lower() == "true"
        self.notification_enabled = enabled
        self.notification_webhook = webhook_url or os.getenv("NOTIFICATION_WEBHOOK_URL")

    async def send_sync_failure_notification(
        self,
        user_id: Optional[str],
        device_id: str,
        error_message: str,
        context: Optional[dict] = None
    ):
        """
        Send notification for a failed sync pass.

        Args:
            user_id: The user ID, if known
            device_id: The device that ran the pass
            error_message: The error message
            context: Optional additional context
        """
        if not self.notification_enabled:
            logger.debug("Notifications disabled, skipping sync failure notification")
            return

        notification_message = (
            f"Sync pass failed\n"
            f"User ID: {user_id}\n"
            f"Device: {device_id}\n"
            f"Error: {error_message}\n"
        )

        if context:
            notification_message += f"Context: {context}\n"

        logger.warning(f"SYNC FAILURE NOTIFICATION: {notification_message}")

        if self.notification_webhook:
            try:
                async with httpx.AsyncClient() as client:
                    await client.post(
                        self.notification_webhook,
                        json={
                            "text": notification_message,
                            "user_id": user_id,
                            "device_id": device_id,
                            "error": error_message
                        },
                        timeout=10.0
                    )
                logger.info("Sync failure notification sent")
            except httpx.HTTPError as e:
                logger.error(f"Failed to send notification: {e}")
