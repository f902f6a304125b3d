"""Notification fanout for alert lifecycle events."""

from email.message import EmailMessage
from typing import Protocol

import aiosmtplib
import nats

from ..core.config import settings
from ..core.logging import get_logger
from ..models.alert import AlertEvent, AlertEventType

logger = get_logger(__name__)


class NotificationPublisher(Protocol):
    """Delivers alert events to one user or, with ``None``, to everyone."""

    async def publish(self, recipient: str | None, event: AlertEvent) -> None: ...


class NATSPublisher:
    """Publishes alert events as JSON on per-user and broadcast subjects."""

    def __init__(self, url: str | None = None, subject_prefix: str | None = None) -> None:
        self.url = url or settings.nats_url
        self.subject_prefix = subject_prefix or settings.nats_subject_prefix
        self.nc: nats.NATS | None = None

    async def connect(self) -> None:
        """Connect to NATS server."""
        try:
            self.nc = await nats.connect(self.url)
            logger.info("nats_connected", url=self.url)
        except Exception as e:
            logger.error("nats_connection_failed", error=str(e))
            raise

    async def close(self) -> None:
        """Flush and disconnect."""
        if self.nc:
            await self.nc.drain()
            self.nc = None
            logger.info("nats_disconnected")

    def subject_for(self, recipient: str | None) -> str:
        """NATS subject carrying events for a recipient."""
        if recipient is None:
            return f"{self.subject_prefix}.broadcast"
        return f"{self.subject_prefix}.user.{recipient}"

    async def publish(self, recipient: str | None, event: AlertEvent) -> None:
        if self.nc is None:
            raise RuntimeError("NATS not connected")
        await self.nc.publish(self.subject_for(recipient), event.model_dump_json().encode())


class NullPublisher:
    """Publisher used when messaging is disabled."""

    async def publish(self, recipient: str | None, event: AlertEvent) -> None:
        logger.debug(
            "notification_dropped",
            recipient=recipient,
            event_type=event.type.value,
            alert_id=event.alert.id,
        )


class EmailPublisher:
    """Mails newly opened alerts to recipients whose monitor opted in.

    Acknowledgements and broadcasts are not mailed. Recipients without an
    address on file are skipped.
    """

    def __init__(
        self,
        hostname: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        use_tls: bool | None = None,
        start_tls: bool | None = None,
    ) -> None:
        self.hostname = hostname or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password
        self.sender = sender or settings.smtp_from_email
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.start_tls = settings.smtp_start_tls if start_tls is None else start_tls

    def build_message(self, address: str, event: AlertEvent) -> EmailMessage:
        alert = event.alert
        device_name = event.device_name or alert.device_id
        subject = (
            f"[{alert.severity.value.upper()}] Traffic Alert: "
            f"{device_name} - {alert.interface_name or 'device'}"
        )
        lines = [
            "Traffic Alert Notification",
            "",
            f"Router: {device_name}",
            f"Interface: {alert.interface_name or '-'}",
            f"Severity: {alert.severity.value}",
            "",
            alert.message,
        ]
        if alert.current_bps is not None and alert.threshold_bps is not None:
            lines += [
                "",
                f"Current traffic: {alert.current_bps / 1024:.2f} KB/s",
                f"Threshold: {alert.threshold_bps / 1024:.2f} KB/s",
            ]
        lines += ["", f"Opened at {alert.created_at.isoformat()}"]

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = address
        message.set_content("\n".join(lines))
        return message

    async def publish(self, recipient: str | None, event: AlertEvent) -> None:
        if event.type != AlertEventType.CREATED or recipient is None:
            return
        address = event.email_recipients.get(recipient)
        if not address:
            return
        await aiosmtplib.send(
            self.build_message(address, event),
            hostname=self.hostname,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            use_tls=self.use_tls,
            start_tls=self.start_tls,
        )
        logger.info("alert_email_sent", alert_id=event.alert.id, recipient=recipient)


class CompositePublisher:
    """Hands each event to several channels; one failing does not starve the rest."""

    def __init__(self, publishers: list[NotificationPublisher]) -> None:
        self.publishers = list(publishers)

    async def publish(self, recipient: str | None, event: AlertEvent) -> None:
        first_error: Exception | None = None
        for publisher in self.publishers:
            try:
                await publisher.publish(recipient, event)
            except Exception as e:
                logger.warning(
                    "notification_channel_failed",
                    channel=type(publisher).__name__,
                    recipient=recipient,
                    alert_id=event.alert.id,
                    error=str(e),
                )
                first_error = first_error or e
        if first_error is not None:
            raise first_error

    async def close(self) -> None:
        for publisher in self.publishers:
            close = getattr(publisher, "close", None)
            if close is not None:
                await close()


async def fan_out(
    publisher: NotificationPublisher,
    recipients: list[str],
    event: AlertEvent,
) -> int:
    """Deliver an event to every recipient, broadcasting when there are none.

    Best effort: failures are logged and never propagate to the caller.
    Returns the number of successful deliveries.
    """
    targets: list[str | None] = list(recipients) or [None]
    delivered = 0
    for recipient in targets:
        try:
            await publisher.publish(recipient, event)
            delivered += 1
        except Exception as e:
            logger.warning(
                "notification_publish_failed",
                recipient=recipient,
                alert_id=event.alert.id,
                event_type=event.type.value,
                error=str(e),
            )
    return delivered
