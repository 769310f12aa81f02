import re
from typing import Callable, Optional

import httpx

from relay.config import Settings
from relay.logging_config import get_logger
from relay.services.result import Result

logger = get_logger("delivery")

PayloadEncoder = Callable[[str, str], dict]


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def is_channel_native(recipient: str) -> bool:
    """Channel ids such as ``123@lid`` or group JIDs cannot be sent to directly."""
    return "@" in recipient


def encode_primary(phone: str, text: str) -> dict:
    return {"phone": phone, "message": text, "isGroup": False}


def encode_fallback(phone: str, text: str) -> dict:
    return {"number": phone, "text": text}


# Tried in order; the first accepted shape wins.
PAYLOAD_ENCODERS: tuple[tuple[str, PayloadEncoder], ...] = (
    ("primary", encode_primary),
    ("fallback", encode_fallback),
)


class DeliveryClient:
    """Sends replies back to the sender through the messaging platform."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.send_url = f"{settings.delivery_base_url.rstrip('/')}/send-message"
        self.api_key = settings.delivery_api_key
        self.timeout = settings.delivery_timeout_seconds
        self.simulation_mode = settings.simulation_mode
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _attempt(self, client: httpx.AsyncClient, shape: str, payload: dict, phone: str) -> bool:
        try:
            response = await client.post(self.send_url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning(
                f"Delivery attempt failed: {exc}",
                extra={"context": {"phone": phone, "shape": shape}},
            )
            return False

        logger.info(
            "Delivery response",
            extra={
                "context": {
                    "phone": phone,
                    "shape": shape,
                    "status": response.status_code,
                    "body": response.text[:200],
                }
            },
        )
        return response.is_success

    async def deliver(self, recipient: str, text: str) -> Result[str]:
        """Send ``text`` to ``recipient``; never raises.

        On success the value is the name of the payload shape that was accepted.
        """
        if self.simulation_mode:
            logger.info("Simulation mode: delivery suppressed", extra={"context": {"recipient": recipient}})
            return Result.failure("Simulation mode is active", "simulation")

        if is_channel_native(recipient):
            logger.info("Recipient is not directly addressable", extra={"context": {"recipient": recipient}})
            return Result.failure("Recipient is a channel-native identifier", "not_addressable")

        phone = digits_only(recipient)
        if not phone:
            logger.warning("Recipient has no digits", extra={"context": {"recipient": recipient}})
            return Result.failure("Recipient has no phone digits", "invalid_recipient")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for shape, encode in PAYLOAD_ENCODERS:
                if await self._attempt(client, shape, encode(phone, text), phone):
                    logger.info("Reply delivered", extra={"context": {"phone": phone, "shape": shape}})
                    return Result.success(shape)

        logger.error("Delivery failed for every payload shape", extra={"context": {"phone": phone}})
        return Result.failure("All delivery attempts failed", "delivery_failed")
