"""Twilio telephony gateway."""
import asyncio
import logging
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from callagent.core.config import Settings
from callagent.core.errors import UpstreamUnavailable
from callagent.core.logging import mask_phone

logger = logging.getLogger(__name__)

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


class TwilioGateway:
    """Places and ends calls through the Twilio REST API."""

    def __init__(self, account_sid: str, auth_token: str, phone_number: str, client: Optional[Client] = None):
        self.phone_number = phone_number
        self.client = client or Client(account_sid, auth_token)

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["TwilioGateway"]:
        """Build a gateway, or None when Twilio is not configured."""
        if not (
            settings.twilio_account_sid
            and settings.twilio_auth_token
            and settings.twilio_phone_number
        ):
            logger.warning("[GATEWAY] Twilio credentials not set - outbound calls disabled")
            return None
        return cls(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
        )

    async def place_call(self, to: str, voice_url: str, status_callback_url: str) -> str:
        """Start an outbound call and return the provider call SID."""

        def _create():
            return self.client.calls.create(
                to=to,
                from_=self.phone_number,
                url=voice_url,
                method="POST",
                status_callback=status_callback_url,
                status_callback_event=STATUS_CALLBACK_EVENTS,
                status_callback_method="POST",
                timeout=60,
            )

        try:
            call = await asyncio.to_thread(_create)
        except TwilioException as e:
            logger.error(f"[GATEWAY] Failed to place call - To: {mask_phone(to)}, Error: {str(e)}")
            raise UpstreamUnavailable(f"Twilio call failed: {str(e)}") from e

        logger.info(f"[GATEWAY] Call placed - To: {mask_phone(to)}, CallSid: {call.sid}")
        return call.sid

    async def end_call(self, call_sid: str) -> None:
        """Hang up a live call."""
        try:
            await asyncio.to_thread(
                lambda: self.client.calls(call_sid).update(status="completed")
            )
        except TwilioException as e:
            logger.error(f"[GATEWAY] Failed to end call - CallSid: {call_sid}, Error: {str(e)}")
            raise UpstreamUnavailable(f"Failed to end call: {str(e)}") from e
        logger.info(f"[GATEWAY] Call ended via API - CallSid: {call_sid}")

    async def fetch_status(self, call_sid: str) -> Dict[str, Any]:
        """Get the provider's view of a call."""
        try:
            call = await asyncio.to_thread(lambda: self.client.calls(call_sid).fetch())
        except TwilioException as e:
            logger.error(f"[GATEWAY] Failed to fetch call status - CallSid: {call_sid}, Error: {str(e)}")
            raise UpstreamUnavailable(f"Failed to get call status: {str(e)}") from e
        return {
            "status": call.status,
            "duration": call.duration,
            "start_time": call.start_time,
            "end_time": call.end_time,
        }
