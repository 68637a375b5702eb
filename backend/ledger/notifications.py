"""WhatsApp Cloud API sender used for payment reminders."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import requests

from .helpers import get_setting, normalize_phone

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.facebook.com/{version}/{phone_number_id}/messages"


class WhatsAppNotifier:
    def __init__(
        self,
        access_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        *,
        api_version: str = "v20.0",
        timeout: int = 20,
        country_code: Optional[str] = None,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.timeout = timeout
        self.country_code = country_code

    @classmethod
    def from_settings(cls) -> "WhatsAppNotifier":
        return cls(
            access_token=get_setting("WHATSAPP_ACCESS_TOKEN"),
            phone_number_id=get_setting("WHATSAPP_PHONE_NUMBER_ID"),
            api_version=get_setting("WHATSAPP_API_VERSION", "v20.0"),
            country_code=get_setting("DEFAULT_COUNTRY_CODE", "20"),
        )

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not self.access_token or not self.phone_number_id:
            return False, "WhatsApp Cloud API is not configured. Set WHATSAPP_ACCESS_TOKEN and WHATSAPP_PHONE_NUMBER_ID."
        return True, None

    @property
    def endpoint(self) -> str:
        return GRAPH_URL.format(version=self.api_version, phone_number_id=self.phone_number_id)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def send_message(self, recipient: str, text: str) -> Tuple[bool, Optional[str]]:
        ok, reason = self.is_configured()
        if not ok:
            return False, reason
        to = normalize_phone(recipient, self.country_code)
        if not to:
            return False, "Recipient has no phone number"
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }
        try:
            response = requests.post(self.endpoint, headers=self._headers(), json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            return False, str(exc)
        if 200 <= response.status_code < 300:
            logger.debug("WhatsApp message sent to %s", to)
            return True, None
        return False, f"HTTP {response.status_code}: {response.text}"
