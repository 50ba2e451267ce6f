"""Webhook trigger handler.

External systems POST to /api/v1/webhooks/<identifier>. The identifier in
the workflow's trigger_config selects the workflow; an optional shared
secret enables HMAC-SHA256 signature verification of the raw body.
"""

import hashlib
import hmac
import re
from typing import Any, Optional

from core.constants import TriggerType
from triggers.base import BaseTriggerHandler, TriggerEvent

SIGNATURE_HEADER = "X-Signature"

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")


def compute_signature(secret: str, body: bytes) -> str:
    """Signature header value for `body`: "sha256=<hex digest>"."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookTriggerHandler(BaseTriggerHandler):
    """Handler for webhook-based triggers.

    Config schema:
        {
            "identifier": "new-lead",        # matched against the request path
            "secret": "..."                  # optional HMAC secret
        }
    """

    trigger_type = TriggerType.WEBHOOK

    def validate_config(self, config: dict) -> tuple[bool, Optional[str]]:
        if not isinstance(config, dict):
            return False, "Config must be a dict"
        identifier = config.get("identifier")
        if not identifier:
            return False, "Webhook trigger requires an identifier"
        if not _IDENTIFIER_PATTERN.match(str(identifier)):
            return False, "Webhook identifier may only contain letters, digits, '-' and '_'"
        return True, None

    def matches(self, config: dict, identifier: str) -> bool:
        return bool(config) and str(config.get("identifier", "")) == identifier

    def verify_signature(self, config: dict, body: bytes, signature: Optional[str]) -> bool:
        """Verify the HMAC signature of a webhook payload."""
        secret = (config or {}).get("secret")
        if not secret:
            return True  # No secret configured, skip verification
        if not signature:
            return False
        return hmac.compare_digest(compute_signature(secret, body), signature)

    def build_context(self, event: TriggerEvent) -> dict[str, Any]:
        context = {
            "trigger": {"type": "webhook", "receivedAt": event.timestamp.isoformat()},
            "webhookData": event.payload,
        }
        # Top-level payload keys are addressable directly ({leadId})
        for key, value in event.payload.items():
            if isinstance(key, str) and key not in context:
                context[key] = value
        return context
