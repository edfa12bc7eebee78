"""Best-effort customer notifications.

A notification failure is logged and dropped; it never turns a successful
scaling or provisioning operation into a failure.
"""

import logging

import httpx

from autoscaler.db.service import DeploymentStore

logger = logging.getLogger(__name__)


class Notifier:
    """Posts customer-facing events to the bot webhook and logs them."""

    def __init__(
        self,
        store: DeploymentStore,
        webhook_url: str | None = None,
        webhook_token: str | None = None,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.store = store
        self.webhook_url = webhook_url
        self.webhook_token = webhook_token
        self.timeout = timeout
        self.transport = transport

    def _post(self, payload: dict) -> None:
        if not self.webhook_url:
            return
        headers = {}
        if self.webhook_token:
            headers["Authorization"] = f"Bearer {self.webhook_token}"
        with httpx.Client(timeout=self.timeout, transport=self.transport) as http:
            http.post(self.webhook_url, json=payload, headers=headers).raise_for_status()

    def _send(self, deployment, event_type: str, data: dict, message: str) -> bool:
        try:
            self._post({"type": event_type, "discordId": deployment.customer_id, "data": data})
            self.store.log_action(
                deployment.id,
                "customer_notification",
                "success",
                details={"type": event_type, "message": message, **data},
            )
            return True
        except Exception as exc:
            logger.warning("Failed to notify customer of %s for %s: %s", event_type, deployment.id, exc)
            return False

    def scaling_applied(self, deployment, direction: str, old_tier: str, new_tier: str, resources: dict) -> bool:
        verb = "increased" if direction == "up" else "decreased"
        return self._send(
            deployment,
            "bot.scaled",
            {"direction": direction, "old_tier": old_tier, "new_tier": new_tier, "new_resources": resources},
            f"Your bot resources were automatically {verb} based on usage patterns",
        )

    def bot_deployed(self, deployment) -> bool:
        return self._send(
            deployment,
            "bot.deployed",
            {
                "order_ref": deployment.order_ref,
                "server_name": deployment.name,
                "discord_guild_id": deployment.guild_id,
                "tier": deployment.tier,
                **deployment.resource_limits,
            },
            "Your bot has been deployed",
        )
