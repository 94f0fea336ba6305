"""Slack incoming webhook sender."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib import error, request

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10  # Seconds


class SlackWebhookError(Exception):
    """Error resolving or posting to a Slack webhook."""

    pass


class SlackWebhook:
    """
    Post messages to one Slack channel through an incoming webhook.

    The webhook URL is read lazily from a JSON secret in AWS Secrets Manager.
    """

    def __init__(
        self,
        secret_name: str,
        secret_key: str,
        region: str = "us-east-1",
        secrets_client: Any | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the webhook sender.

        Args:
            secret_name: Name of the secret in Secrets Manager.
            secret_key: Key within the secret holding the webhook URL.
            region: AWS region for Secrets Manager.
            secrets_client: Optional boto3 Secrets Manager client.
            timeout: HTTP timeout in seconds.
        """
        self.secret_name = secret_name
        self.secret_key = secret_key
        self.region = region
        self.timeout = timeout
        self._secrets_client = secrets_client
        self._webhook_url: str | None = None

    @property
    def secrets_client(self) -> Any:
        if self._secrets_client is None:
            self._secrets_client = boto3.client("secretsmanager", region_name=self.region)
        return self._secrets_client

    @property
    def webhook_url(self) -> str:
        """Webhook URL, fetched once per sender."""
        if self._webhook_url is None:
            self._webhook_url = self._resolve_webhook_url()
        return self._webhook_url

    def _resolve_webhook_url(self) -> str:
        try:
            response = self.secrets_client.get_secret_value(SecretId=self.secret_name)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ResourceNotFoundException":
                raise SlackWebhookError(f"Secret '{self.secret_name}' not found") from e
            raise SlackWebhookError(f"Error retrieving secret: {e}") from e
        except BotoCoreError as e:
            raise SlackWebhookError(f"Error retrieving secret: {e}") from e

        if "SecretString" not in response:
            raise SlackWebhookError(
                f"Secret '{self.secret_name}' does not contain a string value"
            )

        try:
            secret_data = json.loads(response["SecretString"])
        except json.JSONDecodeError as e:
            raise SlackWebhookError(f"Secret '{self.secret_name}' is not valid JSON") from e

        url = secret_data.get(self.secret_key)
        if not url:
            raise SlackWebhookError(
                f"Secret key '{self.secret_key}' not found in secret '{self.secret_name}'"
            )
        return url

    def send(self, message: dict[str, Any]) -> bool:
        """
        Post a Block Kit payload.

        Returns:
            True when Slack accepted the message.

        Raises:
            SlackWebhookError: If the URL cannot be resolved or Slack rejects the post.
        """
        webhook_url = self.webhook_url

        try:
            req = request.Request(
                webhook_url,
                data=json.dumps(message).encode("utf-8"),
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            with request.urlopen(req, timeout=self.timeout) as response:
                status = response.status
                body = response.read().decode("utf-8")
        except error.HTTPError as e:
            raise SlackWebhookError(f"HTTP error sending to Slack: {e.code} - {e.reason}") from e
        except error.URLError as e:
            raise SlackWebhookError(f"URL error sending to Slack: {e.reason}") from e
        except (OSError, ValueError) as e:
            raise SlackWebhookError(f"Error sending to Slack: {e}") from e

        if status != 200 or body != "ok":
            raise SlackWebhookError(f"Slack API error: {status} - {body}")

        logger.debug("Posted message to Slack (%s)", self.secret_key)
        return True

    def send_text(self, text: str) -> bool:
        return self.send({"text": text})


class SlackWebhookManager:
    """Senders for every channel whose webhook lives in one shared secret."""

    def __init__(
        self,
        secret_name: str,
        region: str = "us-east-1",
        secrets_client: Any | None = None,
    ):
        self.secret_name = secret_name
        self.region = region
        self._secrets_client = secrets_client
        self._webhooks: dict[str, SlackWebhook] = {}

    def get_webhook(self, channel_key: str) -> SlackWebhook:
        """Sender for the channel whose URL is stored under channel_key."""
        if channel_key not in self._webhooks:
            self._webhooks[channel_key] = SlackWebhook(
                secret_name=self.secret_name,
                secret_key=channel_key,
                region=self.region,
                secrets_client=self._secrets_client,
            )
        return self._webhooks[channel_key]

    def send_to_channel(self, channel_key: str, message: dict[str, Any]) -> bool:
        return self.get_webhook(channel_key).send(message)
