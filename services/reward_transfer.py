"""
Reward transfer service module.

Pays a round's reward to the player's wallet. The signing key lives with a
payout relay; this service only asks the relay to run
distribute([wallet], [amount]) and returns its receipt.
"""

import logging
from typing import Any, Dict, Optional

import requests

import config

logger = logging.getLogger(__name__)


class RewardTransferError(requests.RequestException):
    """Raised when the relay refuses or fails a transfer."""


class RewardTransferService:

    def __init__(self, service_url: Optional[str] = None, token: Optional[str] = None):
        self.service_url = (service_url or config.REWARD_SERVICE_URL).rstrip("/")
        if not self.service_url:
            raise ValueError("Reward transfer is not configured. Please set REWARD_SERVICE_URL.")
        if not self.service_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid REWARD_SERVICE_URL: {self.service_url}. Must start with http:// or https://")
        self.transfer_url = f"{self.service_url}/distribute"
        self.timeout = config.EXTERNAL_CALL_TIMEOUT_SEC
        self.headers = {"Content-Type": "application/json"}
        token = token if token is not None else config.REWARD_SERVICE_TOKEN
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def transfer(self, wallet: str, amount: int) -> Dict[str, Any]:
        """
        Transfer amount reward units to wallet.

        Returns:
            Receipt dict from the relay (at least "wallet" and "amount")

        Raises:
            ValueError: empty wallet or negative amount
            RewardTransferError: relay unreachable, timed out or returned an error
        """
        if not wallet:
            raise ValueError("wallet is required")
        if amount < 0:
            raise ValueError(f"amount must be >= 0, got {amount}")

        payload = {"recipients": [wallet], "amounts": [str(int(amount))]}
        try:
            response = requests.post(self.transfer_url, headers=self.headers, json=payload, timeout=self.timeout)
        except requests.Timeout:
            raise RewardTransferError(f"Reward transfer timed out after {self.timeout} seconds")
        except requests.RequestException as e:
            raise RewardTransferError(f"Reward transfer failed: {e}")

        if response.status_code not in (200, 201, 202):
            raise RewardTransferError(
                f"Reward relay returned status {response.status_code}: {response.text[:200]}"
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        receipt = body if isinstance(body, dict) else {"response": body}
        receipt.setdefault("wallet", wallet)
        receipt.setdefault("amount", int(amount))
        logger.info("Reward of %d sent to %s (tx=%s)", amount, wallet, receipt.get("transactionHash"))
        return receipt


# Global service instance
reward_transfer_service: Optional[RewardTransferService] = None


def get_reward_transfer_service() -> Optional[RewardTransferService]:
    """Get or create the global reward service; None when not configured."""
    global reward_transfer_service

    if reward_transfer_service is None:
        try:
            reward_transfer_service = RewardTransferService()
        except ValueError as e:
            logger.warning("Reward transfer configuration issue: %s", e)
            return None

    return reward_transfer_service
