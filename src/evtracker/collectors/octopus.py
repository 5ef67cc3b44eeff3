"""Octopus Energy API data collector.

Two feeds are used:
- REST half-hourly consumption for a meter (basic auth with the API key)
- GraphQL completedDispatches for Intelligent Octopus smart charging, which
  needs a short-lived Kraken token obtained from the API key

Credentials are passed explicitly to each call; nothing is cached on a
client object. Callers refresh the token by calling obtain_token() again.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from dotenv import load_dotenv

from ..tariffs import SMART_CHARGING_RATE_PENCE

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.octopus.energy/v1"
GRAPHQL_URL = f"{API_BASE_URL}/graphql/"
PAGE_SIZE = 1000
REQUEST_TIMEOUT = 30.0

OBTAIN_TOKEN_MUTATION = """
mutation obtainKrakenToken($input: ObtainJSONWebTokenInput!) {
  obtainKrakenToken(input: $input) {
    token
  }
}
"""

COMPLETED_DISPATCHES_QUERY = """
query completedDispatches($accountNumber: String!) {
  completedDispatches(accountNumber: $accountNumber) {
    start
    end
    delta
    meta {
      location
      source
    }
  }
}
"""


class OctopusError(Exception):
    """Base exception for Octopus Energy collector errors."""
    pass


@dataclass(frozen=True)
class OctopusCredentials:
    api_key: str
    mpan: str | None = None
    serial: str | None = None
    account_number: str | None = None


def get_credentials(require_meter: bool = False, require_account: bool = False) -> OctopusCredentials:
    """Read Octopus credentials from the environment."""
    api_key = os.environ.get("OCTOPUS_API_KEY")
    if not api_key:
        raise ValueError(
            "OCTOPUS_API_KEY environment variable not set.\n"
            "Get your key from https://octopus.energy/dashboard/new/accounts/personal-details/api-access\n"
            "Then set it: export OCTOPUS_API_KEY='sk_live_...'"
        )

    credentials = OctopusCredentials(
        api_key=api_key,
        mpan=os.environ.get("OCTOPUS_MPAN"),
        serial=os.environ.get("OCTOPUS_SERIAL"),
        account_number=os.environ.get("OCTOPUS_ACCOUNT_NUMBER"),
    )

    if require_meter and not (credentials.mpan and credentials.serial):
        raise ValueError(
            "OCTOPUS_MPAN and OCTOPUS_SERIAL environment variables must be set "
            "to fetch consumption data."
        )
    if require_account and not credentials.account_number:
        raise ValueError(
            "OCTOPUS_ACCOUNT_NUMBER environment variable not set (e.g. 'A-1234ABCD')."
        )
    return credentials


def get_smart_charging_rate() -> float:
    """Rate applied when the tariff is auto-detected.

    A fixed Intelligent Octopus off-peak constant; the account's actual
    tariff schedule is not queried.
    """
    return SMART_CHARGING_RATE_PENCE


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and data.get("detail"):
        return str(data["detail"])
    return str(data)


def fetch_consumption(
    credentials: OctopusCredentials,
    period_from: str,
    period_to: str,
    client: httpx.Client | None = None,
) -> list[dict[str, Any]]:
    """Fetch half-hourly consumption for the configured meter.

    Args:
        credentials: API key plus MPAN and meter serial
        period_from: ISO 8601 datetime, e.g. "2026-01-01T00:00:00Z"
        period_to: ISO 8601 datetime
        client: Optional httpx client (for testing)

    Returns:
        Raw result dicts with interval_start, interval_end and consumption,
        across all pages.
    """
    if not (credentials.mpan and credentials.serial):
        raise ValueError("MPAN and meter serial are required to fetch consumption")

    url = (
        f"{API_BASE_URL}/electricity-meter-points/{credentials.mpan}"
        f"/meters/{credentials.serial}/consumption/"
    )
    params: dict[str, Any] | None = {
        "period_from": period_from,
        "period_to": period_to,
        "page_size": PAGE_SIZE,
        "order_by": "period",
    }

    own_client = client is None
    client = client or httpx.Client(timeout=REQUEST_TIMEOUT)
    results = []
    try:
        while url:
            try:
                response = client.get(url, params=params, auth=(credentials.api_key, ""))
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise OctopusError(
                    f"Failed to fetch consumption: {_error_detail(e.response)}"
                ) from e
            except httpx.HTTPError as e:
                raise OctopusError(f"Failed to fetch consumption: {e}") from e

            data = response.json()
            results.extend(data.get("results", []))
            # The "next" URL already carries the query string
            url = data.get("next")
            params = None
    finally:
        if own_client:
            client.close()

    logger.debug("Fetched %d consumption intervals", len(results))
    return results


def _graphql(
    query: str,
    variables: dict[str, Any],
    token: str | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = token

    own_client = client is None
    client = client or httpx.Client(timeout=REQUEST_TIMEOUT)
    try:
        response = client.post(
            GRAPHQL_URL, json={"query": query, "variables": variables}, headers=headers
        )
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as e:
        raise OctopusError(f"GraphQL request failed: {_error_detail(e.response)}") from e
    except httpx.HTTPError as e:
        raise OctopusError(f"GraphQL request failed: {e}") from e
    finally:
        if own_client:
            client.close()

    if payload.get("errors"):
        messages = "; ".join(err.get("message", "unknown error") for err in payload["errors"])
        raise OctopusError(f"GraphQL error: {messages}")
    return payload.get("data") or {}


def obtain_token(api_key: str, client: httpx.Client | None = None) -> str:
    """Exchange the API key for a Kraken token (valid for about an hour)."""
    data = _graphql(OBTAIN_TOKEN_MUTATION, {"input": {"APIKey": api_key}}, client=client)
    token = (data.get("obtainKrakenToken") or {}).get("token")
    if not token:
        raise OctopusError("GraphQL authentication returned no token")
    return token


def fetch_completed_dispatches(
    token: str, account_number: str, client: httpx.Client | None = None
) -> list[dict[str, Any]]:
    """Fetch completed smart-charging dispatches for an account.

    Returns raw dispatch dicts: start, end, delta (negative kWh) and
    meta.location / meta.source.
    """
    data = _graphql(
        COMPLETED_DISPATCHES_QUERY, {"accountNumber": account_number}, token=token, client=client
    )
    dispatches = data.get("completedDispatches") or []
    logger.debug("Fetched %d completed dispatches", len(dispatches))
    return dispatches
