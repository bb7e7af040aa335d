#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Best-effort delivery of order events to the agent's webhook."""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class WebhookNotifier:
  """Posts JSON payloads to agent webhooks, at most once."""

  def __init__(
      self,
      timeout: float = 5.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.timeout = timeout
    self.transport = transport

  async def notify(self, url: str, payload: Dict[str, Any]) -> bool:
    """Delivers `payload` to `url`.

    Errors are logged and swallowed.

    Returns:
      True when the webhook answered with a 2xx status.
    """
    try:
      async with httpx.AsyncClient(
          timeout=self.timeout, transport=self.transport
      ) as client:
        response = await client.post(url, json=payload)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Failed to notify webhook at %s: %s", url, e)
      return False

    if response.is_success:
      logger.info("Notified webhook at %s (%d)", url, response.status_code)
      return True
    logger.warning(
        "Webhook at %s answered with status %d", url, response.status_code
    )
    return False
