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

"""Resolves the order webhook of an agent from its UCP-Agent profile."""

import base64
import json
import logging
import re
from typing import Any, Optional
import urllib.parse

import httpx
from pydantic import BaseModel
from pydantic import ValidationError

from .. import constants

logger = logging.getLogger(__name__)

_PROFILE_RE = re.compile(r'profile="([^"]+)"')


class UcpConfig(BaseModel):
  webhook_url: Optional[str] = None


class Capability(BaseModel):
  name: Optional[str] = None
  config: Optional[UcpConfig] = None


class UcpProfile(BaseModel):
  capabilities: list[Capability] = []


class AgentProfile(BaseModel):
  ucp: Optional[UcpProfile] = None

  def order_webhook_url(self) -> Optional[str]:
    if not self.ucp:
      return None
    for cap in self.ucp.capabilities:
      if cap.name != constants.ORDER_CAPABILITY:
        continue
      if cap.config and cap.config.webhook_url:
        return cap.config.webhook_url
    return None


def extract_profile_uri(ucp_agent: Optional[str]) -> Optional[str]:
  if not ucp_agent:
    return None
  match = _PROFILE_RE.search(ucp_agent)
  return match.group(1) if match else None


def decode_data_uri(uri: str) -> str:
  """Returns the payload of a `data:` URI as text."""
  header, _, payload = uri.partition(",")
  if header.endswith(";base64"):
    return base64.b64decode(payload).decode("utf-8")
  return urllib.parse.unquote(payload)


class AgentProfileResolver:
  """Fetches agent profiles referenced by the UCP-Agent header."""

  def __init__(
      self,
      timeout: float = 5.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.timeout = timeout
    self.transport = transport

  async def resolve_webhook_url(self, ucp_agent: Optional[str]) -> Optional[str]:
    """Returns the order webhook URL of the calling agent, if any.

    Failures are logged and result in no webhook; they never fail the
    request.
    """
    profile_uri = extract_profile_uri(ucp_agent)
    if not profile_uri:
      return None

    try:
      document = await self._load(profile_uri)
      if document is None:
        return None
      profile = AgentProfile.model_validate(document)
    except ValidationError as e:
      logger.error(
          "Failed to validate Agent Profile from %s: %s", profile_uri, e
      )
      return None
    except httpx.HTTPError as e:
      logger.error("Network error fetching profile from %s: %s", profile_uri, e)
      return None
    except ValueError as e:
      logger.error("Failed to decode profile from %s: %s", profile_uri, e)
      return None

    webhook_url = profile.order_webhook_url()
    if not webhook_url:
      logger.warning("No webhook_url found in profile from %s", profile_uri)
    return webhook_url

  async def _load(self, profile_uri: str) -> Optional[Any]:
    if profile_uri.startswith("data:"):
      return json.loads(decode_data_uri(profile_uri))

    if not profile_uri.startswith(("http://", "https://")):
      logger.warning("Unsupported profile URI scheme: %s", profile_uri)
      return None

    async with httpx.AsyncClient(
        timeout=self.timeout, transport=self.transport
    ) as client:
      response = await client.get(profile_uri)
    if response.status_code != 200:
      logger.error(
          "Failed to fetch profile from %s: Status %d",
          profile_uri,
          response.status_code,
      )
      return None
    return response.json()
