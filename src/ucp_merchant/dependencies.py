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

"""FastAPI dependencies for the UCP merchant server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- The per-request context (session id, Idempotency-Key, UCP-Agent, locale,
  base URL) and UCP version negotiation.
- Service instantiation (CheckoutService, FulfillmentService, TokenVault,
  WebhookNotifier, AgentProfileResolver).
- Database session management (Products DB sessions and Transactions DB
  units of work).

Every provider can be replaced with `app.dependency_overrides` in tests.
"""

import dataclasses
import re
from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi import Header
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from . import db
from .exceptions import InvalidRequestError
from .services.agent_profile import AgentProfileResolver
from .services.checkout_service import CheckoutService
from .services.fulfillment_service import FulfillmentService
from .services.token_vault import TokenVault
from .services.unit_of_work import SessionLocks
from .services.unit_of_work import UnitOfWork
from .services.webhook import WebhookNotifier


@dataclasses.dataclass(frozen=True)
class RequestContext:
  """Per-request inputs of a protocol operation."""

  checkout_id: Optional[str]
  idempotency_key: Optional[str]
  ucp_agent: Optional[str]
  locale: Optional[str]
  base_url: str


def validate_ucp_version(ucp_agent: Optional[str]) -> None:
  """Rejects agents that require a newer protocol version."""
  if not ucp_agent:
    return
  server_version = config.get_server_version()

  # Matches: version="2026-01-11" or version=2026-01-11
  match = re.search(
      r"(?:^|;)\s*version=(?:\"([^\"]+)\"|([^;]+))", ucp_agent, re.IGNORECASE
  )
  if not match:
    return
  # Group 1 is quoted value, Group 2 is unquoted value
  agent_version = (match.group(1) or match.group(2)).strip()

  if agent_version > server_version:
    raise InvalidRequestError(
        f"Version {agent_version} is not supported. This merchant implements"
        f" version {server_version}."
    )


def _primary_locale(accept_language: Optional[str]) -> Optional[str]:
  if not accept_language:
    return None
  first = accept_language.split(",")[0].split(";")[0].strip()
  return first.replace("-", "_") or None


async def request_context(
    request: Request,
    ucp_agent: Optional[str] = Header(None),
    idempotency_key: Optional[str] = Header(None),
    accept_language: Optional[str] = Header(None),
) -> RequestContext:
  """Extracts the request context and negotiates the protocol version."""
  validate_ucp_version(ucp_agent)
  return RequestContext(
      checkout_id=request.path_params.get("checkout_id"),
      idempotency_key=idempotency_key or None,
      ucp_agent=ucp_agent,
      locale=_primary_locale(accept_language),
      base_url=str(request.base_url).rstrip("/"),
  )


def get_shop_config() -> config.ShopConfig:
  """Dependency provider for the shop configuration."""
  return config.get_shop_config()


def get_fulfillment_service() -> FulfillmentService:
  """Dependency provider for FulfillmentService."""
  return FulfillmentService()


async def get_products_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Products DB session."""
  async with db.manager.products_session_factory() as session:
    yield session


def get_session_locks(request: Request) -> SessionLocks:
  """Returns the application wide registry of checkout session locks."""
  locks = getattr(request.app.state, "session_locks", None)
  if locks is None:
    locks = SessionLocks()
    request.app.state.session_locks = locks
  return locks


def get_unit_of_work(
    locks: SessionLocks = Depends(get_session_locks),
) -> UnitOfWork:
  """Dependency provider for Transactions DB units of work."""
  return UnitOfWork(db.manager.transactions_session_factory, locks)


def get_token_vault(
    shop_config: config.ShopConfig = Depends(get_shop_config),
) -> TokenVault:
  """Dependency provider for the payment token vault."""
  return TokenVault(shop_config.vault_keys, shop_config.token_ttl_seconds)


def get_webhook_notifier() -> WebhookNotifier:
  """Dependency provider for WebhookNotifier."""
  return WebhookNotifier()


def get_agent_profile_resolver() -> AgentProfileResolver:
  """Dependency provider for AgentProfileResolver."""
  return AgentProfileResolver()


def get_checkout_service(
    request: Request,
    shop_config: config.ShopConfig = Depends(get_shop_config),
    unit_of_work: UnitOfWork = Depends(get_unit_of_work),
    products_session: AsyncSession = Depends(get_products_db),
    token_vault: TokenVault = Depends(get_token_vault),
    fulfillment_service: FulfillmentService = Depends(get_fulfillment_service),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(
      shop_config,
      unit_of_work,
      products_session,
      token_vault,
      str(request.base_url),
      fulfillment_service=fulfillment_service,
  )
