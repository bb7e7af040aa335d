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

"""Implementation of the UCP checkout routes.

Handlers take the raw JSON body: the idempotency fingerprint is computed on
exactly what the client sent, and the service validates it into request
models itself.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Body
from fastapi import Depends

from .. import dependencies
from ..routing import Operation
from ..routing import ProtocolRoute
from ..routing import ROUTE_TABLE
from ..services.agent_profile import AgentProfileResolver
from ..services.checkout_service import CheckoutService
from ..services.webhook import WebhookNotifier
from .discovery import get_merchant_profile

logger = logging.getLogger(__name__)


async def create_checkout(
    body: Dict[str, Any] = Body(...),
    context: dependencies.RequestContext = Depends(
        dependencies.request_context
    ),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> Dict[str, Any]:
  """Create Checkout Implementation."""
  return await checkout_service.create_checkout(body, context.idempotency_key)


async def get_checkout(
    checkout_id: str,
    context: dependencies.RequestContext = Depends(
        dependencies.request_context
    ),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> Dict[str, Any]:
  """Get Checkout Implementation."""
  del context  # Unused.
  return await checkout_service.get_checkout(checkout_id)


async def update_checkout(
    checkout_id: str,
    body: Dict[str, Any] = Body(...),
    context: dependencies.RequestContext = Depends(
        dependencies.request_context
    ),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> Dict[str, Any]:
  """Update Checkout Implementation."""
  return await checkout_service.update_checkout(
      checkout_id, body, context.idempotency_key
  )


async def complete_checkout(
    checkout_id: str,
    background_tasks: BackgroundTasks,
    body: Dict[str, Any] = Body(...),
    context: dependencies.RequestContext = Depends(
        dependencies.request_context
    ),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
    profile_resolver: AgentProfileResolver = Depends(
        dependencies.get_agent_profile_resolver
    ),
    notifier: WebhookNotifier = Depends(dependencies.get_webhook_notifier),
) -> Dict[str, Any]:
  """Complete Checkout Implementation."""
  # Resolved before the session lock is taken.
  webhook_url = await profile_resolver.resolve_webhook_url(context.ucp_agent)

  result = await checkout_service.complete_checkout(
      checkout_id, body, context.idempotency_key, locale=context.locale
  )

  if webhook_url:
    background_tasks.add_task(notifier.notify, webhook_url, result)
  return result


async def tokenize(
    body: Dict[str, Any] = Body(...),
    context: dependencies.RequestContext = Depends(
        dependencies.request_context
    ),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> Dict[str, Any]:
  """Tokenize Implementation."""
  del context  # Unused.
  return await checkout_service.tokenize(body)


# Map operation to implementation
IMPLEMENTATIONS = {
    Operation.DISCOVERY: get_merchant_profile,
    Operation.CREATE_SESSION: create_checkout,
    Operation.GET_SESSION: get_checkout,
    Operation.MODIFY_SESSION: update_checkout,
    Operation.COMPLETE_SESSION: complete_checkout,
    Operation.TOKENIZE: tokenize,
}


def apply_implementation() -> APIRouter:
  """Builds the protocol router from the route table.

  Returns:
    An APIRouter whose routes convert every failure into a protocol error.
  """
  router = APIRouter(route_class=ProtocolRoute)
  for route in ROUTE_TABLE:
    router.add_api_route(
        route.path,
        IMPLEMENTATIONS[route.operation],
        methods=[route.method],
        status_code=route.status_code,
        operation_id=route.operation.value,
        name=route.operation.value,
    )
  return router
