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

"""Checkout service for managing the lifecycle of checkout sessions.

This module provides the `CheckoutService` class, which encapsulates the
protocol operations on checkout sessions: create, get, modify, complete and
payment tokenization.

Every session-scoped operation runs in one unit of work: the idempotency
check, the basket mutations, the snapshot save and the idempotency record
either all commit or all roll back. The working basket is rebuilt from the
effective request on every call and discarded afterwards; the stored
response snapshot is the only persistent state of a session.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar
import uuid

from pydantic import BaseModel
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import constants
from .. import db
from ..config import ShopConfig
from ..enums import CheckoutStatus
from ..enums import FraudCheckResult
from ..exceptions import CheckoutNotModifiableError
from ..exceptions import FraudCheckFailedError
from ..exceptions import IdempotencyConflictError
from ..exceptions import InvalidCredentialError
from ..exceptions import InvalidRequestError
from ..exceptions import OrderProcessingError
from ..exceptions import ResourceNotFoundError
from ..models import BuyerRequest
from ..models import CheckoutRequest
from ..models import CompleteRequest
from ..models import PaymentData
from ..models import TokenizeRequest
from .basket import Address
from .basket import PaymentInstrument
from .basket import PlacedOrder
from .basket import WorkingBasket
from .fulfillment_service import FulfillmentService
from .idempotency import compute_hash
from .idempotency import IdempotencyStore
from .platform import PlatformBasketAdapter
from .request_mapping import apply_checkout_request
from .request_mapping import merge_with_snapshot
from .request_mapping import request_from_snapshot
from .response_builder import CheckoutSessionResponseBuilder
from .token_vault import TokenVault
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

SESSION_NOT_FOUND = "Session not found"


def parse_body(model: Type[_ModelT], body: Any) -> _ModelT:
  """Validates a raw JSON body, mapping failures to a protocol error."""
  if not isinstance(body, dict):
    raise InvalidRequestError("Malformed request body")
  try:
    return model.model_validate(body)
  except ValidationError as e:
    logger.info("Invalid %s: %s", model.__name__, e)
    raise InvalidRequestError("Malformed request body") from e


def _buyer_name(buyer: Optional[BuyerRequest]) -> Optional[str]:
  if buyer is None:
    return None
  if buyer.full_name:
    return buyer.full_name
  name = " ".join(n for n in (buyer.first_name, buyer.last_name) if n)
  return name or None


class CheckoutService:
  """Service for managing checkout sessions and orders."""

  def __init__(
      self,
      shop_config: ShopConfig,
      unit_of_work: UnitOfWork,
      products_session: AsyncSession,
      token_vault: TokenVault,
      base_url: str,
      fulfillment_service: Optional[FulfillmentService] = None,
      idempotency_store: Optional[IdempotencyStore] = None,
  ):
    self.shop_config = shop_config
    self.unit_of_work = unit_of_work
    self.products_session = products_session
    self.token_vault = token_vault
    self.base_url = base_url.rstrip("/")
    self.fulfillment_service = fulfillment_service or FulfillmentService()
    self.idempotency_store = idempotency_store or IdempotencyStore()

  def _adapter(self, transactions_session: AsyncSession):
    return PlatformBasketAdapter(
        self.products_session,
        transactions_session,
        self.shop_config,
        self.fulfillment_service,
    )

  def _builder(
      self, merchant_locations: List[Dict[str, Any]]
  ) -> CheckoutSessionResponseBuilder:
    return CheckoutSessionResponseBuilder(
        self.shop_config, self.base_url, merchant_locations
    )

  def _validate_currency(self, currency: Optional[str]) -> str:
    if not currency:
      raise InvalidRequestError("Currency is required")
    if currency.upper() not in self.shop_config.allowed_currencies:
      raise InvalidRequestError("Currency not allowed")
    return currency.upper()

  async def _save(
      self,
      session: AsyncSession,
      checkout_id: str,
      response: Dict[str, Any],
      basket: WorkingBasket,
      request: CheckoutRequest,
  ) -> None:
    await db.save_checkout(
        session,
        checkout_id,
        response["status"],
        response,
        email=basket.customer_email,
        full_name=_buyer_name(request.buyer),
        consent=request.buyer.consent if request.buyer else None,
    )
    # The idempotency record is written on the same row.
    await session.flush()

  async def create_checkout(
      self, body: Any, idempotency_key: Optional[str] = None
  ) -> Dict[str, Any]:
    """Creates a new checkout session."""
    request = parse_body(CheckoutRequest, body)
    currency = self._validate_currency(request.currency)
    checkout_id = str(uuid.uuid4())
    logger.info("Creating checkout session %s", checkout_id)

    async with self.unit_of_work.begin(checkout_id) as session:
      adapter = self._adapter(session)
      async with adapter.working_basket(currency) as basket:
        basket.checkout_id = checkout_id
        locations = await adapter.get_merchant_locations()
        await apply_checkout_request(adapter, basket, request, locations)
        response = self._builder(locations).build(
            checkout_id,
            basket,
            requested_fulfillment=request.fulfillment,
            requested_buyer=request.buyer,
        )
        await self._save(session, checkout_id, response, basket, request)

      await self.idempotency_store.save(
          session,
          checkout_id,
          idempotency_key,
          compute_hash(body),
          response,
          201,
      )
    return response

  async def get_checkout(self, checkout_id: str) -> Dict[str, Any]:
    """Returns the stored snapshot of a checkout session."""
    async with self.unit_of_work.begin() as session:
      data = await db.get_checkout_session(session, checkout_id)
    if data is None:
      raise ResourceNotFoundError(SESSION_NOT_FOUND)
    return data

  async def update_checkout(
      self,
      checkout_id: str,
      body: Any,
      idempotency_key: Optional[str] = None,
  ) -> Dict[str, Any]:
    """Applies a modify request on top of the stored session state."""
    request = parse_body(CheckoutRequest, body)
    logger.info("Updating checkout session %s", checkout_id)

    async with self.unit_of_work.begin(checkout_id) as session:
      record = await db.get_checkout_record(session, checkout_id)
      if record is None:
        raise ResourceNotFoundError(SESSION_NOT_FOUND)

      check = await self.idempotency_store.check_conflict(
          session, checkout_id, idempotency_key, body
      )
      if check.conflict:
        raise IdempotencyConflictError()

      if record.status == CheckoutStatus.COMPLETED.value:
        raise CheckoutNotModifiableError(
            "Cannot update checkout in state 'completed'"
        )

      effective = merge_with_snapshot(request, record)
      currency = self._validate_currency(effective.currency)

      adapter = self._adapter(session)
      async with adapter.working_basket(currency) as basket:
        basket.checkout_id = checkout_id
        locations = await adapter.get_merchant_locations()
        await apply_checkout_request(adapter, basket, effective, locations)
        response = self._builder(locations).build(
            checkout_id,
            basket,
            requested_fulfillment=effective.fulfillment,
            requested_buyer=effective.buyer,
        )
        await self._save(session, checkout_id, response, basket, effective)

      await self.idempotency_store.save(
          session,
          checkout_id,
          idempotency_key,
          check.request_hash,
          response,
          200,
      )
    return response

  async def _resolve_credential(
      self,
      session: AsyncSession,
      payment_data: PaymentData,
      checkout_id: str,
  ) -> Tuple[Dict[str, Any], Optional[str]]:
    """Returns the card credential to charge and the token it came from."""
    credential = payment_data.credential or {}
    if all(
        credential.get(field)
        for field in ("number", "expiry_month", "expiry_year", "cvc")
    ):
      return credential, None

    token = credential.get("token")
    if not token:
      raise InvalidCredentialError("Credential token is not valid")
    stored = await self.token_vault.redeem(session, token, checkout_id)
    return stored, token

  async def complete_checkout(
      self,
      checkout_id: str,
      body: Any,
      idempotency_key: Optional[str] = None,
      locale: Optional[str] = None,
  ) -> Dict[str, Any]:
    """Places the order of a checkout session.

    Args:
      checkout_id: The checkout session to complete.
      body: The raw complete request, with `payment_data` and optional
        `risk_signals`.
      idempotency_key: The Idempotency-Key header, if sent.
      locale: The buyer locale for the confirmation e-mail.

    Returns:
      The completed checkout document, including the order.

    Raises:
      ResourceNotFoundError: The session does not exist or has no buyer.
      IdempotencyConflictError: The key was used with another body.
      CheckoutNotModifiableError: The session is already completed.
      InvalidRequestError: The payment cannot be used.
      OrderProcessingError: The order could not be created, authorized or
        placed. The order is failed and the session stays open.
    """
    request = parse_body(CompleteRequest, body)
    if request.payment_data is None:
      raise InvalidRequestError("Payment data is required")
    handler_id = request.payment_data.handler_id
    if handler_id and handler_id != constants.CREDIT_CARD_HANDLER_ID:
      raise InvalidRequestError(f"Unsupported payment handler: {handler_id}")
    logger.info("Completing checkout session %s", checkout_id)

    failure: Optional[OrderProcessingError] = None
    order: Optional[PlacedOrder] = None
    async with self.unit_of_work.begin(checkout_id) as session:
      record = await db.get_checkout_record(session, checkout_id)
      if record is None or not record.data or not record.email:
        raise ResourceNotFoundError(SESSION_NOT_FOUND)

      check = await self.idempotency_store.check_conflict(
          session, checkout_id, idempotency_key, body
      )
      if check.conflict:
        raise IdempotencyConflictError()

      if record.status == CheckoutStatus.COMPLETED.value:
        raise CheckoutNotModifiableError(
            "Cannot complete checkout in state 'completed'"
        )

      logger.info(
          "Checkout started: email: %s, risk_signals: %s",
          record.email,
          request.risk_signals,
      )
      effective = request_from_snapshot(record)
      currency = self._validate_currency(effective.currency)
      credential, token = await self._resolve_credential(
          session, request.payment_data, checkout_id
      )

      adapter = self._adapter(session)
      async with adapter.working_basket(currency) as basket:
        basket.checkout_id = checkout_id
        locations = await adapter.get_merchant_locations()
        await apply_checkout_request(adapter, basket, effective, locations)
        self._apply_payment(adapter, basket, request.payment_data, credential)
        if effective.requests_fulfillment and adapter.ensure_shipping_methods(
            basket
        ):
          await adapter.recalculate_totals(basket)

        if not adapter.validate_payment(basket):
          raise InvalidRequestError("Payment not valid")
        if not adapter.calculate_payment_transaction(basket):
          raise InvalidRequestError("Payment not valid")

        try:
          order = await adapter.create_order(basket)
          await adapter.authorize_payment(order)
          if await adapter.run_fraud_check(basket) == FraudCheckResult.FAIL:
            raise FraudCheckFailedError(
                f"Fraud check failed for {basket.customer_email}"
            )
          await adapter.place_order(order)
        except OrderProcessingError as e:
          logger.error(
              "Order processing failed for checkout %s: %s",
              checkout_id,
              e.reason,
          )
          if order is not None:
            await adapter.fail_order(order)
          failure = e
        else:
          response = self._builder(locations).build(
              checkout_id,
              order,
              status=CheckoutStatus.COMPLETED,
              requested_fulfillment=effective.fulfillment,
              requested_buyer=effective.buyer,
          )
          await self._save(session, checkout_id, response, basket, effective)
          await self.idempotency_store.save(
              session,
              checkout_id,
              idempotency_key,
              check.request_hash,
              response,
              200,
          )
          if token:
            await self.token_vault.consume(session, token)

    # The failed order and released stock are committed before reporting.
    if failure is not None:
      raise failure

    try:
      await adapter.notify_customer(order, locale)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error(
          "Failed to notify customer of order %s: %s", order.order_no, e
      )

    logger.info(
        "Completed checkout session %s as order %s",
        checkout_id,
        order.order_no,
    )
    return response

  def _apply_payment(
      self,
      adapter: PlatformBasketAdapter,
      basket: WorkingBasket,
      payment_data: PaymentData,
      credential: Dict[str, Any],
  ) -> None:
    adapter.add_payment_instrument(
        basket,
        PaymentInstrument(
            method_id=payment_data.handler_id
            or constants.CREDIT_CARD_HANDLER_ID,
            brand=payment_data.brand or credential.get("brand"),
            card_number=credential.get("number"),
            expiry_month=credential.get("expiry_month"),
            expiry_year=credential.get("expiry_year"),
            cvc=credential.get("cvc"),
        ),
    )

    if payment_data.billing_address:
      billing = Address.from_destination(payment_data.billing_address)
      if not billing.address_country:
        billing.address_country = "US"
      if basket.billing_address is not None:
        billing.first_name = basket.billing_address.first_name
        billing.last_name = basket.billing_address.last_name
        billing.phone_number = basket.billing_address.phone_number
      basket.billing_address = billing

  async def tokenize(self, body: Any) -> Dict[str, str]:
    """Stores a payment credential in the vault and returns its token."""
    request = parse_body(TokenizeRequest, body)
    if not request.credential:
      raise InvalidRequestError("Credential is required")

    credential = dict(request.credential)
    if request.binding is not None:
      credential["binding"] = request.binding.model_dump(exclude_none=True)

    async with self.unit_of_work.begin() as session:
      token = await self.token_vault.tokenize(session, credential)
    return {"token": token}
