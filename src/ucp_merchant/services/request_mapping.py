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

"""Maps checkout requests onto a working basket.

Every request starts from an empty basket. Modify and complete first merge
the request with the stored snapshot of the session, so the basket always
reflects the full effective state rather than only the fields sent last.
"""

import logging
from typing import Any, Dict, List, Optional

from .. import db
from ..models import BuyerRequest
from ..models import CheckoutRequest
from ..models import DiscountsRequest
from ..models import FulfillmentMethodRequest
from ..models import FulfillmentRequest
from ..models import LineItemRequest
from .basket import Address
from .basket import BasketAdapter
from .basket import WorkingBasket
from .destinations import candidate_destinations
from .destinations import select_destination

logger = logging.getLogger(__name__)


async def apply_checkout_request(
    adapter: BasketAdapter,
    basket: WorkingBasket,
    request: CheckoutRequest,
    merchant_locations: Optional[List[Dict[str, Any]]] = None,
) -> None:
  """Populates `basket` from `request` and prices it.

  Unknown products and rejected coupons are logged and skipped.

  Args:
    adapter: The commerce platform.
    basket: A fresh working basket.
    request: The effective checkout request.
    merchant_locations: Merchant stores offered as fallback destinations.
  """
  for index, line_item in enumerate(request.line_items or []):
    await adapter.add_line_item(
        basket,
        line_item.item.id,
        line_item.quantity,
        line_item_id=line_item.id or f"li_{index + 1}",
    )

  if request.buyer is not None:
    await adapter.set_buyer(basket, request.buyer)

  if request.discounts is not None:
    for code in request.discounts.codes:
      if not await adapter.apply_discount_code(basket, code):
        logger.info("Discount code %s was rejected", code)

  if request.fulfillment is not None:
    for method in request.fulfillment.methods:
      if method.type != "shipping":
        logger.info("Ignoring unsupported fulfillment type %s", method.type)
        continue
      await _apply_shipping_method(
          adapter, basket, method, merchant_locations
      )

  adapter.normalize_shipments(basket)
  await adapter.recalculate_totals(basket)


async def _apply_shipping_method(
    adapter: BasketAdapter,
    basket: WorkingBasket,
    method: FulfillmentMethodRequest,
    merchant_locations: Optional[List[Dict[str, Any]]],
) -> None:
  shipment = basket.default_shipment
  if shipment is None:
    return

  if method.destinations or method.selected_destination_id:
    candidates = candidate_destinations(
        basket, shipment, method, merchant_locations
    )
    selected = select_destination(candidates, method)
    if selected is None and method.selected_destination_id:
      logger.info(
          "Selected destination %s is not a candidate",
          method.selected_destination_id,
      )

    if selected is not None:
      adapter.set_fulfillment_destination(
          basket, shipment, Address.from_destination(selected)
      )
      shipment.custom["destination_id"] = selected["id"]

  option_id = method.selected_option_id
  if option_id and not await adapter.set_shipping_option(shipment, option_id):
    logger.info("Shipping option %s not found", option_id)


def _stored_line_items(data: Dict[str, Any]) -> List[LineItemRequest]:
  return [
      LineItemRequest(
          id=li.get("id"),
          item={"id": li["item"]["id"]},
          quantity=li.get("quantity") or 1,
      )
      for li in data.get("line_items") or []
      if li.get("item") and li["item"].get("id")
  ]


def _stored_buyer(record: db.CheckoutSession) -> Optional[BuyerRequest]:
  if not (record.email or record.full_name or record.consent):
    return None
  return BuyerRequest(
      email=record.email,
      full_name=record.full_name,
      consent=record.consent or None,
  )


def _stored_method(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
  methods = (data.get("fulfillment") or {}).get("methods") or []
  return methods[0] if methods else None


def _carried_method(stored: Dict[str, Any]) -> FulfillmentMethodRequest:
  """Turns a stored fulfillment method back into a request method.

  A destination is only carried when one was selected; otherwise the method
  is reduced to its type so that nothing is auto-selected on the next turn.
  """
  if not stored.get("selected_destination_id"):
    return FulfillmentMethodRequest(type=stored.get("type") or "shipping")

  groups = []
  for group in stored.get("groups") or []:
    if group.get("selected_option_id"):
      groups.append({"selected_option_id": group["selected_option_id"]})
      break
  return FulfillmentMethodRequest.model_validate({
      "type": stored.get("type") or "shipping",
      "destinations": stored.get("destinations") or [],
      "selected_destination_id": stored["selected_destination_id"],
      "groups": groups,
  })


def _merge_fulfillment(
    requested: Optional[FulfillmentRequest], data: Dict[str, Any]
) -> Optional[FulfillmentRequest]:
  stored = _stored_method(data)
  if requested is None or not requested.methods:
    if stored is None:
      return requested
    return FulfillmentRequest(methods=[_carried_method(stored)])

  if stored is None:
    return requested

  methods = list(requested.methods)
  first = methods[0]
  if not first.destinations and not first.selected_destination_id:
    carried = _carried_method(stored)
    update = {
        "destinations": carried.destinations,
        "selected_destination_id": carried.selected_destination_id,
    }
    if not first.groups:
      update["groups"] = carried.groups
    methods[0] = first.model_copy(update=update)
  return FulfillmentRequest(methods=methods)


def merge_with_snapshot(
    request: CheckoutRequest, record: db.CheckoutSession
) -> CheckoutRequest:
  """Fills the parts of a modify request the client left out.

  Args:
    request: The modify request.
    record: The stored checkout session.

  Returns:
    The effective request: the stored snapshot overlaid with the request.
  """
  data = record.data or {}

  buyer = request.buyer
  stored_buyer = _stored_buyer(record)
  if buyer is None:
    buyer = stored_buyer
  elif stored_buyer is not None:
    update = {
        name: getattr(stored_buyer, name)
        for name in ("email", "full_name", "consent")
        if getattr(buyer, name) is None and getattr(stored_buyer, name)
    }
    if update:
      buyer = buyer.model_copy(update=update)

  discounts = request.discounts
  if discounts is None:
    codes = (data.get("discounts") or {}).get("codes") or []
    if codes:
      discounts = DiscountsRequest(codes=codes)

  return CheckoutRequest(
      currency=request.currency or data.get("currency"),
      line_items=(
          request.line_items
          if request.line_items is not None
          else _stored_line_items(data)
      ),
      buyer=buyer,
      discounts=discounts,
      fulfillment=_merge_fulfillment(request.fulfillment, data),
  )


def request_from_snapshot(record: db.CheckoutSession) -> CheckoutRequest:
  """Rebuilds the effective request of a stored checkout session."""
  return merge_with_snapshot(CheckoutRequest(), record)
