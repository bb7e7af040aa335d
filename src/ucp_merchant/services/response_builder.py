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

"""Builds UCP checkout documents from a working basket or an order.

The builder does no I/O: shipping options are already attached to the
shipments by the platform's price calculation, and merchant locations are
handed in by the caller.
"""

from typing import Any, Dict, List, Optional
import urllib.parse

from .. import constants
from ..config import ShopConfig
from ..enums import CheckoutStatus
from .basket import basket_of
from .basket import Container
from .basket import PlacedOrder
from .basket import Shipment
from .basket import WorkingBasket
from .destinations import candidate_destinations


class CheckoutSessionResponseBuilder:
  """Renders checkout session responses with progressive disclosure."""

  def __init__(
      self,
      shop_config: ShopConfig,
      base_url: str,
      merchant_locations: Optional[List[Dict[str, Any]]] = None,
  ):
    self.shop_config = shop_config
    self.base_url = base_url.rstrip("/")
    self.merchant_locations = merchant_locations or []

  def build_ucp_metadata(self) -> Dict[str, Any]:
    return {
        "version": constants.UCP_VERSION,
        "services": {
            constants.SHOPPING_SERVICE: {
                "version": constants.UCP_VERSION,
                "spec": constants.SHOPPING_SERVICE_SPEC,
                "rest": {
                    "schema": constants.SHOPPING_SERVICE_SCHEMA,
                    "endpoint": self.base_url,
                },
            }
        },
        "capabilities": [
            constants.CAPABILITIES[name]
            for name in self.shop_config.capabilities
            if name in constants.CAPABILITIES
        ],
    }

  def build_payment_handlers(self) -> List[Dict[str, Any]]:
    return [{
        "id": constants.CREDIT_CARD_HANDLER_ID,
        "name": constants.CREDIT_CARD_HANDLER_NAME,
        "version": constants.UCP_VERSION,
        "spec": "https://ucp.dev/specs/shopping/payment_handlers/credit_card",
        "config_schema": (
            "https://ucp.dev/schemas/shopping/payment_handlers/credit_card.json"
        ),
        "instrument_schemas": [constants.CARD_INSTRUMENT_SCHEMA],
        "config": {
            "endpoint": self.base_url + constants.TOKENIZE_PATH,
            "identity": {"access_token": f"tok_{self.shop_config.shop_id}"},
        },
    }]

  def build_links(self) -> List[Dict[str, Any]]:
    if not self.shop_config.has_capability("buyer_consent"):
      return []
    return [
        {"type": link_type, "url": self.base_url + path}
        for link_type, path in constants.BUYER_CONSENT_LINKS
    ]

  def build_profile(self) -> Dict[str, Any]:
    """Returns the discovery profile of this merchant."""
    profile = {
        "ucp": self.build_ucp_metadata(),
        "payment": {"handlers": self.build_payment_handlers()},
    }
    links = self.build_links()
    if links:
      profile["links"] = links
    return profile

  def build(
      self,
      session_id: str,
      container: Container,
      status: Optional[CheckoutStatus] = None,
      requested_fulfillment: Any = None,
      requested_buyer: Any = None,
  ) -> Dict[str, Any]:
    """Renders the checkout document.

    Args:
      session_id: The checkout session id.
      container: The working basket, or the placed order on completion.
      status: An explicit status, used verbatim. Otherwise the status is
        derived from the fulfillment state.
      requested_fulfillment: The fulfillment part of the effective request.
        Without it no fulfillment block or fulfillment total is emitted.
      requested_buyer: The buyer part of the effective request.

    Returns:
      The checkout document as a JSON compatible dict.
    """
    basket = basket_of(container)
    requests_fulfillment = bool(
        requested_fulfillment is not None and requested_fulfillment.methods
    )

    response: Dict[str, Any] = {
        "ucp": self.build_ucp_metadata(),
    }
    links = self.build_links()
    if links:
      response["links"] = links
    response["payment"] = {"handlers": self.build_payment_handlers()}

    if self.shop_config.has_capability("discount"):
      discounts = self._build_discounts(basket)
      if discounts:
        response["discounts"] = discounts

    buyer = self._build_buyer(basket, requested_buyer)
    if buyer:
      response["buyer"] = buyer

    response["id"] = session_id
    response["line_items"] = [
        {
            "id": li.id,
            "item": {
                "id": li.product_id,
                "title": li.title,
                "price": li.unit_price,
            },
            "quantity": li.quantity,
            "totals": [
                {"type": "subtotal", "amount": li.base_price},
                {"type": "total", "amount": li.base_price},
            ],
        }
        for li in basket.line_items
    ]
    response["currency"] = basket.currency
    response["totals"] = self._build_totals(basket, requests_fulfillment)

    fulfillment = None
    if requests_fulfillment and self.shop_config.has_capability("fulfillment"):
      fulfillment = self._build_fulfillment(basket, requested_fulfillment)
      response["fulfillment"] = fulfillment

    messages: List[Dict[str, Any]] = []
    if status is None:
      if fulfillment is not None and not _has_selected_option(fulfillment):
        status = CheckoutStatus.INCOMPLETE
        messages.append({
            "type": "error",
            "code": "missing",
            "path": constants.SELECTED_OPTION_PATH,
            "content": "Please select a fulfillment option",
            "severity": "recoverable",
        })
      else:
        status = CheckoutStatus.READY_FOR_COMPLETE
    response["status"] = status.value

    if messages:
      response["messages"] = messages

    if status == CheckoutStatus.COMPLETED and isinstance(
        container, PlacedOrder
    ):
      response["order"] = self._build_order(container)

    return response

  def _build_totals(
      self, basket: WorkingBasket, requests_fulfillment: bool
  ) -> List[Dict[str, Any]]:
    totals = [{"type": "subtotal", "amount": basket.merchandise_total}]

    default = basket.default_shipment
    if requests_fulfillment and (
        basket.shipping_total != 0
        or (default is not None and default.shipping_method_id)
    ):
      totals.append({"type": "fulfillment", "amount": basket.shipping_total})

    discount = basket.merchandise_total - basket.adjusted_merchandise_total
    if discount != 0:
      totals.append({"type": "discount", "amount": discount})

    totals.append({"type": "tax", "amount": basket.tax_total})

    if requests_fulfillment:
      total = basket.total_gross
    else:
      total = basket.adjusted_merchandise_total
    totals.append({"type": "total", "amount": total})
    return totals

  def _build_fulfillment(
      self, basket: WorkingBasket, requested_fulfillment: Any
  ) -> Dict[str, Any]:
    request_method = requested_fulfillment.first_method
    methods = []
    for shipment in basket.shipments:
      items = basket.items_in(shipment)
      if not items:
        continue
      methods.append(
          self._build_method(basket, shipment, items, request_method)
      )
    return {"methods": methods}

  def _build_method(
      self,
      basket: WorkingBasket,
      shipment: Shipment,
      items: List[Any],
      request_method: Any,
  ) -> Dict[str, Any]:
    line_item_ids = [li.id for li in items]
    destinations = candidate_destinations(
        basket, shipment, request_method, self.merchant_locations
    )
    method: Dict[str, Any] = {
        "id": shipment.id,
        "type": "shipping",
        "line_item_ids": line_item_ids,
        "destinations": destinations,
    }

    # The destination applied to the shipment while mapping the request.
    selected_id = shipment.custom.get("destination_id")
    if selected_id not in [d["id"] for d in destinations]:
      return method

    method["selected_destination_id"] = selected_id
    if shipment.options:
      group: Dict[str, Any] = {
          "id": f"group_{shipment.id}",
          "line_item_ids": line_item_ids,
          "options": [o.to_dict() for o in shipment.options],
      }
      selected_option = shipment.shipping_method_id
      requested_option = (
          request_method.selected_option_id if request_method else None
      )
      if requested_option and shipment.find_option(requested_option):
        selected_option = requested_option
      if selected_option:
        group["selected_option_id"] = selected_option
      method["groups"] = [group]
    return method

  def _build_discounts(self, basket: WorkingBasket) -> Dict[str, Any]:
    codes = [c.code for c in basket.coupons if c.valid]
    applied = []
    for coupon in basket.coupons:
      if not coupon.valid:
        continue
      for adjustment in coupon.adjustments:
        applied.append(
            _applied_discount(adjustment, code=coupon.code, automatic=False)
        )
    for adjustment in basket.price_adjustments:
      applied.append(_applied_discount(adjustment, code=None, automatic=True))

    discounts: Dict[str, Any] = {}
    if codes:
      discounts["codes"] = codes
    if applied:
      discounts["applied"] = applied
    return discounts

  def _build_buyer(
      self, basket: WorkingBasket, requested_buyer: Any
  ) -> Optional[Dict[str, Any]]:
    billing = basket.billing_address
    first_name = billing.first_name if billing else ""
    last_name = billing.last_name if billing else ""
    if not basket.customer_email and not first_name:
      return None

    buyer: Dict[str, Any] = {
        "full_name": " ".join(n for n in (first_name, last_name) if n)
        or "Guest",
    }
    if first_name:
      buyer["first_name"] = first_name
    if last_name:
      buyer["last_name"] = last_name
    if basket.customer_email:
      buyer["email"] = basket.customer_email
    consent = getattr(requested_buyer, "consent", None)
    if consent:
      buyer["consent"] = consent
    return buyer

  def _build_order(self, order: PlacedOrder) -> Dict[str, Any]:
    basket = order.basket
    postal_code = ""
    if basket.billing_address and basket.billing_address.postal_code:
      postal_code = basket.billing_address.postal_code
    elif basket.default_shipment and basket.default_shipment.shipping_address:
      postal_code = basket.default_shipment.shipping_address.postal_code
    query = urllib.parse.urlencode({
        "order_number": order.order_no,
        "email": basket.customer_email or "",
        "postal_code": postal_code,
    })
    return {
        "id": order.order_no,
        "permalink_url": (
            f"{self.base_url}{constants.ORDER_TRACK_PATH}?{query}"
        ),
    }


def _applied_discount(
    adjustment: Any, code: Optional[str], automatic: bool
) -> Dict[str, Any]:
  amount = -adjustment.amount
  applied = {
      "title": adjustment.title,
      "amount": amount,
      "automatic": automatic,
      "allocations": [
          {"path": constants.SUBTOTAL_ALLOCATION_PATH, "amount": amount}
      ],
  }
  if code:
    applied["code"] = code
  return applied


def _has_selected_option(fulfillment: Dict[str, Any]) -> bool:
  for method in fulfillment.get("methods", []):
    for group in method.get("groups", []):
      if group.get("selected_option_id"):
        return True
  return False
