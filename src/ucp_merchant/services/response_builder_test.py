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

"""Tests for the checkout document renderer."""

from absl.testing import absltest

from ucp_merchant import constants
from ucp_merchant import testing
from ucp_merchant.enums import CheckoutStatus
from ucp_merchant.models import BuyerRequest
from ucp_merchant.models import FulfillmentRequest
from ucp_merchant.services.basket import Address
from ucp_merchant.services.basket import CouponLineItem
from ucp_merchant.services.basket import DEFAULT_SHIPMENT_ID
from ucp_merchant.services.basket import PlacedOrder
from ucp_merchant.services.basket import PriceAdjustment
from ucp_merchant.services.basket import ProductLineItem
from ucp_merchant.services.basket import Shipment
from ucp_merchant.services.basket import ShippingOption
from ucp_merchant.services.basket import WorkingBasket
from ucp_merchant.services.response_builder import CheckoutSessionResponseBuilder

SESSION_ID = "0b7c8a3e-5f1d-4e0a-9c2b-7d6e5f4a3b21"
BASE_URL = "http://merchant.example"
HOME = {
    "street_address": "1 Main St",
    "city": "Springfield",
    "region": "IL",
    "postal_code": "62704",
    "address_country": "US",
}
STORE = {
    "id": "store_downtown",
    "street_address": "1 Market St",
    "city": "San Francisco",
    "region": "CA",
    "postal_code": "94105",
    "address_country": "US",
    "name": "Downtown Flower Shop",
}
OPTIONS = [
    ShippingOption("std-ship", "Standard Shipping", 500),
    ShippingOption("exp-ship-us", "Express Shipping (US)", 1500),
]


def _fulfillment(**method):
  return FulfillmentRequest.model_validate(
      {"methods": [dict({"type": "shipping"}, **method)]}
  )


class CheckoutSessionResponseBuilderTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.shop_config = testing.make_shop_config()
    self.builder = CheckoutSessionResponseBuilder(
        self.shop_config, BASE_URL + "/", [STORE]
    )
    self.shipment = Shipment(
        id=DEFAULT_SHIPMENT_ID, is_default=True, options=list(OPTIONS)
    )
    self.basket = WorkingBasket(
        id="basket",
        currency="USD",
        shipments=[self.shipment],
        line_items=[
            ProductLineItem(
                id="li_1",
                product_id="bouquet",
                title="Bouquet",
                unit_price=5000,
                quantity=2,
            )
        ],
        merchandise_total=10000,
        adjusted_merchandise_total=10000,
        total_gross=10000,
    )

  def _select(self, option_id, cost):
    self.shipment.shipping_address = Address.from_destination(HOME)
    self.shipment.custom["destination_id"] = "dest_1"
    self.shipment.shipping_method_id = option_id
    self.shipment.shipping_cost = cost
    self.basket.shipping_total = cost
    self.basket.total_gross = self.basket.adjusted_merchandise_total + cost

  def test_minimal_document(self):
    result = self.builder.build(SESSION_ID, self.basket)

    self.assertEqual(result["id"], SESSION_ID)
    self.assertEqual(result["currency"], "USD")
    self.assertEqual(result["status"], "ready_for_complete")
    self.assertEqual(
        result["totals"],
        [
            {"type": "subtotal", "amount": 10000},
            {"type": "tax", "amount": 0},
            {"type": "total", "amount": 10000},
        ],
    )
    self.assertEqual(
        result["line_items"],
        [{
            "id": "li_1",
            "item": {"id": "bouquet", "title": "Bouquet", "price": 5000},
            "quantity": 2,
            "totals": [
                {"type": "subtotal", "amount": 10000},
                {"type": "total", "amount": 10000},
            ],
        }],
    )
    for absent in ("fulfillment", "messages", "order", "discounts", "buyer"):
      self.assertNotIn(absent, result)

  def test_ucp_metadata_and_payment_handler(self):
    result = self.builder.build(SESSION_ID, self.basket)

    self.assertEqual(result["ucp"]["version"], constants.UCP_VERSION)
    self.assertEqual(
        result["ucp"]["services"][constants.SHOPPING_SERVICE]["rest"][
            "endpoint"
        ],
        BASE_URL,
    )
    self.assertEqual(
        [c["name"] for c in result["ucp"]["capabilities"]],
        [
            "dev.ucp.shopping.checkout",
            "dev.ucp.shopping.order",
            "dev.ucp.shopping.discount",
            "dev.ucp.shopping.fulfillment",
            "dev.ucp.shopping.buyer_consent",
        ],
    )
    handler = result["payment"]["handlers"][0]
    self.assertEqual(handler["id"], constants.CREDIT_CARD_HANDLER_ID)
    self.assertEqual(handler["config"]["endpoint"], BASE_URL + "/tokenize")
    self.assertEqual(
        [link["type"] for link in result["links"]],
        ["terms_of_service", "privacy_policy", "cookie_policy"],
    )

  def test_discount_totals(self):
    self.basket.coupons = [
        CouponLineItem(
            code="10OFF",
            adjustments=[
                PriceAdjustment("10OFF", "10% Off", -1000, coupon_code="10OFF")
            ],
        )
    ]
    self.basket.adjusted_merchandise_total = 9000
    self.basket.total_gross = 9000

    result = self.builder.build(SESSION_ID, self.basket)

    self.assertEqual(
        result["totals"],
        [
            {"type": "subtotal", "amount": 10000},
            {"type": "discount", "amount": 1000},
            {"type": "tax", "amount": 0},
            {"type": "total", "amount": 9000},
        ],
    )
    self.assertEqual(result["discounts"]["codes"], ["10OFF"])
    self.assertEqual(
        result["discounts"]["applied"],
        [{
            "title": "10% Off",
            "amount": 1000,
            "automatic": False,
            "allocations": [
                {"path": constants.SUBTOTAL_ALLOCATION_PATH, "amount": 1000}
            ],
            "code": "10OFF",
        }],
    )

  def test_automatic_promotion(self):
    self.basket.price_adjustments = [
        PriceAdjustment("promo_1", "Spring sale", -500)
    ]
    self.basket.adjusted_merchandise_total = 9500

    result = self.builder.build(SESSION_ID, self.basket)

    self.assertNotIn("codes", result["discounts"])
    self.assertTrue(result["discounts"]["applied"][0]["automatic"])
    self.assertNotIn("code", result["discounts"]["applied"][0])

  def test_discounts_omitted_without_capability(self):
    builder = CheckoutSessionResponseBuilder(
        testing.make_shop_config(capabilities=["checkout", "fulfillment"]),
        BASE_URL,
    )
    self.basket.coupons = [
        CouponLineItem(
            code="10OFF",
            adjustments=[PriceAdjustment("10OFF", "10% Off", -1000, "10OFF")],
        )
    ]

    result = builder.build(SESSION_ID, self.basket)

    self.assertNotIn("discounts", result)
    self.assertNotIn("links", result)

  def test_invalid_coupon_is_not_reported(self):
    self.basket.coupons = [CouponLineItem(code="BOGUS", valid=False)]

    result = self.builder.build(SESSION_ID, self.basket)

    self.assertNotIn("discounts", result)

  def test_fulfillment_without_destination_lists_candidates_only(self):
    result = self.builder.build(
        SESSION_ID, self.basket, requested_fulfillment=_fulfillment()
    )

    method = result["fulfillment"]["methods"][0]
    self.assertEqual(method["id"], DEFAULT_SHIPMENT_ID)
    self.assertEqual(method["line_item_ids"], ["li_1"])
    self.assertEqual(method["destinations"], [STORE])
    self.assertNotIn("selected_destination_id", method)
    self.assertNotIn("groups", method)
    self.assertEqual(result["status"], "incomplete")
    self.assertEqual(result["messages"][0]["code"], "missing")
    self.assertEqual(
        result["messages"][0]["path"], constants.SELECTED_OPTION_PATH
    )
    self.assertEqual(
        [t["type"] for t in result["totals"]], ["subtotal", "tax", "total"]
    )

  def test_request_destinations_select_the_first(self):
    self.shipment.shipping_address = Address.from_destination(HOME)
    self.shipment.custom["destination_id"] = "dest_1"

    result = self.builder.build(
        SESSION_ID,
        self.basket,
        requested_fulfillment=_fulfillment(destinations=[HOME]),
    )

    method = result["fulfillment"]["methods"][0]
    self.assertEqual(method["selected_destination_id"], "dest_1")
    self.assertEqual([d["id"] for d in method["destinations"]], ["dest_1"])
    group = method["groups"][0]
    self.assertEqual(group["id"], f"group_{DEFAULT_SHIPMENT_ID}")
    self.assertEqual(
        [o["id"] for o in group["options"]], ["std-ship", "exp-ship-us"]
    )
    self.assertNotIn("selected_option_id", group)
    self.assertEqual(result["status"], "incomplete")

  def test_unknown_selected_destination_is_ignored(self):
    result = self.builder.build(
        SESSION_ID,
        self.basket,
        requested_fulfillment=_fulfillment(selected_destination_id="nope"),
    )

    self.assertNotIn(
        "selected_destination_id", result["fulfillment"]["methods"][0]
    )

  def test_destination_not_applied_to_shipment_is_not_selected(self):
    result = self.builder.build(
        SESSION_ID,
        self.basket,
        requested_fulfillment=_fulfillment(
            destinations=[HOME], selected_destination_id="nope"
        ),
    )

    method = result["fulfillment"]["methods"][0]
    self.assertEqual([d["id"] for d in method["destinations"]], ["dest_1"])
    self.assertNotIn("selected_destination_id", method)
    self.assertNotIn("groups", method)

  def test_selected_option_makes_checkout_ready(self):
    self._select("std-ship", 500)

    result = self.builder.build(
        SESSION_ID,
        self.basket,
        requested_fulfillment=_fulfillment(
            destinations=[HOME], selected_destination_id="dest_1"
        ),
    )

    group = result["fulfillment"]["methods"][0]["groups"][0]
    self.assertEqual(group["selected_option_id"], "std-ship")
    self.assertEqual(result["status"], "ready_for_complete")
    self.assertNotIn("messages", result)
    self.assertEqual(
        result["totals"],
        [
            {"type": "subtotal", "amount": 10000},
            {"type": "fulfillment", "amount": 500},
            {"type": "tax", "amount": 0},
            {"type": "total", "amount": 10500},
        ],
    )

  def test_free_bound_method_still_reports_fulfillment_total(self):
    self._select("std-ship", 0)

    result = self.builder.build(
        SESSION_ID,
        self.basket,
        requested_fulfillment=_fulfillment(destinations=[HOME]),
    )

    self.assertIn(
        {"type": "fulfillment", "amount": 0}, result["totals"]
    )

  def test_requested_option_overrides_stored_when_offered(self):
    self._select("std-ship", 500)

    result = self.builder.build(
        SESSION_ID,
        self.basket,
        requested_fulfillment=_fulfillment(
            destinations=[HOME],
            groups=[{"selected_option_id": "exp-ship-us"}],
        ),
    )

    group = result["fulfillment"]["methods"][0]["groups"][0]
    self.assertEqual(group["selected_option_id"], "exp-ship-us")

  def test_requested_option_not_offered_keeps_stored(self):
    self._select("std-ship", 500)

    result = self.builder.build(
        SESSION_ID,
        self.basket,
        requested_fulfillment=_fulfillment(
            destinations=[HOME], groups=[{"selected_option_id": "teleport"}]
        ),
    )

    group = result["fulfillment"]["methods"][0]["groups"][0]
    self.assertEqual(group["selected_option_id"], "std-ship")

  def test_explicit_status_is_used_verbatim(self):
    result = self.builder.build(
        SESSION_ID,
        self.basket,
        status=CheckoutStatus.INCOMPLETE,
    )

    self.assertEqual(result["status"], "incomplete")
    self.assertNotIn("messages", result)

  def test_completed_order(self):
    self.basket.customer_email = "john@example.com"
    self.basket.billing_address = Address(
        first_name="John", last_name="Doe", postal_code="62704"
    )
    order = PlacedOrder(order_no="order-1", basket=self.basket)

    result = self.builder.build(
        SESSION_ID,
        order,
        status=CheckoutStatus.COMPLETED,
        requested_buyer=BuyerRequest(consent={"marketing": True}),
    )

    self.assertEqual(result["id"], SESSION_ID)
    self.assertEqual(result["status"], "completed")
    self.assertEqual(
        result["order"],
        {
            "id": "order-1",
            "permalink_url": (
                BASE_URL
                + "/orders/track?order_number=order-1"
                + "&email=john%40example.com&postal_code=62704"
            ),
        },
    )
    self.assertEqual(
        result["buyer"],
        {
            "full_name": "John Doe",
            "first_name": "John",
            "last_name": "Doe",
            "email": "john@example.com",
            "consent": {"marketing": True},
        },
    )

  def test_order_block_requires_completed_status(self):
    order = PlacedOrder(order_no="order-1", basket=self.basket)

    result = self.builder.build(SESSION_ID, order)

    self.assertNotIn("order", result)

  def test_build_profile(self):
    profile = self.builder.build_profile()

    self.assertEqual(profile["ucp"]["version"], constants.UCP_VERSION)
    self.assertLen(profile["payment"]["handlers"], 1)
    self.assertLen(profile["links"], 3)


if __name__ == "__main__":
  absltest.main()
