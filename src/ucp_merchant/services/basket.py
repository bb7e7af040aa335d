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

"""Working basket model and the commerce platform interface.

The checkout engine never persists a cart. Every request builds a
`WorkingBasket` through a `BasketAdapter`, mutates and prices it, derives the
protocol document from it, and throws it away. `BasketAdapter` is the seam to
the commerce platform (catalog, pricing, shipping, customers, orders); the
engine only relies on the operations declared here. All amounts are integer
minor units (cents).
"""

import abc
import contextlib
import dataclasses
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from ..enums import FraudCheckResult
from ..enums import OrderStatus

logger = logging.getLogger(__name__)

DEFAULT_SHIPMENT_ID = "shipment_1"


@dataclasses.dataclass
class Address:
  street_address: str = ""
  city: str = ""
  region: str = ""
  postal_code: str = ""
  address_country: str = ""
  first_name: str = ""
  last_name: str = ""
  phone_number: str = ""

  @property
  def key(self) -> str:
    """Composite key used to detect duplicate addresses."""
    return address_key(
        self.street_address, self.postal_code, self.address_country
    )

  def is_empty(self) -> bool:
    return not self.street_address

  def to_destination(self, destination_id: str) -> Dict[str, Any]:
    destination = {
        "id": destination_id,
        "street_address": self.street_address,
        "city": self.city,
        "region": self.region,
        "postal_code": self.postal_code,
        "address_country": self.address_country,
    }
    for name in ("first_name", "last_name", "phone_number"):
      if getattr(self, name):
        destination[name] = getattr(self, name)
    return destination

  @classmethod
  def from_destination(cls, destination: Dict[str, Any]) -> "Address":
    """Builds an address from a protocol destination or postal address."""
    return cls(
        street_address=destination.get("street_address") or "",
        city=(
            destination.get("city") or destination.get("address_locality") or ""
        ),
        region=(
            destination.get("region") or destination.get("address_region") or ""
        ),
        postal_code=destination.get("postal_code") or "",
        address_country=destination.get("address_country") or "",
        first_name=destination.get("first_name") or "",
        last_name=destination.get("last_name") or "",
        phone_number=destination.get("phone_number") or "",
    )


def address_key(street: Any, postal_code: Any, country: Any) -> str:
  return f"{street or ''}|{postal_code or ''}|{country or ''}"


@dataclasses.dataclass
class ShippingOption:
  id: str
  title: str
  amount: int

  def to_dict(self) -> Dict[str, Any]:
    return {
        "id": self.id,
        "title": self.title,
        "totals": [
            {"type": "subtotal", "amount": self.amount},
            {"type": "total", "amount": self.amount},
        ],
    }


@dataclasses.dataclass
class Shipment:
  id: str
  is_default: bool = False
  shipping_address: Optional[Address] = None
  shipping_method_id: Optional[str] = None
  shipping_cost: int = 0
  options: List[ShippingOption] = dataclasses.field(default_factory=list)
  # Platform attributes, e.g. from_store_id, shipment_type, destination_id.
  custom: Dict[str, Any] = dataclasses.field(default_factory=dict)

  def find_option(self, option_id: Optional[str]) -> Optional[ShippingOption]:
    return next((o for o in self.options if o.id == option_id), None)


@dataclasses.dataclass
class ProductLineItem:
  id: str
  product_id: str
  title: str
  unit_price: int
  quantity: int
  shipment_id: str = DEFAULT_SHIPMENT_ID

  @property
  def base_price(self) -> int:
    return self.unit_price * self.quantity


@dataclasses.dataclass
class PriceAdjustment:
  promotion_id: str
  title: str
  amount: int  # Negative for discounts
  coupon_code: Optional[str] = None

  @property
  def based_on_coupon(self) -> bool:
    return self.coupon_code is not None


@dataclasses.dataclass
class CouponLineItem:
  code: str
  valid: bool = True
  adjustments: List[PriceAdjustment] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class PaymentInstrument:
  method_id: str
  amount: int = 0
  brand: Optional[str] = None
  card_number: Optional[str] = None
  expiry_month: Optional[Any] = None
  expiry_year: Optional[Any] = None
  cvc: Optional[str] = None

  @property
  def last_digits(self) -> str:
    return (self.card_number or "")[-4:]


@dataclasses.dataclass
class SavedAddress:
  id: str
  address: Address


@dataclasses.dataclass
class CustomerProfile:
  email: str
  registered: bool = False
  address_book: List[SavedAddress] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class WorkingBasket:
  """A transient cart that lives for the duration of one request."""

  id: str
  currency: str
  # The checkout session the basket is built for.
  checkout_id: Optional[str] = None
  line_items: List[ProductLineItem] = dataclasses.field(default_factory=list)
  shipments: List[Shipment] = dataclasses.field(default_factory=list)
  coupons: List[CouponLineItem] = dataclasses.field(default_factory=list)
  # Promotions applied without a coupon.
  price_adjustments: List[PriceAdjustment] = dataclasses.field(
      default_factory=list
  )
  payment_instruments: List[PaymentInstrument] = dataclasses.field(
      default_factory=list
  )
  customer_email: Optional[str] = None
  customer: Optional[CustomerProfile] = None
  billing_address: Optional[Address] = None
  # Session scoped marker per shipment id, set once its address is validated.
  validity_markers: Dict[str, Any] = dataclasses.field(default_factory=dict)
  merchandise_total: int = 0
  adjusted_merchandise_total: int = 0
  shipping_total: int = 0
  tax_total: int = 0
  total_gross: int = 0
  discarded: bool = False

  @property
  def default_shipment(self) -> Optional[Shipment]:
    return next((s for s in self.shipments if s.is_default), None)

  def items_in(self, shipment: Shipment) -> List[ProductLineItem]:
    return [li for li in self.line_items if li.shipment_id == shipment.id]

  def find_line_item(self, product_id: str) -> Optional[ProductLineItem]:
    return next(
        (li for li in self.line_items if li.product_id == product_id), None
    )


@dataclasses.dataclass
class PlacedOrder:
  order_no: str
  basket: WorkingBasket
  status: OrderStatus = OrderStatus.CREATED


Container = Union[WorkingBasket, PlacedOrder]


def basket_of(container: Container) -> WorkingBasket:
  if isinstance(container, PlacedOrder):
    return container.basket
  return container


class BasketAdapter(abc.ABC):
  """Operations the checkout engine needs from the commerce platform.

  Implementations are created per request and run every mutation on the
  request's unit of work.
  """

  @abc.abstractmethod
  async def new_working_basket(self, currency: str) -> WorkingBasket:
    """Creates an empty basket with a default shipment."""

  @abc.abstractmethod
  async def add_line_item(
      self,
      basket: WorkingBasket,
      item_id: str,
      quantity: int,
      line_item_id: Optional[str] = None,
  ) -> bool:
    """Adds a product, returning False when the product is unknown."""

  @abc.abstractmethod
  async def set_buyer(self, basket: WorkingBasket, buyer: Any) -> None:
    """Sets the customer email, billing name and customer profile."""

  @abc.abstractmethod
  async def apply_discount_code(self, basket: WorkingBasket, code: str) -> bool:
    """Applies a coupon, returning False when it is rejected."""

  @abc.abstractmethod
  async def set_shipping_option(
      self, shipment: Shipment, option_id: str
  ) -> bool:
    """Binds a shipping method, returning False when it does not exist."""

  @abc.abstractmethod
  async def recalculate_totals(self, basket: WorkingBasket) -> None:
    """Prices the basket and refreshes the shipping options."""

  @abc.abstractmethod
  async def get_merchant_locations(self) -> List[Dict[str, Any]]:
    """Returns merchant locations as protocol destinations."""

  @abc.abstractmethod
  def add_payment_instrument(
      self, basket: WorkingBasket, instrument: PaymentInstrument
  ) -> None:
    """Replaces the basket payment instruments with `instrument`."""

  @abc.abstractmethod
  def validate_payment(self, basket: WorkingBasket) -> bool:
    """Checks that the basket carries a usable payment instrument."""

  @abc.abstractmethod
  def calculate_payment_transaction(self, basket: WorkingBasket) -> bool:
    """Allocates the basket total to its payment instrument."""

  @abc.abstractmethod
  async def create_order(self, basket: WorkingBasket) -> PlacedOrder:
    """Turns the basket into an order, reserving inventory."""

  @abc.abstractmethod
  async def authorize_payment(self, order: PlacedOrder) -> None:
    """Authorizes the order payment or raises PaymentAuthorizationError."""

  @abc.abstractmethod
  async def run_fraud_check(self, basket: WorkingBasket) -> FraudCheckResult:
    """Runs the fraud detection hook."""

  @abc.abstractmethod
  async def place_order(self, order: PlacedOrder) -> None:
    """Places the order or raises OrderPlacementError."""

  @abc.abstractmethod
  async def fail_order(self, order: PlacedOrder) -> None:
    """Marks the order failed and undoes its reservations."""

  @abc.abstractmethod
  async def notify_customer(
      self, order: PlacedOrder, locale: Optional[str] = None
  ) -> None:
    """Sends the order confirmation to the customer."""

  def set_fulfillment_destination(
      self, basket: WorkingBasket, shipment: Shipment, destination: Address
  ) -> None:
    """Applies a destination address to a shipment."""
    shipment.shipping_address = dataclasses.replace(destination)
    basket.validity_markers[shipment.id] = True

  def normalize_shipments(self, basket: WorkingBasket) -> None:
    """Ensures no shipment is left without line items.

    Empty non-default shipments are removed. An empty default shipment cannot
    be removed; it takes over the line items, address, store markers,
    shipping method and validity marker of the first non-default shipment
    that has items, and that shipment is removed instead.
    """
    default = basket.default_shipment
    to_delete: List[Shipment] = []

    for shipment in basket.shipments:
      if basket.items_in(shipment) or shipment in to_delete:
        continue
      if not shipment.is_default:
        to_delete.append(shipment)
        continue

      alt = next(
          (
              s
              for s in basket.shipments
              if not s.is_default and basket.items_in(s)
          ),
          None,
      )
      if alt is None:
        continue

      if alt.id in basket.validity_markers:
        basket.validity_markers[default.id] = basket.validity_markers[alt.id]
      else:
        basket.validity_markers.pop(default.id, None)

      for line_item in basket.items_in(alt):
        line_item.shipment_id = default.id

      if alt.shipping_address:
        default.shipping_address = dataclasses.replace(alt.shipping_address)
      else:
        default.shipping_address = Address()

      if alt.custom.get("from_store_id") and alt.custom.get("shipment_type"):
        default.custom["from_store_id"] = alt.custom["from_store_id"]
        default.custom["shipment_type"] = alt.custom["shipment_type"]

      default.shipping_method_id = alt.shipping_method_id
      to_delete.append(alt)

    for shipment in to_delete:
      basket.shipments.remove(shipment)
      basket.validity_markers.pop(shipment.id, None)

  def ensure_shipping_methods(self, basket: WorkingBasket) -> bool:
    """Binds the cheapest option to every shipment that has none.

    Returns:
      True when at least one shipment changed; totals must be recalculated.
    """
    changed = False
    for shipment in basket.shipments:
      if shipment.shipping_method_id or not shipment.options:
        continue
      if not basket.items_in(shipment):
        continue
      shipment.shipping_method_id = shipment.options[0].id
      changed = True
    return changed

  def discard_working_basket(self, basket: WorkingBasket) -> None:
    basket.discarded = True
    logger.debug("Discarded working basket %s", basket.id)

  @contextlib.asynccontextmanager
  async def working_basket(self, currency: str) -> AsyncIterator[WorkingBasket]:
    """Yields a fresh basket that is discarded however the block exits."""
    basket = await self.new_working_basket(currency)
    try:
      yield basket
    finally:
      self.discard_working_basket(basket)
