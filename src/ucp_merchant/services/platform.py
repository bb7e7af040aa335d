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

"""SQL backed reference implementation of the commerce platform.

Catalog and promotions are read from the products database; inventory,
customers, coupons, shipping rates, merchant stores and orders live in the
transactions database and are written on the request's unit of work.
"""

import logging
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from .. import constants
from .. import db
from ..config import ShopConfig
from ..enums import FraudCheckResult
from ..enums import OrderStatus
from ..exceptions import OrderCreationError
from ..exceptions import OrderPlacementError
from ..exceptions import PaymentAuthorizationError
from .basket import Address
from .basket import BasketAdapter
from .basket import CouponLineItem
from .basket import CustomerProfile
from .basket import DEFAULT_SHIPMENT_ID
from .basket import PaymentInstrument
from .basket import PlacedOrder
from .basket import PriceAdjustment
from .basket import ProductLineItem
from .basket import SavedAddress
from .basket import Shipment
from .basket import WorkingBasket
from .fulfillment_service import FulfillmentService

logger = logging.getLogger(__name__)


class PlatformBasketAdapter(BasketAdapter):
  """Basket adapter on top of the sample catalog and transaction tables."""

  def __init__(
      self,
      products_session: AsyncSession,
      transactions_session: AsyncSession,
      shop_config: ShopConfig,
      fulfillment_service: Optional[FulfillmentService] = None,
  ):
    self.products_session = products_session
    self.transactions_session = transactions_session
    self.shop_config = shop_config
    self.fulfillment_service = fulfillment_service or FulfillmentService()
    self._promotions: Optional[List[db.Promotion]] = None

  async def _get_promotions(self) -> List[db.Promotion]:
    if self._promotions is None:
      self._promotions = await db.get_active_promotions(self.products_session)
    return self._promotions

  async def new_working_basket(self, currency: str) -> WorkingBasket:
    return WorkingBasket(
        id=str(uuid.uuid4()),
        currency=currency,
        shipments=[Shipment(id=DEFAULT_SHIPMENT_ID, is_default=True)],
    )

  async def add_line_item(
      self,
      basket: WorkingBasket,
      item_id: str,
      quantity: int,
      line_item_id: Optional[str] = None,
  ) -> bool:
    product = await db.get_product(self.products_session, item_id)
    if not product:
      logger.warning("Product not found: %s", item_id)
      return False

    existing = basket.find_line_item(item_id)
    if existing:
      existing.quantity += quantity
      return True

    basket.line_items.append(
        ProductLineItem(
            id=line_item_id or f"li_{len(basket.line_items) + 1}",
            product_id=product.id,
            title=product.title,
            unit_price=product.price,
            quantity=quantity,
        )
    )
    return True

  async def set_buyer(self, basket: WorkingBasket, buyer: Any) -> None:
    if buyer.email:
      basket.customer_email = buyer.email

    if basket.billing_address is None:
      basket.billing_address = Address()

    name_parts = buyer.full_name.split(" ") if buyer.full_name else []
    basket.billing_address.first_name = (
        buyer.first_name or (name_parts[0] if name_parts else "") or "Guest"
    )
    basket.billing_address.last_name = (
        buyer.last_name or " ".join(name_parts[1:]) or ""
    )
    if buyer.phone_number:
      basket.billing_address.phone_number = buyer.phone_number

    if basket.customer_email:
      basket.customer = await self._load_customer(basket.customer_email)

  async def _load_customer(self, email: str) -> CustomerProfile:
    customer = await db.get_customer(self.transactions_session, email)
    if not customer:
      return CustomerProfile(email=email)

    addresses = await db.get_customer_addresses(self.transactions_session, email)
    return CustomerProfile(
        email=email,
        registered=True,
        address_book=[
            SavedAddress(
                id=addr.id,
                address=Address(
                    street_address=addr.street_address or "",
                    city=addr.city or "",
                    region=addr.state or "",
                    postal_code=addr.postal_code or "",
                    address_country=addr.country or "US",
                    first_name=addr.first_name or "",
                    last_name=addr.last_name or "",
                    phone_number=addr.phone_number or "",
                ),
            )
            for addr in addresses
        ],
    )

  async def apply_discount_code(self, basket: WorkingBasket, code: str) -> bool:
    if any(c.code == code for c in basket.coupons):
      return True
    discount = await db.get_discount(self.transactions_session, code)
    if not discount:
      logger.warning("Failed to apply coupon code %s: unknown code", code)
      return False
    basket.coupons.append(CouponLineItem(code=code))
    return True

  async def set_shipping_option(
      self, shipment: Shipment, option_id: str
  ) -> bool:
    rate = await db.get_shipping_rate(self.transactions_session, option_id)
    if not rate:
      logger.warning("Shipping method not found: %s", option_id)
      return False
    shipment.shipping_method_id = option_id
    return True

  async def recalculate_totals(self, basket: WorkingBasket) -> None:
    """Prices the basket.

    Merchandise is discounted by coupons and order promotions, shipping is
    the bound option of every shipment, and tax applies to discounted
    merchandise plus shipping.
    """
    merchandise_total = sum(li.base_price for li in basket.line_items)
    basket.merchandise_total = merchandise_total
    product_ids = [li.product_id for li in basket.line_items]

    for coupon in basket.coupons:
      discount = await db.get_discount(self.transactions_session, coupon.code)
      coupon.valid = discount is not None
      coupon.adjustments = []
      if not discount:
        continue
      amount = 0
      if discount.type == "percentage":
        amount = int(merchandise_total * (discount.value / 100))
      elif discount.type == "fixed_amount":
        amount = discount.value
      amount = min(amount, merchandise_total)
      if amount > 0:
        coupon.adjustments.append(
            PriceAdjustment(
                promotion_id=discount.code,
                title=discount.description or discount.code,
                amount=-amount,
                coupon_code=coupon.code,
            )
        )

    promotions = await self._get_promotions()
    basket.price_adjustments = []
    for promo in promotions:
      if promo.type != "order_discount" or not promo.value:
        continue
      if promo.min_subtotal and merchandise_total < promo.min_subtotal:
        continue
      if promo.eligible_item_ids and not any(
          pid in promo.eligible_item_ids for pid in product_ids
      ):
        continue
      if not basket.line_items:
        continue
      basket.price_adjustments.append(
          PriceAdjustment(
              promotion_id=promo.id,
              title=promo.description or promo.id,
              amount=-promo.value,
          )
      )

    adjustments = sum(
        a.amount for c in basket.coupons if c.valid for a in c.adjustments
    ) + sum(a.amount for a in basket.price_adjustments)
    basket.adjusted_merchandise_total = max(0, merchandise_total + adjustments)

    shipping_total = 0
    for shipment in basket.shipments:
      items = basket.items_in(shipment)
      country = (
          shipment.shipping_address.address_country
          if shipment.shipping_address
          else None
      )
      shipment.options = await self.fulfillment_service.calculate_options(
          self.transactions_session,
          country or None,
          promotions=promotions,
          subtotal=merchandise_total,
          line_item_ids=[li.product_id for li in items],
      )
      selected = shipment.find_option(shipment.shipping_method_id)
      if shipment.shipping_method_id and not selected:
        logger.info(
            "Shipping method %s not applicable to shipment %s",
            shipment.shipping_method_id,
            shipment.id,
        )
        shipment.shipping_method_id = None
      shipment.shipping_cost = selected.amount if selected else 0
      shipping_total += shipment.shipping_cost

    basket.shipping_total = shipping_total
    basket.tax_total = round(
        (basket.adjusted_merchandise_total + shipping_total)
        * self.shop_config.tax_rate
    )
    basket.total_gross = (
        basket.adjusted_merchandise_total + shipping_total + basket.tax_total
    )

  async def get_merchant_locations(self) -> List[Dict[str, Any]]:
    stores = await db.get_stores(self.transactions_session)
    locations = []
    for store in stores:
      if not (store.street_address or store.city or store.postal_code):
        continue
      locations.append({
          "id": store.id,
          "street_address": store.street_address or "",
          "city": store.city or "",
          "region": store.state or "",
          "postal_code": store.postal_code or "",
          "address_country": store.country or "US",
          "name": store.name or store.id,
      })
    return locations

  def add_payment_instrument(
      self, basket: WorkingBasket, instrument: PaymentInstrument
  ) -> None:
    basket.payment_instruments = [instrument]

  def validate_payment(self, basket: WorkingBasket) -> bool:
    if not basket.payment_instruments:
      return False
    for instrument in basket.payment_instruments:
      if instrument.method_id != constants.CREDIT_CARD_HANDLER_ID:
        return False
      if not (
          instrument.card_number
          and instrument.expiry_month
          and instrument.expiry_year
      ):
        return False
    return True

  def calculate_payment_transaction(self, basket: WorkingBasket) -> bool:
    if len(basket.payment_instruments) != 1:
      return False
    basket.payment_instruments[0].amount = basket.total_gross
    return True

  async def create_order(self, basket: WorkingBasket) -> PlacedOrder:
    order = PlacedOrder(order_no=str(uuid.uuid4()), basket=basket)
    reserved = []
    for line_item in basket.line_items:
      success = await db.reserve_stock(
          self.transactions_session, line_item.product_id, line_item.quantity
      )
      if not success:
        for product_id, quantity in reserved:
          await db.release_stock(self.transactions_session, product_id, quantity)
        raise OrderCreationError(
            f"Item {line_item.product_id} is out of stock"
        )
      reserved.append((line_item.product_id, line_item.quantity))

    await self._save_order(order)
    logger.info("Created order %s", order.order_no)
    return order

  async def authorize_payment(self, order: PlacedOrder) -> None:
    instrument = order.basket.payment_instruments[0]
    if instrument.amount != order.basket.total_gross:
      raise PaymentAuthorizationError(
          f"Payment amount {instrument.amount} does not match order total"
          f" {order.basket.total_gross}"
      )
    if instrument.card_number in self.shop_config.declined_card_numbers:
      raise PaymentAuthorizationError(
          f"Card ending in {instrument.last_digits} was declined"
      )
    logger.info(
        "Authorized %d for order %s on card ending in %s",
        instrument.amount,
        order.order_no,
        instrument.last_digits,
    )

  async def run_fraud_check(self, basket: WorkingBasket) -> FraudCheckResult:
    email = (basket.customer_email or "").lower()
    if email in self.shop_config.fraud_blocked_emails:
      return FraudCheckResult.FAIL
    return FraudCheckResult.PASS

  async def place_order(self, order: PlacedOrder) -> None:
    if order.status != OrderStatus.CREATED:
      raise OrderPlacementError(
          f"Order {order.order_no} cannot be placed in state {order.status}"
      )
    order.status = OrderStatus.PLACED
    await self._save_order(order)

  async def fail_order(self, order: PlacedOrder) -> None:
    if order.status == OrderStatus.FAILED:
      return
    for line_item in order.basket.line_items:
      await db.release_stock(
          self.transactions_session, line_item.product_id, line_item.quantity
      )
    order.status = OrderStatus.FAILED
    await self._save_order(order)
    logger.warning("Failed order %s", order.order_no)

  async def notify_customer(
      self, order: PlacedOrder, locale: Optional[str] = None
  ) -> None:
    logger.info(
        "Sending order confirmation for %s to %s (locale %s)",
        order.order_no,
        order.basket.customer_email,
        locale or "default",
    )

  async def _save_order(self, order: PlacedOrder) -> None:
    basket = order.basket
    await db.save_order(
        self.transactions_session,
        order.order_no,
        {
            "email": basket.customer_email,
            "currency": basket.currency,
            "line_items": [
                {"product_id": li.product_id, "quantity": li.quantity}
                for li in basket.line_items
            ],
            "total": basket.total_gross,
        },
        status=order.status.value,
        checkout_id=basket.checkout_id,
    )

