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

"""Fulfillment service for calculating delivery options.

This module encapsulates the logic for determining available shipping options
and costs for a shipment based on its destination country.
"""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .. import db
from .basket import ShippingOption


class FulfillmentService:
  """Service for handling fulfillment logic."""

  def is_free_shipping(
      self,
      promotions: List[db.Promotion],
      subtotal: int,
      line_item_ids: List[str],
  ) -> bool:
    for promo in promotions:
      if promo.type != "free_shipping":
        continue
      if promo.min_subtotal and subtotal >= promo.min_subtotal:
        return True
      if promo.eligible_item_ids and any(
          item_id in promo.eligible_item_ids for item_id in line_item_ids
      ):
        return True
    return False

  async def calculate_options(
      self,
      session: AsyncSession,
      country_code: Optional[str],
      promotions: Optional[List[db.Promotion]] = None,
      subtotal: int = 0,
      line_item_ids: Optional[List[str]] = None,
  ) -> List[ShippingOption]:
    """Calculates available shipping options for a destination country.

    Args:
      session: The database session to fetch rates from.
      country_code: The destination country, or None before an address is
        known, in which case only the 'default' rates apply.
      promotions: Optional list of active promotions.
      subtotal: The merchandise subtotal in cents.
      line_item_ids: List of product IDs in the shipment.

    Returns:
      The options ordered by price.
    """
    is_free_shipping = self.is_free_shipping(
        promotions or [], subtotal, line_item_ids or []
    )

    db_rates = await db.get_shipping_rates(session, country_code)

    # Deduplicate by service level, preferring the country specific rate over
    # 'default'.
    rates_by_level = {}
    for rate in db_rates:
      if rate.service_level not in rates_by_level:
        rates_by_level[rate.service_level] = rate
      else:
        existing = rates_by_level[rate.service_level]
        if (
            existing.country_code == "default"
            and rate.country_code != "default"
        ):
          rates_by_level[rate.service_level] = rate

    options = []
    # Sort for deterministic output
    for rate in sorted(rates_by_level.values(), key=lambda r: (r.price, r.id)):
      price = rate.price
      title = rate.title

      if is_free_shipping and rate.service_level == "standard":
        price = 0
        title += " (Free)"

      options.append(ShippingOption(id=rate.id, title=title, amount=price))

    return options
