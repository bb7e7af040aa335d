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

"""Request models for the UCP merchant server.

Handlers receive the raw JSON body (it is fingerprinted for idempotency) and
validate it into these models. Unknown fields are kept so that extensions the
engine does not interpret survive validation.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class _RequestModel(BaseModel):
  model_config = ConfigDict(extra="allow")


class ItemRef(_RequestModel):
  id: str


class LineItemRequest(_RequestModel):
  id: Optional[str] = None
  item: ItemRef
  quantity: int = Field(default=1, ge=1)


class BuyerRequest(_RequestModel):
  email: Optional[str] = None
  full_name: Optional[str] = None
  first_name: Optional[str] = None
  last_name: Optional[str] = None
  phone_number: Optional[str] = None
  consent: Optional[Dict[str, Any]] = None


class DiscountsRequest(_RequestModel):
  codes: List[str] = []


class DestinationRequest(_RequestModel):
  """A shipping address offered by the agent."""

  id: Optional[str] = None
  street_address: Optional[str] = None
  city: Optional[str] = None
  address_locality: Optional[str] = None
  region: Optional[str] = None
  address_region: Optional[str] = None
  postal_code: Optional[str] = None
  address_country: Optional[str] = None
  first_name: Optional[str] = None
  last_name: Optional[str] = None
  phone_number: Optional[str] = None

  @property
  def locality(self) -> Optional[str]:
    return self.city or self.address_locality

  @property
  def region_code(self) -> Optional[str]:
    return self.region or self.address_region


class GroupRequest(_RequestModel):
  id: Optional[str] = None
  selected_option_id: Optional[str] = None


class FulfillmentMethodRequest(_RequestModel):
  id: Optional[str] = None
  type: str = "shipping"
  destinations: List[DestinationRequest] = []
  selected_destination_id: Optional[str] = None
  groups: List[GroupRequest] = []

  @property
  def selected_option_id(self) -> Optional[str]:
    if self.groups:
      return self.groups[0].selected_option_id
    return None


class FulfillmentRequest(_RequestModel):
  methods: List[FulfillmentMethodRequest] = []

  @property
  def first_method(self) -> Optional[FulfillmentMethodRequest]:
    return self.methods[0] if self.methods else None


class CheckoutRequest(_RequestModel):
  """Body of the create and modify operations."""

  currency: Optional[str] = None
  line_items: Optional[List[LineItemRequest]] = None
  buyer: Optional[BuyerRequest] = None
  discounts: Optional[DiscountsRequest] = None
  fulfillment: Optional[FulfillmentRequest] = None

  @property
  def requests_fulfillment(self) -> bool:
    return bool(self.fulfillment and self.fulfillment.methods)


class Binding(_RequestModel):
  checkout_id: Optional[str] = None


class PaymentData(_RequestModel):
  id: Optional[str] = None
  handler_id: Optional[str] = None
  type: Optional[str] = None
  brand: Optional[str] = None
  credential: Dict[str, Any] = {}
  billing_address: Optional[Dict[str, Any]] = None


class CompleteRequest(_RequestModel):
  payment_data: Optional[PaymentData] = None
  risk_signals: Dict[str, Any] = {}


class TokenizeRequest(_RequestModel):
  credential: Optional[Dict[str, Any]] = None
  binding: Optional[Binding] = None
