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

"""Candidate fulfillment destinations for a shipment."""

from typing import Any, Dict, List, Optional, Set

from .basket import Address
from .basket import address_key
from .basket import Shipment
from .basket import WorkingBasket


def assign_destination_ids(
    destinations: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
  """Gives every destination a stable id.

  Ids supplied by the caller are kept. Missing ids are derived from the
  position in the list (`dest_1`, `dest_2`, ...), skipping ids that are
  already taken.

  Args:
    destinations: Destinations as sent by the client.

  Returns:
    Copies of the destinations, each with an `id`.
  """
  taken = {d.get("id") for d in destinations if d.get("id")}
  result = []
  for index, destination in enumerate(destinations):
    destination = dict(destination)
    if not destination.get("id"):
      number = index + 1
      candidate = f"dest_{number}"
      while candidate in taken:
        number += 1
        candidate = f"dest_{number}"
      destination["id"] = candidate
      taken.add(candidate)
    result.append(destination)
  return result


def _key_of(destination: Dict[str, Any]) -> str:
  return address_key(
      destination.get("street_address"),
      destination.get("postal_code"),
      destination.get("address_country"),
  )


def _unique(destinations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
  """Drops destinations whose address was already listed."""
  seen: Set[str] = set()
  result = []
  for destination in destinations:
    key = _key_of(destination)
    if key in seen:
      continue
    seen.add(key)
    result.append(destination)
  return result


def _address_destination(
    address: Optional[Address], destination_id: str
) -> List[Dict[str, Any]]:
  if address is None or address.is_empty():
    return []
  return [address.to_destination(destination_id)]


def _request_destinations(request_method: Any) -> List[Dict[str, Any]]:
  if request_method is None or not request_method.destinations:
    return []
  return _unique([
      Address.from_destination(d).to_destination(d["id"])
      for d in assign_destination_ids(
          [d.model_dump(exclude_none=True) for d in request_method.destinations]
      )
  ])


def _address_book_destinations(basket: WorkingBasket) -> List[Dict[str, Any]]:
  if basket.customer is None or not basket.customer.registered:
    return []
  result = []
  for saved in basket.customer.address_book:
    result.extend(_address_destination(saved.address, saved.id))
  return _unique(result)


def _basket_destinations(
    basket: WorkingBasket, shipment: Shipment
) -> List[Dict[str, Any]]:
  """Addresses already on the basket: the shipment's, billing, the rest."""
  positions = {id(s): index + 1 for index, s in enumerate(basket.shipments)}
  own_id = shipment.custom.get("destination_id") or (
      f"ship_{positions.get(id(shipment), 1)}"
  )
  result = _address_destination(shipment.shipping_address, own_id)
  result.extend(_address_destination(basket.billing_address, "bill_1"))
  for other in basket.shipments:
    if other is not shipment:
      result.extend(
          _address_destination(
              other.shipping_address, f"ship_{positions[id(other)]}"
          )
      )
  return _unique(result)


def candidate_destinations(
    basket: WorkingBasket,
    shipment: Shipment,
    request_method: Any = None,
    merchant_locations: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
  """Lists the destinations a shipment can be sent to.

  Only the first source that yields anything is used: destinations in the
  request, else the address book of a registered customer, else addresses
  already on the basket, else the merchant locations. Duplicate addresses
  (same street, postal code and country) within a source are reported once.

  Args:
    basket: The working basket.
    shipment: The shipment to collect destinations for.
    request_method: The requested fulfillment method, if any.
    merchant_locations: Merchant stores as protocol destinations.

  Returns:
    The candidate destinations as protocol dicts.
  """
  if request_method is not None and request_method.destinations:
    return _request_destinations(request_method)
  return (
      _address_book_destinations(basket)
      or _basket_destinations(basket, shipment)
      or [dict(location) for location in merchant_locations or []]
  )


def select_destination(
    candidates: List[Dict[str, Any]], request_method: Any
) -> Optional[Dict[str, Any]]:
  """Picks the destination a request selects among `candidates`.

  An explicitly named id must be one of the candidates; an unknown id
  selects nothing. Without a named id, the first candidate is selected only
  when the request supplied its own destinations.
  """
  if request_method is None:
    return None
  if request_method.selected_destination_id:
    return next(
        (
            d
            for d in candidates
            if d["id"] == request_method.selected_destination_id
        ),
        None,
    )
  if request_method.destinations and candidates:
    return candidates[0]
  return None
