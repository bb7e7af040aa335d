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

"""UCP protocol constants."""

UCP_VERSION = "2026-01-11"

SHOPPING_SERVICE = "dev.ucp.shopping"
SHOPPING_SERVICE_SPEC = "https://ucp.dev/specs/shopping"
SHOPPING_SERVICE_SCHEMA = "https://ucp.dev/services/shopping/openapi.json"

ORDER_CAPABILITY = "dev.ucp.shopping.order"

UCP_AGENT_HEADER = "UCP-Agent"
IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"

SESSION_ID_PATTERN = "[a-f0-9-]{26,36}"

WELL_KNOWN_PATH = "/.well-known/ucp"
CHECKOUT_SESSIONS_PATH = "/checkout-sessions"
TOKENIZE_PATH = "/tokenize"
ORDER_TRACK_PATH = "/orders/track"

SUBTOTAL_ALLOCATION_PATH = "$.totals[?(@.type=='subtotal')]"
SELECTED_OPTION_PATH = "$.fulfillment.methods[0].groups[0].selected_option_id"

CARD_INSTRUMENT_SCHEMA = (
    "https://ucp.dev/schemas/shopping/types/card_payment_instrument.json"
)
CREDIT_CARD_HANDLER_ID = "CREDIT_CARD"
CREDIT_CARD_HANDLER_NAME = "com.common.credit_card"

BUYER_CONSENT_LINKS = (
    ("terms_of_service", "/terms-of-service"),
    ("privacy_policy", "/privacy-policy"),
    ("cookie_policy", "/cookie-policy"),
)


def _capability(name: str, extends: str | None = None) -> dict:
  capability = {
      "name": f"dev.ucp.shopping.{name}",
      "version": UCP_VERSION,
      "spec": f"https://ucp.dev/specs/shopping/{name}",
      "schema": f"https://ucp.dev/schemas/shopping/{name}.json",
  }
  if extends:
    capability["extends"] = extends
  return capability


CAPABILITIES = {
    "checkout": _capability("checkout"),
    "order": _capability("order"),
    "refund": _capability("refund", extends=ORDER_CAPABILITY),
    "return": _capability("return", extends=ORDER_CAPABILITY),
    "dispute": _capability("dispute", extends=ORDER_CAPABILITY),
    "discount": _capability("discount", extends="dev.ucp.shopping.checkout"),
    "fulfillment": _capability(
        "fulfillment", extends="dev.ucp.shopping.checkout"
    ),
    "buyer_consent": _capability(
        "buyer_consent", extends="dev.ucp.shopping.checkout"
    ),
}

DEFAULT_CAPABILITIES = (
    "checkout",
    "order",
    "discount",
    "fulfillment",
    "buyer_consent",
)
