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

"""Discovery route for the UCP merchant server."""

from typing import Any, Dict

from fastapi import Depends

from .. import dependencies
from ..config import ShopConfig
from ..services.response_builder import CheckoutSessionResponseBuilder


async def get_merchant_profile(
    context: dependencies.RequestContext = Depends(
        dependencies.request_context
    ),
    shop_config: ShopConfig = Depends(dependencies.get_shop_config),
) -> Dict[str, Any]:
  """Returns the merchant profile and capabilities."""
  builder = CheckoutSessionResponseBuilder(shop_config, context.base_url)
  return builder.build_profile()
