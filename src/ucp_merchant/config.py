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

"""Shared configuration and startup logic for the UCP merchant server."""

import contextlib
import logging
import os
from typing import List

from absl import flags
from cryptography.fernet import Fernet
from fastapi import FastAPI
from pydantic import BaseModel

from . import constants
from . import db

FLAGS = flags.FLAGS

logger = logging.getLogger(__name__)

VAULT_KEYS_ENV = "UCP_VAULT_KEYS"

_EPHEMERAL_VAULT_KEY = None

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("products_db_path", None, "Path to products DB")
  flags.DEFINE_string("transactions_db_path", None, "Path to transactions DB")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_bool(
      "debug", False, "Log the protocol operation of every request"
  )
  flags.DEFINE_string("shop_id", "ucp-merchant", "Identifier of this shop")
  flags.DEFINE_list(
      "capabilities",
      list(constants.DEFAULT_CAPABILITIES),
      "Capabilities advertised to agents",
  )
  flags.DEFINE_list(
      "allowed_currencies", ["USD"], "Currencies accepted for checkout"
  )
  flags.DEFINE_float(
      "tax_rate", 0.0, "Tax rate applied to merchandise and shipping"
  )
  flags.DEFINE_list(
      "vault_keys",
      [],
      "Fernet keys for the token vault, newest first. Falls back to the"
      f" {VAULT_KEYS_ENV} environment variable.",
  )
  flags.DEFINE_integer(
      "token_ttl_seconds", 900, "Lifetime of a tokenized payment credential"
  )
  flags.DEFINE_list(
      "fraud_blocked_emails", [], "Buyer emails rejected by the fraud check"
  )
  flags.DEFINE_list(
      "declined_card_numbers",
      ["4000000000000002"],
      "Card numbers for which payment authorization is declined",
  )
except flags.DuplicateFlagError:
  pass


class ShopConfig(BaseModel):
  """Merchant settings resolved from flags."""

  shop_id: str
  capabilities: List[str]
  allowed_currencies: List[str]
  tax_rate: float = 0.0
  vault_keys: List[str]
  token_ttl_seconds: int = 900
  fraud_blocked_emails: List[str] = []
  declined_card_numbers: List[str] = []
  debug: bool = False

  def has_capability(self, capability: str) -> bool:
    return capability in self.capabilities


def get_server_version() -> str:
  """Returns the protocol version implemented by this server."""
  return constants.UCP_VERSION


def _ensure_flags_parsed() -> None:
  # Test runners other than absltest import this module without parsing argv.
  if not FLAGS.is_parsed():
    FLAGS.mark_as_parsed()


def _resolve_vault_keys() -> List[str]:
  """Returns the configured vault keys, or a per-process ephemeral key."""
  global _EPHEMERAL_VAULT_KEY
  if FLAGS.vault_keys:
    return list(FLAGS.vault_keys)

  env_keys = os.environ.get(VAULT_KEYS_ENV, "")
  keys = [key.strip() for key in env_keys.split(",") if key.strip()]
  if keys:
    return keys

  if _EPHEMERAL_VAULT_KEY is None:
    logger.warning(
        "No vault key configured; generated an ephemeral key. Tokens will"
        " not survive a restart."
    )
    _EPHEMERAL_VAULT_KEY = Fernet.generate_key().decode("ascii")
  return [_EPHEMERAL_VAULT_KEY]


def get_shop_config() -> ShopConfig:
  """Builds the shop configuration from command line flags."""
  _ensure_flags_parsed()
  return ShopConfig(
      shop_id=FLAGS.shop_id,
      capabilities=list(FLAGS.capabilities),
      allowed_currencies=[c.upper() for c in FLAGS.allowed_currencies],
      tax_rate=FLAGS.tax_rate,
      vault_keys=_resolve_vault_keys(),
      token_ttl_seconds=FLAGS.token_ttl_seconds,
      fraud_blocked_emails=[e.lower() for e in FLAGS.fraud_blocked_emails],
      declined_card_numbers=list(FLAGS.declined_card_numbers),
      debug=FLAGS.debug,
  )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing databases."""
  del app  # Unused.
  _ensure_flags_parsed()
  # In tests or if flags aren't set, these might be None, handled by caller
  if FLAGS.products_db_path and FLAGS.transactions_db_path:
    await db.manager.init_dbs(
        FLAGS.products_db_path, FLAGS.transactions_db_path
    )
  yield
  await db.manager.close()
