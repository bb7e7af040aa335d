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

"""Short-lived vault for tokenized payment credentials.

Credentials are encrypted with Fernet (AES-CBC with a random IV and an
HMAC-SHA256 tag) and stored under an opaque `tok_<uuid>` handle. The key list
is a `MultiFernet`: the first key encrypts, every key decrypts, so keys can be
rotated without invalidating live tokens.
"""

import datetime
import json
import logging
from typing import Any, Dict, List, Optional
import uuid

from cryptography.fernet import Fernet
from cryptography.fernet import InvalidToken
from cryptography.fernet import MultiFernet
from sqlalchemy.ext.asyncio import AsyncSession

from .. import db
from ..exceptions import InvalidCredentialError
from ..exceptions import SessionMismatchError
from ..exceptions import TokenNotFoundError

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "tok_"
REQUIRED_CARD_FIELDS = ("number", "expiry_month", "expiry_year")


class TokenVault:
  """Encrypts, stores and redeems payment credentials."""

  def __init__(self, keys: List[str], ttl_seconds: int = 900):
    if not keys:
      raise ValueError("TokenVault requires at least one key")
    self._fernet = MultiFernet([Fernet(key) for key in keys])
    self._ttl = datetime.timedelta(seconds=ttl_seconds)

  async def tokenize(
      self, session: AsyncSession, credential: Dict[str, Any]
  ) -> str:
    """Stores `credential` and returns its token."""
    token = f"{TOKEN_PREFIX}{uuid.uuid4()}"
    payload = json.dumps(credential).encode("utf-8")
    encrypted = self._fernet.encrypt(payload).decode("ascii")
    await db.save_vault_token(session, token, encrypted)
    logger.info("Tokenized credential as %s", token)
    return token

  async def redeem(
      self,
      session: AsyncSession,
      token: str,
      checkout_id: Optional[str] = None,
  ) -> Dict[str, Any]:
    """Returns the card credential stored under `token`.

    Args:
      session: The transactions database session.
      token: The token returned by `tokenize`.
      checkout_id: The checkout session completing the payment. A credential
        bound to another session is rejected.

    Returns:
      The decrypted credential.

    Raises:
      TokenNotFoundError: The token is unknown or expired.
      InvalidCredentialError: The stored payload cannot be decrypted or is
        not a card credential.
      SessionMismatchError: The credential is bound to another session.
    """
    record = await db.get_vault_token(session, token)
    if record is None:
      raise TokenNotFoundError()

    if self._is_expired(record.created_at):
      logger.info("Token %s has expired", token)
      raise TokenNotFoundError()

    try:
      credential = json.loads(self._fernet.decrypt(record.data.encode("ascii")))
    except (InvalidToken, ValueError) as e:
      logger.warning("Could not decrypt credential for token %s", token)
      raise InvalidCredentialError() from e

    if not isinstance(credential, dict) or not all(
        credential.get(field) for field in REQUIRED_CARD_FIELDS
    ):
      raise InvalidCredentialError()

    binding = credential.get("binding") or {}
    bound_checkout_id = binding.get("checkout_id")
    if checkout_id and bound_checkout_id and bound_checkout_id != checkout_id:
      logger.warning(
          "Token %s is bound to checkout %s, not %s",
          token,
          bound_checkout_id,
          checkout_id,
      )
      raise SessionMismatchError()

    return credential

  async def consume(self, session: AsyncSession, token: str) -> None:
    """Deletes a redeemed token so it cannot be used again."""
    await db.delete_vault_token(session, token)

  def _is_expired(self, created_at: Optional[str]) -> bool:
    if not created_at:
      return True
    created = datetime.datetime.fromisoformat(created_at)
    now = datetime.datetime.now(datetime.timezone.utc)
    return now - created > self._ttl
