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

"""Tests for the payment credential vault."""

import asyncio
import datetime

from absl.testing import absltest
from cryptography.fernet import Fernet

from ucp_merchant import db
from ucp_merchant import testing
from ucp_merchant.exceptions import InvalidCredentialError
from ucp_merchant.exceptions import SessionMismatchError
from ucp_merchant.exceptions import TokenNotFoundError
from ucp_merchant.services.token_vault import TokenVault

CHECKOUT_ID = "0b7c8a3e-5f1d-4e0a-9c2b-7d6e5f4a3b21"
OTHER_CHECKOUT_ID = "1c8d9b4f-6a2e-4f1b-8d3c-8e7f6a5b4c32"
CARD = {
    "type": "card",
    "number": "4111111111111111",
    "expiry_month": 12,
    "expiry_year": 2030,
    "cvc": "123",
}


class TokenVaultTest(testing.DatabaseTestCase):

  def setUp(self):
    super().setUp()
    self.key = Fernet.generate_key().decode("ascii")
    self.vault = TokenVault([self.key])

  def _tokenize(self, credential, vault=None):
    vault = vault or self.vault

    async def tokenize():
      async with self.transactions_session_factory() as session:
        token = await vault.tokenize(session, credential)
        await session.commit()
        return token

    return asyncio.run(tokenize())

  def _redeem(self, token, checkout_id=None, vault=None):
    vault = vault or self.vault

    async def redeem():
      async with self.transactions_session_factory() as session:
        return await vault.redeem(session, token, checkout_id)

    return asyncio.run(redeem())

  def test_requires_a_key(self):
    with self.assertRaises(ValueError):
      TokenVault([])

  def test_tokenize_and_redeem(self):
    token = self._tokenize(CARD)

    self.assertStartsWith(token, "tok_")
    self.assertEqual(self._redeem(token), CARD)

  def test_stored_payload_is_encrypted(self):
    token = self._tokenize(CARD)

    async def stored():
      async with self.transactions_session_factory() as session:
        return (await db.get_vault_token(session, token)).data

    data = asyncio.run(stored())
    self.assertNotIn(CARD["number"], data)

  def test_unknown_token(self):
    with self.assertRaises(TokenNotFoundError):
      self._redeem("tok_unknown")

  def test_expired_token(self):
    token = self._tokenize(CARD)

    async def backdate():
      async with self.transactions_session_factory() as session:
        record = await db.get_vault_token(session, token)
        record.created_at = (
            datetime.datetime.now(datetime.timezone.utc)
            - datetime.timedelta(hours=1)
        ).isoformat()
        await session.commit()

    asyncio.run(backdate())

    with self.assertRaises(TokenNotFoundError):
      self._redeem(token)

  def test_credential_bound_to_the_same_session(self):
    token = self._tokenize(dict(CARD, binding={"checkout_id": CHECKOUT_ID}))

    self.assertEqual(self._redeem(token, CHECKOUT_ID)["number"], CARD["number"])

  def test_credential_bound_to_another_session(self):
    token = self._tokenize(dict(CARD, binding={"checkout_id": CHECKOUT_ID}))

    with self.assertRaises(SessionMismatchError):
      self._redeem(token, OTHER_CHECKOUT_ID)

  def test_credential_without_card_number(self):
    token = self._tokenize({"expiry_month": 12, "expiry_year": 2030})

    with self.assertRaises(InvalidCredentialError):
      self._redeem(token)

  def test_token_encrypted_with_unknown_key(self):
    token = self._tokenize(CARD)
    other_vault = TokenVault([Fernet.generate_key().decode("ascii")])

    with self.assertRaises(InvalidCredentialError):
      self._redeem(token, vault=other_vault)

  def test_rotated_key_still_decrypts(self):
    token = self._tokenize(CARD)
    rotated = TokenVault([Fernet.generate_key().decode("ascii"), self.key])

    self.assertEqual(self._redeem(token, vault=rotated), CARD)

  def test_consumed_token_cannot_be_redeemed(self):
    token = self._tokenize(CARD)

    async def consume():
      async with self.transactions_session_factory() as session:
        await self.vault.consume(session, token)
        await session.commit()

    asyncio.run(consume())

    with self.assertRaises(TokenNotFoundError):
      self._redeem(token)


if __name__ == "__main__":
  absltest.main()
