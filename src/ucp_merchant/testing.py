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

"""Shared fixtures for tests that need the SQLite databases."""

import asyncio
import os
import shutil
import tempfile
from typing import Optional

from absl.testing import absltest
from cryptography.fernet import Fernet
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from . import db
from .config import ShopConfig


def make_shop_config(**overrides) -> ShopConfig:
  values = dict(
      shop_id="test-shop",
      capabilities=[
          "checkout",
          "order",
          "discount",
          "fulfillment",
          "buyer_consent",
      ],
      allowed_currencies=["USD"],
      tax_rate=0.0,
      vault_keys=[Fernet.generate_key().decode("ascii")],
      token_ttl_seconds=900,
      fraud_blocked_emails=["fraud@example.com"],
      declined_card_numbers=["4000000000000002"],
  )
  values.update(overrides)
  return ShopConfig(**values)


class DatabaseTestCase(absltest.TestCase):
  """Test case with temporary products and transactions databases."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.products_db = os.path.join(self.test_dir, "test_products.db")
    self.transactions_db = os.path.join(self.test_dir, "test_transactions.db")

    # Connections are not pooled so the engines can be shared between the
    # event loops of asyncio.run and the TestClient.
    self.products_engine = create_async_engine(
        f"sqlite+aiosqlite:///{self.products_db}", poolclass=NullPool
    )
    self.products_session_factory = sessionmaker(
        self.products_engine, expire_on_commit=False, class_=AsyncSession
    )
    self.transactions_engine = create_async_engine(
        f"sqlite+aiosqlite:///{self.transactions_db}", poolclass=NullPool
    )
    self.transactions_session_factory = sessionmaker(
        self.transactions_engine, expire_on_commit=False, class_=AsyncSession
    )

    async def init_schemas() -> None:
      async with self.products_engine.begin() as conn:
        await conn.run_sync(db.ProductBase.metadata.create_all)
      async with self.transactions_engine.begin() as conn:
        await conn.run_sync(db.TransactionBase.metadata.create_all)

    asyncio.run(init_schemas())

  def tearDown(self) -> None:
    async def dispose_engines() -> None:
      await self.products_engine.dispose()
      await self.transactions_engine.dispose()

    asyncio.run(dispose_engines())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def seed(self, products=(), transactions=()) -> None:
    """Adds rows to the products and transactions databases."""

    async def add_rows() -> None:
      async with self.products_session_factory() as session:
        session.add_all(list(products))
        await session.commit()
      async with self.transactions_session_factory() as session:
        session.add_all(list(transactions))
        await session.commit()

    asyncio.run(add_rows())


async def get_inventory(
    session: AsyncSession, product_id: str
) -> Optional[int]:
  """Returns the stock level of a product, or None without a row."""
  result = await session.execute(
      select(db.Inventory.quantity).where(db.Inventory.product_id == product_id)
  )
  return result.scalar_one_or_none()


async def get_order(
    session: AsyncSession, order_id: str
) -> Optional[db.Order]:
  """Returns the order row with the given id, or None."""
  return await session.get(db.Order, order_id)
