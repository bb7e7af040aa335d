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

"""Persistence for the merchant checkout engine.

Two SQLite files are used through SQLAlchemy's asyncio extension and
aiosqlite: the catalog database (products and promotions) and the
transactions database (inventory, customers and their address books, stores,
coupons, shipping rates, checkout sessions, orders and vault tokens).

`DatabaseManager` owns the engines and session factories for both files and
switches them to WAL journaling so several server processes can share them.
Checkout sessions carry a version column; a writer holding a stale row fails
at flush time with `StaleDataError`.

The module level coroutines below are the only queries the services issue.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy import Column
from sqlalchemy import delete
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

ProductBase = declarative_base()
TransactionBase = declarative_base()


class DatabaseManager:
  """Manages database engines and sessions without using global variables."""

  def __init__(self) -> None:
    self.products_engine: Optional[AsyncEngine] = None
    self.transactions_engine: Optional[AsyncEngine] = None
    self.products_session_factory: Optional[sessionmaker] = None
    self.transactions_session_factory: Optional[sessionmaker] = None

  async def init_dbs(self, products_path: str, transactions_path: str) -> None:
    """Initializes database engines and creates tables."""
    # Products DB Setup
    prod_url = f"sqlite+aiosqlite:///{products_path}"
    self.products_engine = create_async_engine(prod_url, echo=False)

    # Enable WAL mode for Products DB
    async with self.products_engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.products_session_factory = sessionmaker(
        self.products_engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.products_engine.begin() as conn:
      await conn.run_sync(ProductBase.metadata.create_all)

    # Transactions DB Setup (includes Inventory)
    trans_url = f"sqlite+aiosqlite:///{transactions_path}"
    self.transactions_engine = create_async_engine(trans_url, echo=False)

    # Enable WAL mode for Transactions DB
    async with self.transactions_engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.transactions_session_factory = sessionmaker(
        self.transactions_engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.transactions_engine.begin() as conn:
      await conn.run_sync(TransactionBase.metadata.create_all)

    logger.info(
        "Initialized databases at %s and %s", products_path, transactions_path
    )

  async def close(self) -> None:
    """Closes all database engines."""
    if self.products_engine:
      await self.products_engine.dispose()
    if self.transactions_engine:
      await self.transactions_engine.dispose()


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


def _now() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


class Product(ProductBase):
  __tablename__ = "products"

  id = Column(String, primary_key=True)
  title = Column(String)
  price = Column(Integer)  # Price in cents
  image_url = Column(String, nullable=True)


class Promotion(ProductBase):
  __tablename__ = "promotions"

  id = Column(String, primary_key=True)
  type = Column(String)  # 'free_shipping' or 'order_discount'
  min_subtotal = Column(Integer, nullable=True)  # In cents
  eligible_item_ids = Column(JSON, nullable=True)  # List of item IDs
  value = Column(Integer, nullable=True)  # Discount in cents
  description = Column(String)


class Inventory(TransactionBase):
  __tablename__ = "inventory"

  product_id = Column(String, primary_key=True)
  quantity = Column(Integer, default=0)


class Customer(TransactionBase):
  __tablename__ = "customers"

  id = Column(String, primary_key=True)
  name = Column(String)
  email = Column(String, index=True)

  addresses = relationship("CustomerAddress", back_populates="customer")


class CustomerAddress(TransactionBase):
  __tablename__ = "customer_addresses"

  id = Column(String, primary_key=True)
  customer_id = Column(String, ForeignKey("customers.id"))
  street_address = Column(String)
  city = Column(String)
  state = Column(String)
  postal_code = Column(String)
  country = Column(String)
  first_name = Column(String, nullable=True)
  last_name = Column(String, nullable=True)
  phone_number = Column(String, nullable=True)

  customer = relationship("Customer", back_populates="addresses")


class Store(TransactionBase):
  """A merchant location usable as a fallback fulfillment destination."""

  __tablename__ = "stores"

  id = Column(String, primary_key=True)
  name = Column(String)
  street_address = Column(String, nullable=True)
  city = Column(String, nullable=True)
  state = Column(String, nullable=True)
  postal_code = Column(String, nullable=True)
  country = Column(String, nullable=True)


class Discount(TransactionBase):
  __tablename__ = "discounts"

  code = Column(String, primary_key=True)
  type = Column(String)  # 'percentage' or 'fixed_amount'
  value = Column(Integer)  # Percentage (e.g., 10) or Amount in cents
  description = Column(String)


class ShippingRate(TransactionBase):
  __tablename__ = "shipping_rates"

  id = Column(String, primary_key=True)
  country_code = Column(String)  # e.g., 'US', 'default'
  service_level = Column(String)  # e.g., 'standard', 'express'
  price = Column(Integer)  # In cents
  title = Column(String)


class CheckoutSession(TransactionBase):
  __tablename__ = "checkout_sessions"

  id = Column(String, primary_key=True)
  status = Column(String)
  email = Column(String, nullable=True)
  full_name = Column(String, nullable=True)
  consent = Column(JSON, nullable=True)
  # Last response document, served verbatim on GET
  data = Column(JSON)
  # Idempotency key -> {request_hash, status, response_body}
  idempotency_records = Column(JSON, default=dict)
  version = Column(Integer, nullable=False)
  updated_at = Column(String)

  __mapper_args__ = {"version_id_col": version}


class Order(TransactionBase):
  __tablename__ = "orders"

  id = Column(String, primary_key=True)
  checkout_id = Column(String, index=True, nullable=True)
  status = Column(String)
  data = Column(JSON)
  created_at = Column(String)


class VaultToken(TransactionBase):
  __tablename__ = "vault_tokens"

  token = Column(String, primary_key=True)
  data = Column(String)  # Encrypted credential
  created_at = Column(String)


# --- Data Access Helpers ---


async def get_shipping_rates(
    session: AsyncSession, country_code: Optional[str]
) -> List[ShippingRate]:
  """Retrieves shipping rates for a specific country and default rates.

  Args:
    session: The database session to use.
    country_code: The ISO country code (e.g., 'US') to fetch rates for. When
      empty only the 'default' rates are returned.

  Returns:
    A list of ShippingRate objects matching the country or 'default'.
  """
  countries = ["default"]
  if country_code:
    countries.append(country_code)
  result = await session.execute(
      select(ShippingRate).where(ShippingRate.country_code.in_(countries))
  )
  return list(result.scalars().all())


async def get_shipping_rate(
    session: AsyncSession, rate_id: str
) -> Optional[ShippingRate]:
  """Retrieves a shipping rate by ID."""
  return await session.get(ShippingRate, rate_id)


async def get_discount(session: AsyncSession, code: str) -> Optional[Discount]:
  """Retrieves a discount by code.

  Args:
    session: The database session to use.
    code: The discount code to look up.

  Returns:
    The Discount object if found, otherwise None.
  """
  return await session.get(Discount, code)


async def get_active_promotions(session: AsyncSession) -> List[Promotion]:
  """Retrieves all active promotions."""
  result = await session.execute(select(Promotion))
  return list(result.scalars().all())


async def get_product(
    session: AsyncSession, product_id: str
) -> Optional[Product]:
  """Retrieves a product by ID."""
  return await session.get(Product, product_id)


async def get_customer(session: AsyncSession, email: str) -> Optional[Customer]:
  """Retrieves a customer by email."""
  result = await session.execute(
      select(Customer).where(Customer.email == email)
  )
  return result.scalar_one_or_none()


async def get_customer_addresses(
    session: AsyncSession, email: str
) -> List[CustomerAddress]:
  """Retrieves the address book of a customer by email."""
  customer = await get_customer(session, email)
  if not customer:
    return []

  result = await session.execute(
      select(CustomerAddress)
      .where(CustomerAddress.customer_id == customer.id)
      .order_by(CustomerAddress.id)
  )
  return list(result.scalars().all())


async def get_stores(session: AsyncSession) -> List[Store]:
  """Retrieves all merchant stores ordered by name."""
  result = await session.execute(select(Store).order_by(Store.name))
  return list(result.scalars().all())


async def reserve_stock(
    session: AsyncSession, product_id: str, quantity: int
) -> bool:
  """Atomically decrements inventory if sufficient stock exists."""
  stmt = (
      update(Inventory)
      .where(Inventory.product_id == product_id)
      .where(Inventory.quantity >= quantity)
      .values(quantity=Inventory.quantity - quantity)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def release_stock(
    session: AsyncSession, product_id: str, quantity: int
) -> None:
  """Returns previously reserved units to inventory."""
  await session.execute(
      update(Inventory)
      .where(Inventory.product_id == product_id)
      .values(quantity=Inventory.quantity + quantity)
  )


async def get_checkout_record(
    session: AsyncSession, checkout_id: str
) -> Optional[CheckoutSession]:
  """Retrieves the checkout session row by ID."""
  return await session.get(CheckoutSession, checkout_id)


async def get_checkout_session(
    session: AsyncSession, checkout_id: str
) -> Optional[Dict[str, Any]]:
  """Retrieves the stored response document of a checkout session."""
  result = await get_checkout_record(session, checkout_id)
  if result:
    return result.data
  return None


async def save_checkout(
    session: AsyncSession,
    checkout_id: str,
    status: str,
    checkout_obj: Dict[str, Any],
    email: Optional[str] = None,
    full_name: Optional[str] = None,
    consent: Optional[Dict[str, Any]] = None,
) -> CheckoutSession:
  """Saves or updates a checkout session."""
  existing = await session.get(CheckoutSession, checkout_id)
  if existing:
    existing.status = status
    existing.data = checkout_obj
    existing.email = email
    existing.full_name = full_name
    existing.consent = consent or {}
    existing.updated_at = _now()
    return existing

  new_checkout = CheckoutSession(
      id=checkout_id,
      status=status,
      data=checkout_obj,
      email=email,
      full_name=full_name,
      consent=consent or {},
      idempotency_records={},
      updated_at=_now(),
  )
  session.add(new_checkout)
  return new_checkout


async def save_order(
    session: AsyncSession,
    order_id: str,
    order_obj: Dict[str, Any],
    status: str,
    checkout_id: Optional[str] = None,
) -> None:
  """Saves or updates an order."""
  existing = await session.get(Order, order_id)
  if existing:
    existing.data = order_obj
    existing.status = status
  else:
    new_order = Order(
        id=order_id,
        checkout_id=checkout_id,
        status=status,
        data=order_obj,
        created_at=_now(),
    )
    session.add(new_order)


async def save_vault_token(
    session: AsyncSession, token: str, encrypted: str
) -> None:
  """Stores an encrypted credential under its token."""
  session.add(VaultToken(token=token, data=encrypted, created_at=_now()))


async def get_vault_token(
    session: AsyncSession, token: str
) -> Optional[VaultToken]:
  """Retrieves a vault record by token."""
  return await session.get(VaultToken, token)


async def delete_vault_token(session: AsyncSession, token: str) -> None:
  """Removes a vault record."""
  await session.execute(delete(VaultToken).where(VaultToken.token == token))
