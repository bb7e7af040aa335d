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

"""Database initialization script for the UCP merchant server.

This script imports the catalog, promotions, inventory, customers, merchant
stores, coupons and shipping rates from CSV files into the configured SQLite
databases. Existing rows of those tables are cleared first; checkout
sessions, orders and vault tokens are left untouched.

Usage:
  ucp-merchant-import --products_db_path=... --transactions_db_path=...
  --data_dir=...
"""

import asyncio
import csv
import json
import logging
import os
from typing import Any, Dict, Iterator, Optional

from absl import app as absl_app
from absl import flags
from sqlalchemy import delete

from . import config
from . import db
from .db import Customer
from .db import CustomerAddress
from .db import Discount
from .db import Inventory
from .db import Product
from .db import Promotion
from .db import ShippingRate
from .db import Store

FLAGS = config.FLAGS

try:
  flags.DEFINE_string(
      "data_dir",
      os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
      "Directory containing products.csv, inventory.csv and the optional"
      " promotions, customers, addresses, stores, discounts and shipping"
      " rates files",
  )
except flags.DuplicateFlagError:
  pass

logger = logging.getLogger(__name__)


def _rows(data_dir: str, name: str) -> Iterator[Dict[str, str]]:
  path = os.path.join(data_dir, name)
  if not os.path.exists(path):
    logger.info("Skipping %s: file not found", name)
    return
  with open(path, "r", encoding="utf-8") as f:
    yield from csv.DictReader(f)


def _int_or_none(value: Optional[str]) -> Optional[int]:
  return int(value) if value else None


def _optional(row: Dict[str, Any], name: str) -> Optional[str]:
  return row.get(name) or None


async def import_csv_data(
    products_path: str,
    transactions_path: str,
    data_dir: str,
    manager: Optional[db.DatabaseManager] = None,
) -> None:
  """Reads CSV files and populates the databases."""
  manager = manager or db.manager
  # Ensure tables exist
  await manager.init_dbs(products_path, transactions_path)

  try:
    # Import Products and Promotions to Products DB
    async with manager.products_session_factory() as session:
      logger.info("Clearing existing products and promotions...")
      await session.execute(delete(Product))
      await session.execute(delete(Promotion))

      logger.info("Importing Products from CSV...")
      session.add_all(
          Product(
              id=row["id"],
              title=row["title"],
              price=int(row["price"]),
              image_url=_optional(row, "image_url"),
          )
          for row in _rows(data_dir, "products.csv")
      )

      logger.info("Importing Promotions from CSV...")
      session.add_all(
          Promotion(
              id=row["id"],
              type=row["type"],
              min_subtotal=_int_or_none(row.get("min_subtotal")),
              eligible_item_ids=(
                  json.loads(row["eligible_item_ids"])
                  if row.get("eligible_item_ids")
                  else None
              ),
              value=_int_or_none(row.get("value")),
              description=row["description"],
          )
          for row in _rows(data_dir, "promotions.csv")
      )
      await session.commit()

    # Import Inventory, Customers, Stores, Discounts and Shipping Rates to
    # Transactions DB
    async with manager.transactions_session_factory() as session:
      logger.info("Clearing existing reference data...")
      for model in (
          Inventory,
          CustomerAddress,
          Customer,
          Store,
          Discount,
          ShippingRate,
      ):
        await session.execute(delete(model))

      logger.info("Importing Inventory from CSV...")
      session.add_all(
          Inventory(product_id=row["product_id"], quantity=int(row["quantity"]))
          for row in _rows(data_dir, "inventory.csv")
      )

      logger.info("Importing Customers from CSV...")
      session.add_all(
          Customer(id=row["id"], name=row["name"], email=row["email"])
          for row in _rows(data_dir, "customers.csv")
      )

      logger.info("Importing Customer Addresses from CSV...")
      session.add_all(
          CustomerAddress(
              id=row["id"],
              customer_id=row["customer_id"],
              street_address=row["street_address"],
              city=row["city"],
              state=row["state"],
              postal_code=row["postal_code"],
              country=row["country"],
              first_name=_optional(row, "first_name"),
              last_name=_optional(row, "last_name"),
              phone_number=_optional(row, "phone_number"),
          )
          for row in _rows(data_dir, "addresses.csv")
      )

      logger.info("Importing Stores from CSV...")
      session.add_all(
          Store(
              id=row["id"],
              name=row["name"],
              street_address=_optional(row, "street_address"),
              city=_optional(row, "city"),
              state=_optional(row, "state"),
              postal_code=_optional(row, "postal_code"),
              country=_optional(row, "country"),
          )
          for row in _rows(data_dir, "stores.csv")
      )

      logger.info("Importing Discounts from CSV...")
      session.add_all(
          Discount(
              code=row["code"],
              type=row["type"],
              value=int(row["value"]),
              description=row["description"],
          )
          for row in _rows(data_dir, "discounts.csv")
      )

      logger.info("Importing Shipping Rates from CSV...")
      session.add_all(
          ShippingRate(
              id=row["id"],
              country_code=row["country_code"],
              service_level=row["service_level"],
              price=int(row["price"]),
              title=row["title"],
          )
          for row in _rows(data_dir, "shipping_rates.csv")
      )
      await session.commit()

    logger.info("Database populated from CSVs.")
  finally:
    await manager.close()


def main(argv) -> None:
  """Main entry point for the CSV import script."""
  del argv
  logging.basicConfig(level=logging.INFO)
  asyncio.run(
      import_csv_data(
          FLAGS.products_db_path or "products.db",
          FLAGS.transactions_db_path or "transactions.db",
          FLAGS.data_dir,
      )
  )


def run() -> None:
  absl_app.run(main)


if __name__ == "__main__":
  run()
