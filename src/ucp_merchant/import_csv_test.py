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

import asyncio
import os
import shutil
import tempfile

from absl.testing import absltest
from sqlalchemy import func
from sqlalchemy import select

from ucp_merchant import db
from ucp_merchant import import_csv
from ucp_merchant import testing

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")


class ImportCsvTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.products_db = os.path.join(self.test_dir, "products.db")
    self.transactions_db = os.path.join(self.test_dir, "transactions.db")

  def tearDown(self):
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _import(self, data_dir=DATA_DIR):
    asyncio.run(
        import_csv.import_csv_data(
            self.products_db,
            self.transactions_db,
            data_dir,
            manager=db.DatabaseManager(),
        )
    )

  def _query(self, work):
    async def run():
      manager = db.DatabaseManager()
      await manager.init_dbs(self.products_db, self.transactions_db)
      try:
        async with manager.products_session_factory() as products:
          async with manager.transactions_session_factory() as transactions:
            return await work(products, transactions)
      finally:
        await manager.close()

    return asyncio.run(run())

  def test_imports_sample_data(self):
    self._import()

    async def work(products, transactions):
      product = await db.get_product(products, "bouquet_roses")
      stock = await testing.get_inventory(transactions, "bouquet_roses")
      discount = await db.get_discount(transactions, "FIXED500")
      addresses = await db.get_customer_addresses(
          transactions, "john.doe@example.com"
      )
      stores = await db.get_stores(transactions)
      promotions = await db.get_active_promotions(products)
      return product, stock, discount, addresses, stores, promotions

    product, stock, discount, addresses, stores, promotions = self._query(work)
    self.assertEqual(product.price, 3500)
    self.assertEqual(stock, 100)
    self.assertEqual(discount.type, "fixed_amount")
    self.assertEqual(discount.value, 500)
    self.assertEqual([a.id for a in addresses], ["addr_1", "addr_2"])
    self.assertEqual(addresses[0].first_name, "John")
    self.assertIsNone(addresses[1].phone_number)
    self.assertEqual([s.id for s in stores], ["store_downtown"])
    orchid = next(p for p in promotions if p.id == "promo_orchid_ship")
    self.assertEqual(orchid.eligible_item_ids, ["orchid_white"])
    self.assertIsNone(orchid.min_subtotal)

  def test_reimport_replaces_reference_data(self):
    self._import()
    self._import()

    async def work(products, transactions):
      del products  # Unused.
      result = await transactions.execute(
          select(func.count()).select_from(db.Inventory)
      )
      return result.scalar_one()

    self.assertEqual(self._query(work), 4)

  def test_missing_optional_files_are_skipped(self):
    data_dir = os.path.join(self.test_dir, "data")
    os.makedirs(data_dir)
    for name in ("products.csv", "inventory.csv"):
      shutil.copy(os.path.join(DATA_DIR, name), data_dir)

    self._import(data_dir)

    async def work(products, transactions):
      product = await db.get_product(products, "orchid_white")
      stores = await db.get_stores(transactions)
      return product, stores

    product, stores = self._query(work)
    self.assertEqual(product.title, "White Orchid")
    self.assertEmpty(stores)


if __name__ == "__main__":
  absltest.main()
