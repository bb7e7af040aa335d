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

"""Transactional unit of work for checkout session operations.

A unit of work is one transactions-database session that commits when the
block exits normally and rolls back when it raises. When it is scoped to a
checkout session it also holds that session's lock for its whole lifetime,
so the idempotency check, the basket mutations and the final save of two
requests for the same checkout never interleave inside this process.
Writers in other processes are caught by the version column of the checkout
row and surface as `ConcurrentModificationError`.
"""

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Optional
import weakref

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)


class SessionLocks:
  """Registry of per-checkout asyncio locks."""

  def __init__(self) -> None:
    self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
        weakref.WeakValueDictionary()
    )

  def get(self, checkout_id: str) -> asyncio.Lock:
    lock = self._locks.get(checkout_id)
    if lock is None:
      lock = asyncio.Lock()
      self._locks[checkout_id] = lock
    return lock


class UnitOfWork:
  """Opens transactions on the transactions database."""

  def __init__(
      self,
      session_factory: sessionmaker,
      locks: Optional[SessionLocks] = None,
  ) -> None:
    self._session_factory = session_factory
    self._locks = locks or SessionLocks()

  @contextlib.asynccontextmanager
  async def begin(
      self, checkout_id: Optional[str] = None
  ) -> AsyncIterator[AsyncSession]:
    """Runs the enclosed block as one atomic transaction.

    Args:
      checkout_id: When given, the block is serialized with every other unit
        of work for the same checkout session.

    Yields:
      The database session to run all reads and writes on.

    Raises:
      ConcurrentModificationError: The checkout row was changed by another
        writer between read and commit.
    """
    lock = self._locks.get(checkout_id) if checkout_id else None
    if lock is not None:
      await lock.acquire()
    try:
      async with self._session_factory() as session:
        try:
          yield session
          await session.commit()
        except StaleDataError as e:
          await session.rollback()
          logger.warning("Concurrent update of checkout %s", checkout_id)
          raise ConcurrentModificationError() from e
        except Exception:
          await session.rollback()
          raise
    finally:
      if lock is not None:
        lock.release()
