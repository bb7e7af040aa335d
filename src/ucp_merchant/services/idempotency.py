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

"""Per-session idempotency records.

Records live on the checkout session row, keyed by the client supplied
idempotency key. A key may be replayed with an identical body any number of
times (the request is executed again, not short-circuited); replaying it with
a different body is a conflict. Both the check and the save run on the
caller's database session, inside the unit of work that also persists the
checkout.
"""

import dataclasses
import hashlib
import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .. import db

logger = logging.getLogger(__name__)


def compute_hash(data: Any) -> str:
  """Computes a SHA-256 fingerprint of a JSON request body.

  Object keys are sorted at every nesting level and arrays keep their order,
  so the fingerprint ignores key order only.

  Args:
    data: The decoded JSON body.

  Returns:
    The hex encoded digest.
  """
  canonical = json.dumps(
      data, sort_keys=True, separators=(",", ":"), ensure_ascii=False
  )
  return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclasses.dataclass(frozen=True)
class IdempotencyCheck:
  conflict: bool
  request_hash: str


class IdempotencyStore:
  """Reads and writes the idempotency map of a checkout session."""

  async def get_record(
      self, session: AsyncSession, checkout_id: str, key: str
  ) -> Optional[Dict[str, Any]]:
    record = await db.get_checkout_record(session, checkout_id)
    if not record or not isinstance(record.idempotency_records, dict):
      return None
    return record.idempotency_records.get(key)

  async def check_conflict(
      self,
      session: AsyncSession,
      checkout_id: Optional[str],
      key: Optional[str],
      body: Any,
  ) -> IdempotencyCheck:
    """Checks whether `key` was already used with a different body.

    Args:
      session: The transactions database session of the unit of work.
      checkout_id: The checkout session the key is scoped to.
      key: The idempotency key, if the client sent one.
      body: The decoded JSON body of the request.

    Returns:
      The check result together with the body fingerprint to save later.
    """
    request_hash = compute_hash(body)
    if not key or not checkout_id:
      return IdempotencyCheck(conflict=False, request_hash=request_hash)

    cached = await self.get_record(session, checkout_id, key)
    if cached and cached.get("request_hash") != request_hash:
      logger.warning(
          "Idempotency key %s reused with a different body for checkout %s",
          key,
          checkout_id,
      )
      return IdempotencyCheck(conflict=True, request_hash=request_hash)
    return IdempotencyCheck(conflict=False, request_hash=request_hash)

  async def save(
      self,
      session: AsyncSession,
      checkout_id: str,
      key: Optional[str],
      request_hash: str,
      response_body: Dict[str, Any],
      status: int,
  ) -> None:
    """Upserts the record for `key` on the checkout session."""
    if not key:
      return

    record = await db.get_checkout_record(session, checkout_id)
    if record is None:
      logger.error(
          "Cannot save idempotency record: checkout %s does not exist",
          checkout_id,
      )
      return

    records = dict(record.idempotency_records or {})
    records[key] = {
        "request_hash": request_hash,
        "status": status,
        "response_body": response_body,
    }
    # Reassign so the JSON column is flagged as modified.
    record.idempotency_records = records
