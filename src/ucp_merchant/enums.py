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

"""Enumerations for the UCP merchant checkout engine.

This module defines the states a checkout session and a placed order move
through, and the verdicts of the fraud hook.
"""

import enum


class CheckoutStatus(str, enum.Enum):
  INCOMPLETE = "incomplete"
  READY_FOR_COMPLETE = "ready_for_complete"
  COMPLETED = "completed"


class OrderStatus(str, enum.Enum):
  CREATED = "created"
  PLACED = "placed"
  FAILED = "failed"


class FraudCheckResult(str, enum.Enum):
  PASS = "pass"
  FAIL = "fail"
