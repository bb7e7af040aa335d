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

"""Custom exceptions for the UCP merchant checkout engine.

Every protocol-level failure is a `UcpError` carrying the HTTP status it maps
to. The route class in `routing.py` renders them as
`{"error": true, "message": ...}`.
"""

TECHNICAL_ERROR_MESSAGE = (
    "A technical error occurred while placing the order. Please try again."
)


class UcpError(Exception):
  """Base class for all UCP exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class ResourceNotFoundError(UcpError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class TokenNotFoundError(ResourceNotFoundError):
  """Raised when a payment token is unknown or has expired."""

  def __init__(self, message: str = "Credential token is not valid"):
    super().__init__(message)
    self.code = "TOKEN_NOT_FOUND"


class InvalidRequestError(UcpError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class InvalidCredentialError(UcpError):
  """Raised when a payment credential cannot be used."""

  def __init__(self, message: str = "Credential is not valid"):
    super().__init__(message, code="INVALID_CREDENTIAL", status_code=400)


class SessionMismatchError(UcpError):
  """Raised when a token is bound to a different checkout session."""

  def __init__(
      self, message: str = "Checkout session not found or invalid"
  ):
    super().__init__(message, code="SESSION_MISMATCH", status_code=400)


class IdempotencyConflictError(UcpError):
  """Raised when an idempotency key is reused with different parameters."""

  def __init__(
      self, message: str = "Idempotency key reused with different parameters"
  ):
    super().__init__(message, code="IDEMPOTENCY_CONFLICT", status_code=409)


class CheckoutNotModifiableError(UcpError):
  """Raised when attempting to modify a checkout in a terminal state."""

  def __init__(self, message: str):
    super().__init__(message, code="CHECKOUT_NOT_MODIFIABLE", status_code=409)


class ConcurrentModificationError(UcpError):
  """Raised when another request committed the session first."""

  def __init__(
      self, message: str = "Checkout session was modified concurrently"
  ):
    super().__init__(message, code="CONCURRENT_MODIFICATION", status_code=409)


class OrderProcessingError(UcpError):
  """Raised when the order pipeline fails after the order was created.

  The caller only ever sees a generic technical message; `reason` keeps the
  detail for the logs.
  """

  def __init__(self, reason: str, code: str = "ORDER_PROCESSING_FAILED"):
    super().__init__(TECHNICAL_ERROR_MESSAGE, code=code, status_code=500)
    self.reason = reason


class OrderCreationError(OrderProcessingError):

  def __init__(self, reason: str):
    super().__init__(reason, code="ORDER_CREATION_FAILED")


class PaymentAuthorizationError(OrderProcessingError):

  def __init__(self, reason: str):
    super().__init__(reason, code="PAYMENT_FAILED")


class FraudCheckFailedError(OrderProcessingError):

  def __init__(self, reason: str):
    super().__init__(reason, code="FRAUD_CHECK_FAILED")


class OrderPlacementError(OrderProcessingError):

  def __init__(self, reason: str):
    super().__init__(reason, code="ORDER_PLACEMENT_FAILED")
