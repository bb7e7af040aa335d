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

"""Tests for request classification and the protocol error boundary."""

from typing import Any, Dict

from absl.testing import absltest
from absl.testing import parameterized
from fastapi import APIRouter
from fastapi import Body
from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.testclient import TestClient

from ucp_merchant import routing
from ucp_merchant.exceptions import IdempotencyConflictError
from ucp_merchant.exceptions import PaymentAuthorizationError
from ucp_merchant.exceptions import TECHNICAL_ERROR_MESSAGE
from ucp_merchant.routing import Operation

SESSION_ID = "0b7c8a3e-5f1d-4e0a-9c2b-7d6e5f4a3b21"


class ClassifyTest(parameterized.TestCase):

  @parameterized.named_parameters(
      ("discovery", "GET", "/.well-known/ucp", Operation.DISCOVERY),
      ("create", "POST", "/checkout-sessions", Operation.CREATE_SESSION),
      (
          "get",
          "GET",
          f"/checkout-sessions/{SESSION_ID}",
          Operation.GET_SESSION,
      ),
      (
          "modify",
          "PUT",
          f"/checkout-sessions/{SESSION_ID}",
          Operation.MODIFY_SESSION,
      ),
      (
          "complete",
          "POST",
          f"/checkout-sessions/{SESSION_ID}/complete",
          Operation.COMPLETE_SESSION,
      ),
      ("tokenize", "POST", "/tokenize", Operation.TOKENIZE),
      ("lowercase_method", "get", "/.well-known/ucp", Operation.DISCOVERY),
  )
  def test_classifies_protocol_operations(self, method, path, operation):
    result = routing.classify(method, path)

    self.assertIsInstance(result, routing.Matched)
    self.assertEqual(result.operation, operation)

  def test_extracts_session_id(self):
    result = routing.classify("POST", f"/checkout-sessions/{SESSION_ID}/complete")

    self.assertEqual(result.params, {"checkout_id": SESSION_ID})

  @parameterized.named_parameters(
      ("uppercase_id", "GET", "/checkout-sessions/ABCDEF0123456789ABCDEF0123"),
      ("short_id", "GET", "/checkout-sessions/" + "a" * 25),
      ("long_id", "GET", "/checkout-sessions/" + "a" * 37),
      ("non_hex_id", "PUT", "/checkout-sessions/" + "z" * 30),
      ("wrong_method", "DELETE", f"/checkout-sessions/{SESSION_ID}"),
      ("get_tokenize", "GET", "/tokenize"),
      ("unknown_path", "GET", "/orders"),
      ("trailing_segment", "POST", f"/checkout-sessions/{SESSION_ID}/cancel"),
  )
  def test_unmatched(self, method, path):
    result = routing.classify(method, path)

    self.assertIsInstance(result, routing.Unmatched)
    self.assertEqual(result.path, path)

  def test_minimum_length_id_matches(self):
    result = routing.classify("GET", "/checkout-sessions/" + "a" * 26)

    self.assertIsInstance(result, routing.Matched)

  def test_find_route(self):
    route = routing.find_route(Operation.CREATE_SESSION)

    self.assertEqual(route.method, "POST")
    self.assertEqual(route.status_code, 201)

  def test_route_table_covers_every_operation(self):
    self.assertCountEqual(
        [route.operation for route in routing.ROUTE_TABLE], list(Operation)
    )


class ProtocolRouteTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    router = APIRouter(route_class=routing.ProtocolRoute)

    @router.post("/conflict")
    async def conflict():
      raise IdempotencyConflictError()

    @router.post("/payment")
    async def payment():
      raise PaymentAuthorizationError("card declined")

    @router.post("/boom")
    async def boom():
      raise RuntimeError("unexpected")

    @router.post("/http")
    async def http():
      raise HTTPException(status_code=403, detail="Forbidden")

    @router.post("/echo")
    async def echo(body: Dict[str, Any] = Body(...)):
      return body

    app = FastAPI()
    app.include_router(router)
    self.client = TestClient(app)

  def test_ucp_error_keeps_status(self):
    response = self.client.post("/conflict")

    self.assertEqual(response.status_code, 409)
    self.assertEqual(
        response.json(),
        {
            "error": True,
            "message": "Idempotency key reused with different parameters",
        },
    )

  def test_order_processing_error_hides_reason(self):
    response = self.client.post("/payment")

    self.assertEqual(response.status_code, 500)
    self.assertEqual(response.json()["message"], TECHNICAL_ERROR_MESSAGE)

  def test_unhandled_exception_becomes_500(self):
    response = self.client.post("/boom")

    self.assertEqual(response.status_code, 500)
    self.assertEqual(
        response.json(), {"error": True, "message": "Internal server error"}
    )

  def test_http_exception(self):
    response = self.client.post("/http")

    self.assertEqual(response.status_code, 403)
    self.assertEqual(response.json(), {"error": True, "message": "Forbidden"})

  def test_malformed_body_is_400(self):
    response = self.client.post(
        "/echo",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(
        response.json(), {"error": True, "message": "Malformed request body"}
    )

  def test_valid_body_passes_through(self):
    response = self.client.post("/echo", json={"a": 1})

    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json(), {"a": 1})


if __name__ == "__main__":
  absltest.main()
