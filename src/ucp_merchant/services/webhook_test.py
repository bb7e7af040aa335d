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
import json

from absl.testing import absltest
import httpx

from ucp_merchant.services.webhook import WebhookNotifier

WEBHOOK_URL = "http://agent.example/webhooks/orders"


class WebhookNotifierTest(absltest.TestCase):

  def test_posts_json_payload(self):
    requests = []

    def handler(request):
      requests.append(request)
      return httpx.Response(204)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

    delivered = asyncio.run(notifier.notify(WEBHOOK_URL, {"id": "order-1"}))

    self.assertTrue(delivered)
    self.assertLen(requests, 1)
    self.assertEqual(requests[0].method, "POST")
    self.assertEqual(str(requests[0].url), WEBHOOK_URL)
    self.assertEqual(json.loads(requests[0].content), {"id": "order-1"})

  def test_error_status_is_reported(self):
    notifier = WebhookNotifier(
        transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )

    with self.assertLogs(level="WARNING"):
      delivered = asyncio.run(notifier.notify(WEBHOOK_URL, {}))

    self.assertFalse(delivered)

  def test_network_error_is_swallowed(self):
    def handler(request):
      raise httpx.ConnectError("connection refused", request=request)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

    with self.assertLogs(level="ERROR"):
      delivered = asyncio.run(notifier.notify(WEBHOOK_URL, {}))

    self.assertFalse(delivered)

  def test_each_call_is_a_single_attempt(self):
    calls = []

    def handler(request):
      calls.append(request)
      return httpx.Response(503)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

    asyncio.run(notifier.notify(WEBHOOK_URL, {}))

    self.assertLen(calls, 1)


if __name__ == "__main__":
  absltest.main()
