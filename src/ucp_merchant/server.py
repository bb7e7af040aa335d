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

"""UCP Merchant Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence

from absl import app as absl_app
from fastapi import FastAPI
from fastapi import Request
import uvicorn

from . import config
from . import routing
from .routes import ucp_implementation

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="UCP Merchant Checkout Service",
    version=config.get_server_version(),
    description="Merchant side checkout session engine for UCP agents",
    lifespan=config.lifespan,
)


@app.middleware("http")
async def log_protocol_operation(request: Request, call_next):
  """Logs the protocol operation and status of each request in debug mode."""
  response = await call_next(request)
  if config.FLAGS.is_parsed() and config.FLAGS.debug:
    result = routing.classify(request.method, request.url.path)
    operation = (
        result.operation.value
        if isinstance(result, routing.Matched)
        else "unmatched"
    )
    logger.info(
        "%s %s -> %s (%d)",
        request.method,
        request.url.path,
        operation,
        response.status_code,
    )
  return response


app.include_router(ucp_implementation.apply_implementation())


def main(argv: Sequence[str]) -> None:
  """Main entry point for the UCP Merchant Server."""
  del argv  # Unused.

  if (
      config.FLAGS.products_db_path is None
      or config.FLAGS.transactions_db_path is None
      or config.FLAGS.port is None
  ):
    logger.error(
        "Both --products_db_path, --transactions_db_path, and --port must be"
        " provided."
    )
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


def run() -> None:
  absl_app.run(main)


if __name__ == "__main__":
  run()
