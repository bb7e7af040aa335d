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

"""Route table and error boundary for the UCP protocol operations.

The protocol surface is a fixed, ordered table of (method, path template,
operation). The same table registers the FastAPI routes and classifies raw
(method, path) pairs, so logging and tests agree with what the server serves.
Session-scoped templates use the `session_id` path convertor; a path whose
id does not match is not a protocol route and falls through to the
framework's default 404.
"""

import dataclasses
import enum
import logging
import re
from typing import Any, Callable, Coroutine, Dict, Optional, Union

from fastapi import HTTPException
from fastapi import Request
from fastapi import Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.convertors import Convertor
from starlette.convertors import register_url_convertor

from . import constants
from .exceptions import UcpError

logger = logging.getLogger(__name__)


class SessionIdConvertor(Convertor):
  """Matches checkout session ids: lowercase hex with dashes."""

  regex = constants.SESSION_ID_PATTERN

  def convert(self, value: str) -> str:
    return value

  def to_string(self, value: str) -> str:
    return value


register_url_convertor("session_id", SessionIdConvertor())


class Operation(str, enum.Enum):
  DISCOVERY = "discovery"
  CREATE_SESSION = "create_session"
  GET_SESSION = "get_session"
  MODIFY_SESSION = "modify_session"
  COMPLETE_SESSION = "complete_session"
  TOKENIZE = "tokenize"


@dataclasses.dataclass(frozen=True)
class Route:
  method: str
  path: str
  operation: Operation
  status_code: int = 200


_SESSION_PATH = constants.CHECKOUT_SESSIONS_PATH + "/{checkout_id:session_id}"

# Evaluated top to bottom; the first match wins.
ROUTE_TABLE = (
    Route("GET", constants.WELL_KNOWN_PATH, Operation.DISCOVERY),
    Route(
        "POST",
        constants.CHECKOUT_SESSIONS_PATH,
        Operation.CREATE_SESSION,
        status_code=201,
    ),
    Route("GET", _SESSION_PATH, Operation.GET_SESSION),
    Route("PUT", _SESSION_PATH, Operation.MODIFY_SESSION),
    Route("POST", _SESSION_PATH + "/complete", Operation.COMPLETE_SESSION),
    Route("POST", constants.TOKENIZE_PATH, Operation.TOKENIZE),
)


@dataclasses.dataclass(frozen=True)
class Matched:
  route: Route
  params: Dict[str, str]

  @property
  def operation(self) -> Operation:
    return self.route.operation


@dataclasses.dataclass(frozen=True)
class Unmatched:
  method: str
  path: str


_PARAM_RE = re.compile(r"{(\w+):(\w+)}")
_CONVERTOR_PATTERNS = {"session_id": SessionIdConvertor.regex}


def _compile(template: str) -> "re.Pattern[str]":
  pattern = ""
  position = 0
  for match in _PARAM_RE.finditer(template):
    pattern += re.escape(template[position : match.start()])
    name, convertor = match.groups()
    pattern += f"(?P<{name}>{_CONVERTOR_PATTERNS[convertor]})"
    position = match.end()
  pattern += re.escape(template[position:])
  return re.compile(f"^{pattern}$")


_COMPILED_TABLE = tuple((route, _compile(route.path)) for route in ROUTE_TABLE)


def classify(method: str, path: str) -> Union[Matched, Unmatched]:
  """Classifies a request into one of the protocol operations.

  Args:
    method: The HTTP method.
    path: The request path, without query string.

  Returns:
    `Matched` with the route and extracted path parameters, or `Unmatched`
    when the request is not a protocol operation.
  """
  method = method.upper()
  for route, pattern in _COMPILED_TABLE:
    if route.method != method:
      continue
    match = pattern.match(path)
    if match:
      return Matched(route=route, params=match.groupdict())
  return Unmatched(method=method, path=path)


def find_route(operation: Operation) -> Optional[Route]:
  for route in ROUTE_TABLE:
    if route.operation == operation:
      return route
  return None


def error_response(message: str, status_code: int) -> JSONResponse:
  """Renders the protocol error body."""
  return JSONResponse(
      status_code=status_code, content={"error": True, "message": message}
  )


class ProtocolRoute(APIRoute):
  """APIRoute that never lets an exception reach the ASGI server."""

  def get_route_handler(
      self,
  ) -> Callable[[Request], Coroutine[Any, Any, Response]]:
    original_route_handler = super().get_route_handler()

    async def protocol_route_handler(request: Request) -> Response:
      try:
        return await original_route_handler(request)
      except UcpError as e:
        if e.status_code >= 500:
          logger.error("%s %s failed: %s", request.method, request.url.path, e)
        else:
          logger.info(
              "%s %s rejected (%d): %s",
              request.method,
              request.url.path,
              e.status_code,
              e.message,
          )
        return error_response(e.message, e.status_code)
      except RequestValidationError as e:
        logger.info("Malformed request body: %s", e.errors())
        return error_response("Malformed request body", 400)
      except HTTPException as e:
        return error_response(str(e.detail), e.status_code)
      except Exception:  # pylint: disable=broad-exception-caught
        logger.exception(
            "Unhandled error in %s %s", request.method, request.url.path
        )
        return error_response("Internal server error", 500)

    return protocol_route_handler
