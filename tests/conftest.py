"""
Pytest configuration for Kyoto Tycoon SDK tests.

Unit tests talk to ``FakeKyotoServer``, an in-memory imitation of the
Kyoto Tycoon HTTP interface plugged in through ``httpx.MockTransport``.
Integration tests (marked ``integration``) need a real server at
``KYOTO_URL`` and are skipped when none answers.

Shared connection constants are defined here so every test file can import them
instead of hardcoding URLs and ports.
"""

import bisect
import os
import re
from collections.abc import Generator
from urllib.parse import unquote

import httpx
import pytest

from kyoto_sdk import HTTPConnection, WireEncoding
from kyoto_sdk.protocol import codec

# ---------------------------------------------------------------------------
# Shared connection constants (import these in test files)
# ---------------------------------------------------------------------------
TEST_PORT = int(os.getenv("KYOTO_PORT", "1978"))
KYOTO_URL = os.getenv("KYOTO_URL", f"http://localhost:{TEST_PORT}")

# Clock of the fake server, used to turn relative expiration times into absolute ones
FAKE_NOW = 1_700_000_000


class FakeKyotoServer:
    """
    In-memory Kyoto Tycoon speaking the RPC and REST protocols.

    Records are kept in key order so cursors behave like a B+ tree database.
    Every RPC request is recorded in ``requests`` as (command, params, content type).
    """

    def __init__(self) -> None:
        self.records: dict[str, tuple[str, int | None]] = {}
        self.cursors: dict[int, str | None] = {}
        self.requests: list[tuple[str, dict[str, str], str]] = []
        self.response_encoding: WireEncoding | None = None
        self.forced_status: int | None = None
        self.forced_response: httpx.Response | None = None

    # Helpers

    def seed(self, *keys: str, **records: str) -> None:
        for key in keys:
            self.records[key] = (f"value-{key}", None)
        for key, value in records.items():
            self.records[key] = (value, None)

    def commands(self) -> list[str]:
        return [command for command, _, _ in self.requests]

    def last_params(self, command: str) -> dict[str, str]:
        for name, params, _ in reversed(self.requests):
            if name == command:
                return params
        raise AssertionError(f"{command} was never called")

    def _sorted_keys(self) -> list[str]:
        return sorted(self.records)

    @staticmethod
    def _xt(params: dict[str, str]) -> int | None:
        if "xt" not in params:
            return None
        xt = int(params["xt"])
        return -xt if xt < 0 else FAKE_NOW + xt

    def _reply(self, status: int, data: dict[str, str], request_type: str) -> httpx.Response:
        encoding = self.response_encoding
        if encoding is None:
            requested = WireEncoding.from_content_type(request_type) if request_type else WireEncoding.TAB
            encoding = requested if requested in codec.RESPONSE_ENCODINGS else WireEncoding.TAB_URL
        if not data:
            return httpx.Response(status)
        return httpx.Response(
            status,
            content=codec.encode(encoding, data),
            headers={"Content-Type": encoding.content_type},
        )

    # Transport entry point

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.forced_response is not None:
            return self.forced_response
        path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        if path.startswith("/rpc/"):
            return self._handle_rpc(path[len("/rpc/") :], request)
        return self._handle_rest(unquote(path[1:]), request)

    def _handle_rpc(self, command: str, request: httpx.Request) -> httpx.Response:
        content_type = request.headers.get("Content-Type", "")
        body = request.read()
        params = codec.decode(content_type, body) if body else {}
        self.requests.append((command, params, content_type))

        if self.forced_status is not None:
            return self._reply(self.forced_status, {"ERROR": "forced"}, content_type)

        handler = getattr(self, f"rpc_{command}", None)
        if handler is None:
            return self._reply(501, {"ERROR": "not implemented"}, content_type)
        status, data = handler(params)
        return self._reply(status, data, content_type)

    def _handle_rest(self, key: str, request: httpx.Request) -> httpx.Response:
        if request.method in ("GET", "HEAD"):
            if key not in self.records:
                return httpx.Response(404)
            value, xt = self.records[key]
            headers = {"Date": "Tue, 14 Nov 2023 22:13:20 GMT"}
            if xt is not None:
                headers["X-Kt-Xt"] = str(xt)
            content = b"" if request.method == "HEAD" else value.encode("utf-8")
            return httpx.Response(200, content=content, headers=headers)
        if request.method == "PUT":
            xt_header = request.headers.get("X-Kt-Xt")
            xt = self._xt({"xt": xt_header}) if xt_header else None
            self.records[key] = (request.read().decode("utf-8"), xt)
            return httpx.Response(201)
        if request.method == "DELETE":
            if self.records.pop(key, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(400)

    # Record commands

    def _missing(self) -> tuple[int, dict[str, str]]:
        return 450, {"ERROR": "no record was found"}

    def rpc_set(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        self.records[params["key"]] = (params["value"], self._xt(params))
        return 200, {}

    def rpc_add(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        if params["key"] in self.records:
            return 450, {"ERROR": "the record exists"}
        return self.rpc_set(params)

    def rpc_replace(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        if params["key"] not in self.records:
            return self._missing()
        return self.rpc_set(params)

    def rpc_append(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        old = self.records.get(params["key"], ("", None))[0]
        self.records[params["key"]] = (old + params["value"], self._xt(params))
        return 200, {}

    def rpc_cas(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        key = params["key"]
        current = self.records.get(key, (None, None))[0]
        if current != params.get("oval"):
            return 450, {"ERROR": "the old value assumption was failed"}
        if "nval" in params:
            self.records[key] = (params["nval"], self._xt(params))
        else:
            self.records.pop(key, None)
        return 200, {}

    def rpc_remove(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        if self.records.pop(params["key"], None) is None:
            return self._missing()
        return 200, {}

    def rpc_seize(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        if params["key"] not in self.records:
            return self._missing()
        value, _ = self.records.pop(params["key"])
        return 200, {"value": value}

    def rpc_clear(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        self.records.clear()
        return 200, {}

    def rpc_get(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        if params["key"] not in self.records:
            return self._missing()
        value, xt = self.records[params["key"]]
        data = {"value": value}
        if xt is not None:
            data["xt"] = str(xt)
        return 200, data

    def rpc_check(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        if params["key"] not in self.records:
            return self._missing()
        value, xt = self.records[params["key"]]
        data = {"vsiz": str(len(value.encode("utf-8")))}
        if xt is not None:
            data["xt"] = str(xt)
        return 200, data

    def rpc_increment(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        old = self.records.get(params["key"], ("0", None))[0]
        try:
            num = int(old) + int(params["num"])
        except ValueError:
            return 450, {"ERROR": "the existing record was not compatible"}
        self.records[params["key"]] = (str(num), self._xt(params))
        return 200, {"num": str(num)}

    def rpc_increment_double(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        old = self.records.get(params["key"], ("0", None))[0]
        num = float(old) + float(params["num"])
        self.records[params["key"]] = (repr(num), self._xt(params))
        return 200, {"num": f"{num:.6f}"}

    # Bulk commands

    def rpc_set_bulk(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        stored = {k[1:]: v for k, v in params.items() if k.startswith("_")}
        for key, value in stored.items():
            self.records[key] = (value, self._xt(params))
        return 200, {"num": str(len(stored))}

    def rpc_get_bulk(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        data = {f"_{k[1:]}": self.records[k[1:]][0] for k in params if k.startswith("_") and k[1:] in self.records}
        data["num"] = str(len(data))
        return 200, data

    def rpc_remove_bulk(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        removed = [k for k in params if k.startswith("_") and self.records.pop(k[1:], None) is not None]
        return 200, {"num": str(len(removed))}

    # Matching

    def _match(self, keys: list[str], params: dict[str, str]) -> tuple[int, dict[str, str]]:
        limit = int(params.get("max", "-1"))
        if limit >= 0:
            keys = keys[:limit]
        data = {f"_{key}": str(position) for position, key in enumerate(keys)}
        data["num"] = str(len(keys))
        return 200, data

    def rpc_match_prefix(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        keys = [key for key in self._sorted_keys() if key.startswith(params["prefix"])]
        return self._match(keys, params)

    def rpc_match_regex(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        pattern = re.compile(params["regex"])
        keys = [key for key in self._sorted_keys() if pattern.search(key)]
        return self._match(keys, params)

    # Cursors

    def _cursor_key(self, params: dict[str, str]) -> str | None:
        key = self.cursors.get(int(params["CUR"]))
        if key is not None and key not in self.records:
            return None
        return key

    def _invalid_cursor(self, cur: int) -> tuple[int, dict[str, str]]:
        self.cursors[cur] = None
        return 450, {"ERROR": "the cursor was invalidated"}

    def rpc_cur_jump(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        cur = int(params["CUR"])
        keys = self._sorted_keys()
        index = bisect.bisect_left(keys, params["key"]) if "key" in params else 0
        if index >= len(keys):
            return self._invalid_cursor(cur)
        self.cursors[cur] = keys[index]
        return 200, {}

    def rpc_cur_jump_back(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        cur = int(params["CUR"])
        keys = self._sorted_keys()
        index = bisect.bisect_right(keys, params["key"]) - 1 if "key" in params else len(keys) - 1
        if index < 0:
            return self._invalid_cursor(cur)
        self.cursors[cur] = keys[index]
        return 200, {}

    def _step(self, cur: int, backward: bool) -> tuple[int, dict[str, str]]:
        key = self.cursors.get(cur)
        if key is None:
            return self._invalid_cursor(cur)
        keys = self._sorted_keys()
        if backward:
            index = bisect.bisect_left(keys, key) - 1
        else:
            index = bisect.bisect_right(keys, key)
        if index < 0 or index >= len(keys):
            return self._invalid_cursor(cur)
        self.cursors[cur] = keys[index]
        return 200, {}

    def rpc_cur_step(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return self._step(int(params["CUR"]), backward=False)

    def rpc_cur_step_back(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return self._step(int(params["CUR"]), backward=True)

    def _cur_read(self, params: dict[str, str], *fields: str) -> tuple[int, dict[str, str]]:
        cur = int(params["CUR"])
        key = self._cursor_key(params)
        if key is None:
            return self._invalid_cursor(cur)
        value = self.records[key][0]
        data = {name: {"key": key, "value": value}[name] for name in fields}
        if "step" in params:
            self._step(cur, backward=False)
        return 200, data

    def rpc_cur_get(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return self._cur_read(params, "key", "value")

    def rpc_cur_get_key(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return self._cur_read(params, "key")

    def rpc_cur_get_value(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return self._cur_read(params, "value")

    def rpc_cur_set_value(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        key = self._cursor_key(params)
        if key is None:
            return self._invalid_cursor(int(params["CUR"]))
        self.records[key] = (params["value"], self._xt(params))
        if "step" in params:
            self._step(int(params["CUR"]), backward=False)
        return 200, {}

    def rpc_cur_remove(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        cur = int(params["CUR"])
        key = self._cursor_key(params)
        if key is None:
            return self._invalid_cursor(cur)
        status, _ = self._step(cur, backward=False)
        del self.records[key]
        if status != 200:
            self.cursors[cur] = None
        return 200, {}

    def rpc_cur_delete(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        self.cursors.pop(int(params["CUR"]), None)
        return 200, {}

    # Server

    def rpc_echo(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return 200, dict(params)

    def rpc_report(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return 200, {"conf_kt_version": "0.9.56", "db_total_count": str(len(self.records))}

    def rpc_status(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return 200, {"count": str(len(self.records)), "size": "1024"}

    def rpc_synchronize(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return 200, {}

    def rpc_vacuum(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        return 200, {}

    def rpc_play_script(self, params: dict[str, str]) -> tuple[int, dict[str, str]]:
        if params["name"] != "echo":
            return 450, {"ERROR": "no such procedure"}
        data = {key: value for key, value in params.items() if key.startswith("_")}
        return 200, data


@pytest.fixture
def fake_server() -> FakeKyotoServer:
    """A fresh in-memory server."""
    return FakeKyotoServer()


@pytest.fixture
def kt(fake_server: FakeKyotoServer) -> Generator[HTTPConnection, None, None]:
    """A connected HTTPConnection talking to ``fake_server``."""
    conn = HTTPConnection("http://localhost:1978", transport=httpx.MockTransport(fake_server.handler))
    with conn:
        yield conn


@pytest.fixture
def kt_db(fake_server: FakeKyotoServer) -> Generator[HTTPConnection, None, None]:
    """A connected HTTPConnection selecting the ``user.kch`` database."""
    conn = HTTPConnection("http://localhost:1978/user.kch/", transport=httpx.MockTransport(fake_server.handler))
    with conn:
        yield conn


def is_kyoto_healthy(url: str = KYOTO_URL) -> bool:
    """Check if a Kyoto Tycoon server answers ``/rpc/echo``."""
    try:
        response = httpx.post(f"{url}/rpc/echo", timeout=2)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


@pytest.fixture(scope="session")
def kyoto_available() -> Generator[bool, None, None]:
    """
    Session-scoped fixture that indicates if a Kyoto Tycoon server is available.

    Use this fixture in tests that need to conditionally skip:

        def test_something(kyoto_available):
            if not kyoto_available:
                pytest.skip("Kyoto Tycoon not available")
    """
    yield is_kyoto_healthy()
