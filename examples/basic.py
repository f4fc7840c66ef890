# Kyoto Tycoon SDK Examples

# Select a part of the code and execute it as a cell with Shift+Enter (Jupyter notebook like).
# Use the comments as cell definitions.
# Start a server first, for example an in-memory tree database: ktserver '%'

# Load requirements

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from kyoto_sdk import ConnectionConfig, InconsistencyError, KyotoTycoon, WireEncoding


# Load environment from .env (KYOTO_URL, KYOTO_ENCODING)
load_dotenv()
logging.basicConfig(level=logging.DEBUG)

config = ConnectionConfig(
    url=os.getenv("KYOTO_URL", "http://localhost:1978"),
    encoding=WireEncoding(os.getenv("KYOTO_ENCODING", "tab-base64")),
)


@dataclass
class Counter:
    name: str
    value: str


def records(kt):
    kt.set("japan", "tokyo")
    kt.set("korea", "seoul", xt=600)
    print("japan:", kt.get("japan"))
    print("korea expires at:", kt.get_expiration("korea"))

    try:
        kt.add("japan", "kyoto")
    except InconsistencyError as e:
        print("add refused:", e.detail)

    kt.cas("japan", "tokyo", "kyoto")
    print("after cas:", kt.get("japan"))


def counters(kt):
    print("hits:", kt.inc("hits"))
    print("hits:", kt.inc("hits", 10))
    print("ratio:", kt.inc("ratio", 0.5))


def bulk(kt):
    stored = kt.set_bulk({"user:1": "alice", "user:2": "bob", "user:3": "carol"})
    print("stored:", stored)
    print(kt.get_bulk(["user:1", "user:3", "user:9"]))


def scans(kt):
    for key, value in kt.scan_prefix("user:"):
        print(key, value)

    for key in kt.scan_regex(r"^user:[12]$", keys_only=True, backward=True):
        print(key)

    with kt.forward(start_key="k") as cursor:
        for key, value in cursor:
            print(key, value)


def direct_access(kt):
    kt.rest_put("greeting", "hello", xt=60)
    response = kt.rest_get("greeting")
    print(response.text, response.xt, response.date)
    kt.rest_delete("greeting")


def script(kt):
    # Needs a server started with a script defining an "echo" procedure
    counter = kt.play_script("echo", {"name": "hits", "value": "1"}, return_type=Counter)
    print(counter)


def main():
    with KyotoTycoon.from_config(config) as kt:
        records(kt)
        counters(kt)
        bulk(kt)
        scans(kt)
        direct_access(kt)
        print(kt.status())
        kt.clear()


if __name__ == "__main__":
    main()
