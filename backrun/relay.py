"""
Relay Client

Formats signed JSON-RPC envelopes and posts them to one relay / builder
endpoint. Every request carries an X-Flashbots-Signature header:

    <auth address>:<personal_sign(keccak256(request body) as hex text)>
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

import aiohttp
import orjson
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .bundle import Bundle

logger = logging.getLogger(__name__)

SEND_BUNDLE_METHOD = "mev_sendBundle"
JSONRPC_VERSION = "2.0"
SIGNATURE_HEADER = "X-Flashbots-Signature"
DEFAULT_RELAY_TIMEOUT = 10


class RelayError(Exception):
    """A single relay call failed (transport, HTTP status, decode or JSON-RPC error)."""

    def __init__(self, relay_url: str, cause: Any):
        self.relay_url = relay_url
        self.cause = cause
        super().__init__(f"Relay {relay_url} failed: {cause}")


class RelayClient:
    """
    JSON-RPC client for bundle relays.

    The request id counter belongs to the client instance: it starts at 1
    and is bumped under a lock exactly once per outbound call.
    """

    def __init__(
        self,
        auth_account: LocalAccount,
        primary_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_RELAY_TIMEOUT,
    ):
        self.auth_account = auth_account
        self.primary_url = primary_url
        self._session = session
        self._external_session = session is not None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

        self._id_lock = threading.Lock()
        self._next_id = 1

    @classmethod
    def from_key(cls, auth_key: str, primary_url: str, **kwargs) -> "RelayClient":
        if not auth_key.startswith("0x"):
            auth_key = "0x" + auth_key
        return cls(Account.from_key(auth_key), primary_url, **kwargs)

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def next_id(self) -> int:
        """Id the next outbound request will use."""
        with self._id_lock:
            return self._next_id

    def _take_id(self) -> int:
        with self._id_lock:
            request_id = self._next_id
            self._next_id += 1
            return request_id

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._external_session = False
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._external_session:
            await self._session.close()
        self._session = None

    def prepare_relay_request(self, params: List[Any], method: str) -> Dict[str, Any]:
        """Build a JSON-RPC 2.0 envelope with a fresh request id."""
        return {
            "method": method,
            "params": params,
            "id": self._take_id(),
            "jsonrpc": JSONRPC_VERSION,
        }

    def sign_request(self, body: bytes) -> str:
        """Header value '<address>:<signature>' over keccak256(body)."""
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(body)))
        signature = self.auth_account.sign_message(message).signature
        return f"{self.auth_account.address}:{Web3.to_hex(signature)}"

    async def request(self, body: bytes, relay_url: Optional[str] = None) -> Dict[str, Any]:
        """
        POST a serialized request and return the decoded JSON response.

        A JSON-RPC error member is part of the relay's answer: it is logged
        and returned with the rest of the payload.

        Raises:
            RelayError: on transport failure, HTTP error status, timeout
                or an undecodable body.
        """
        relay_url = relay_url or self.primary_url
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: self.sign_request(body),
        }

        logger.debug(f"📡 Making request to: {relay_url}")
        try:
            async with self._get_session().post(
                relay_url, data=body, headers=headers, timeout=self._timeout
            ) as resp:
                resp.raise_for_status()
                # some relays do not set the JSON content type
                payload = await resp.json(content_type=None)
        except aiohttp.ClientResponseError as e:
            raise RelayError(relay_url, f"HTTP {e.status}: {e.message}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RelayError(relay_url, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise RelayError(relay_url, f"invalid JSON response: {e}") from e

        if not isinstance(payload, dict):
            raise RelayError(relay_url, f"unexpected response: {payload!r}")
        if payload.get("error"):
            logger.warning(f"⚠️ {relay_url} returned error: {payload['error']}")
        return payload

    async def send_bundle(self, bundle: Bundle, relay_url: Optional[str] = None) -> Dict[str, Any]:
        """Submit one bundle via mev_sendBundle. Errors are not swallowed here."""
        relay_url = relay_url or self.primary_url
        envelope = self.prepare_relay_request([bundle.to_dict()], SEND_BUNDLE_METHOD)
        response = await self.request(orjson.dumps(envelope), relay_url)
        logger.debug(f"📥 Response from {relay_url}: {response}")
        return response
