"""JSON-RPC access to the Bitcoin Core node that backs ``ord``.

The inscriber reads from the node in two places: fee estimation and
wallet transaction lookups for the status endpoint. Node-side failures
surface as :class:`RPCError`; anything that prevents a usable reply is an
:class:`RPCTransportError`.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import requests
from requests import RequestException, Response

from .config import RPCConfig

logger = logging.getLogger(__name__)

RPC_TIMEOUT = 30
JSON_HEADERS = {"content-type": "application/json"}

UNREACHABLE_MESSAGE = (
    "Cannot reach bitcoind at {url}. Check the BTC_RPC_* variables or the rpc "
    "section of ~/.ordinal-inscriber.yaml."
)


class RPCError(RuntimeError):
    """The node answered, but with a JSON-RPC ``error`` object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message

    @classmethod
    def from_body(cls, error: Dict[str, Any]) -> "RPCError":
        return cls(int(error.get("code", -1)), str(error.get("message", "unknown")))


class RPCTransportError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


_HINT_RULES = (
    (
        {-26},
        ("min relay fee not met", "fee too low"),
        "The node rejected the transaction because the fee rate is below its relay policy. "
        "Pick a higher fee rate (see /api/fees/estimate) and retry.",
    ),
    (
        {-4, -6},
        ("insufficient funds", "wallet contains no cardinal utxos"),
        "The ord wallet could not fund the inscription. Send sats to an address from "
        "'ord wallet receive' and wait for a confirmation before retrying.",
    ),
    (
        {-13},
        ("wallet passphrase", "wallet locked"),
        "The wallet is locked. Unlock it with walletpassphrase, then retry the command.",
    ),
    (
        {-18},
        ("wallet does not exist", "no wallet is loaded"),
        "No wallet is loaded. Create one with 'ord wallet create' or load it in bitcoind.",
    ),
    (
        set(),
        ("connection refused", "could not connect"),
        "ord could not reach bitcoind. Check that the bitcoin container is running and that "
        "ord's RPC settings point at it.",
    ),
)


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | str | None) -> str | None:
    """Suggest a fix for a node error.

    ``error_obj`` may be an :class:`RPCError`, the raw ``error`` mapping from
    a reply, or text printed by ``ord wallet inscribe`` (which relays the
    node's messages unchanged).
    """

    if error_obj is None:
        return None
    if isinstance(error_obj, RPCError):
        code, text = error_obj.code, error_obj.message
    elif isinstance(error_obj, dict):
        code, text = error_obj.get("code"), str(error_obj.get("message", ""))
    else:
        code, text = None, str(error_obj)
    text = text.lower()

    for codes, phrases, hint in _HINT_RULES:
        if code in codes or any(phrase in text for phrase in phrases):
            return hint
    return None


class BitcoinRPCClient:
    """Minimal Bitcoin Core client built on a :class:`requests.Session`.

    When ``config.wallet`` is set every request goes to the
    ``/wallet/<name>`` endpoint so wallet calls hit the ord wallet.
    """

    def __init__(self, config: RPCConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.endpoint = config.base_url
        if config.wallet:
            self.endpoint = f"{self.endpoint}/wallet/{config.wallet}"

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        request = {"jsonrpc": "1.0", "id": uuid.uuid4().hex, "method": method, "params": params or []}
        logger.debug("bitcoind %s %s", method, request["params"])
        response = self._send(request)
        return self._unwrap(response, self._read_body(response))

    def _send(self, request: Dict[str, Any]) -> Response:
        try:
            return self.session.post(
                self.endpoint,
                data=json.dumps(request),
                headers=JSON_HEADERS,
                auth=(self.config.user, self.config.password),
                timeout=RPC_TIMEOUT,
            )
        except RequestException as exc:
            logger.error("bitcoind request %s failed: %s", request["method"], exc)
            raise RPCTransportError(UNREACHABLE_MESSAGE.format(url=self.config.base_url)) from exc

    @staticmethod
    def _read_body(response: Response) -> Optional[Dict[str, Any]]:
        # error replies arrive as HTTP 500 with a JSON body
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            return body
        if response.ok:
            logger.debug("Unparseable bitcoind reply: %s", response.text[:200])
            raise RPCTransportError("bitcoind returned a reply that is not a JSON object")
        return None

    @staticmethod
    def _unwrap(response: Response, body: Optional[Dict[str, Any]]) -> Any:
        if body is not None and body.get("error"):
            raise RPCError.from_body(body["error"])
        if response.status_code == 401:
            raise RPCTransportError(
                "bitcoind refused the credentials (HTTP 401). Check BTC_RPC_USER and BTC_RPC_PASSWORD.",
                status_code=401,
            )
        if not response.ok or body is None:
            logger.error("bitcoind answered HTTP %s", response.status_code)
            raise RPCTransportError(
                f"bitcoind answered HTTP {response.status_code}", status_code=response.status_code
            )
        return body.get("result")

    def getblockcount(self) -> int:
        return int(self.call("getblockcount"))

    def estimatesmartfee(self, conf_target: int, estimate_mode: str | None = None) -> Dict[str, Any]:
        params: List[Any] = [conf_target]
        if estimate_mode:
            params.append(estimate_mode)
        return self.call("estimatesmartfee", params)

    def gettransaction(self, txid: str, include_watchonly: bool = True) -> Dict[str, Any]:
        """Look up ``txid`` in the ord wallet; ``confirmations`` drives status checks."""

        return self.call("gettransaction", [txid, include_watchonly])
