"""Lookups against public Ordinals indexers and the local ``ord`` API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests
from requests import RequestException

from .commands import normalize_sns_name, normalize_ticker

logger = logging.getLogger(__name__)

GENIIDATA_API = "https://api.geniidata.com"
HTTP_TIMEOUT = 10

RESERVED_SNS_NAMES = frozenset({"bitcoin", "satoshi", "ordinal", "ord", "inscription"})
MIN_HEURISTIC_NAME_LENGTH = 5

SNS_TIER_RATES = {"economy": 10, "normal": 25, "custom": 0}
SNS_NETWORK_FEES = {"economy": 1000, "normal": 2500}
SNS_PROCESSING_TIMES = {"economy": "~2-4 hours", "normal": "~30-60 minutes", "custom": "Varies"}
SNS_INSCRIPTION_FEE = 10_000
SNS_SIZE_FEE = 500
SNS_PLATFORM_FEE = 2000
SNS_REGISTRY_ADDRESS = "bc1qe8grz79ej3ywxkfcdchrncfl5antlc9tzmy5c2"
SNS_PLATFORM_ADDRESS = "3GzpE8PyW8XgNnmkxsNLpj2jVKvyxwRYFM"
SAT_TO_USD = Decimal("0.0005")


class IndexerError(RuntimeError):
    """Raised when an indexer is unreachable or answers with an error."""


class GeniidataClient:
    """Client for the Geniidata Ordinals API.

    Every response is an envelope ``{"code": 0, "data": {...}}``; any other
    code is reported as :class:`IndexerError`.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: str = GENIIDATA_API,
        api_key: str | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["api-key"] = self.api_key
        url = f"{self.base_url}{path}"
        logger.debug("Geniidata GET %s params=%s", path, params)
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=HTTP_TIMEOUT)
            response.raise_for_status()
            payload = response.json()
        except RequestException as exc:
            raise IndexerError(f"Geniidata request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise IndexerError(f"Geniidata returned malformed JSON for {path}") from exc
        if not isinstance(payload, dict) or payload.get("code") != 0:
            code = payload.get("code") if isinstance(payload, dict) else None
            raise IndexerError(f"Unexpected response from Geniidata {path} (code={code})")
        return payload.get("data") or {}

    def _list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return list(self._get(path, params).get("list") or [])

    def brc20_token(self, ticker: str) -> Optional[Dict[str, Any]]:
        """Return the deployed token record, or ``None`` when the ticker is free."""

        tokens = self._list("/ordinals/brc20/tokens", {"ticker": normalize_ticker(ticker)})
        return tokens[0] if tokens else None

    def brc20_balances(self, address: str, ticker: str | None = None) -> List[Dict[str, Any]]:
        params = {"address": address}
        if ticker:
            params["ticker"] = normalize_ticker(ticker)
        return self._list("/ordinals/brc20/balances", params)

    def bitmap_inscriptions(self, number: int) -> List[Dict[str, Any]]:
        return self._list("/ordinals/bitmaps/content", {"content": f"{number}.bitmap"})

    def block_height(self) -> int:
        data = self._get("/ordinals/status")
        try:
            return int(data["blockHeight"])
        except (KeyError, TypeError, ValueError) as exc:
            raise IndexerError("Geniidata status did not include a block height") from exc

    def sns_name(self, name: str) -> Optional[Dict[str, Any]]:
        names = self._list("/ordinals/sns/names", {"name": f"{normalize_sns_name(name)}.sats"})
        return names[0] if names else None


class OrdApiClient:
    """The ``ord`` server's HTTP API."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def block_height(self) -> int:
        try:
            response = self.session.get(
                f"{self.base_url}/blockheight",
                headers={"accept": "application/json"},
                timeout=HTTP_TIMEOUT,
            )
            response.raise_for_status()
            return int(response.text.strip())
        except RequestException as exc:
            raise IndexerError(f"ord API at {self.base_url} is unreachable: {exc}") from exc
        except ValueError as exc:
            raise IndexerError("ord API returned a non-numeric block height") from exc


def describe_token(record: Dict[str, Any]) -> Dict[str, Any]:
    """Map a Geniidata token record to the fields the BRC-20 form shows."""

    try:
        minting_complete = Decimal(str(record.get("totalMinted") or 0)) >= Decimal(str(record.get("max")))
    except (InvalidOperation, ValueError):
        minting_complete = False
    return {
        "tick": record.get("ticker"),
        "max": record.get("max"),
        "lim": record.get("limit"),
        "decimals": 18 if record.get("decimals") is None else record.get("decimals"),
        "deployed": True,
        "totalMinted": record.get("totalMinted"),
        "maxMintPerInscription": record.get("limit"),
        "mintingComplete": minting_complete,
    }


@dataclass
class BitmapAvailability:
    number: int
    is_available: bool
    latest_block: Optional[int]
    source: str
    inscription_count: int = 0
    first_inscription: Optional[Dict[str, Any]] = None
    warning: Optional[str] = None

    def as_dict(self) -> dict:
        payload: Dict[str, Any] = {
            "bitmapNumber": str(self.number),
            "isAvailable": self.is_available,
            "latestBlock": self.latest_block,
            "format": f"{self.number}.bitmap",
            "inscriptionDetails": None,
            "source": self.source,
        }
        if self.inscription_count:
            payload["inscriptionDetails"] = {
                "count": self.inscription_count,
                "firstInscription": self.first_inscription,
            }
        if self.warning:
            payload["warning"] = self.warning
        return payload


def _latest_block(geniidata: GeniidataClient, ord_api: Optional[OrdApiClient]) -> Optional[int]:
    try:
        return geniidata.block_height()
    except IndexerError as exc:
        logger.warning("Block height from Geniidata unavailable: %s", exc)
    if ord_api is None:
        return None
    try:
        return ord_api.block_height()
    except IndexerError as exc:
        logger.warning("Block height from ord unavailable: %s", exc)
        return None


def check_bitmap(
    number: int,
    geniidata: GeniidataClient,
    ord_api: Optional[OrdApiClient] = None,
) -> BitmapAvailability:
    """Report whether ``<number>.bitmap`` can still be inscribed."""

    latest = _latest_block(geniidata, ord_api)
    if latest is not None and number > latest:
        return BitmapAvailability(
            number,
            False,
            latest,
            source="chain",
            warning=f"Block {number} has not been mined yet (current height {latest})",
        )

    try:
        inscriptions = geniidata.bitmap_inscriptions(number)
    except IndexerError as exc:
        logger.error("Error checking bitmap %s via Geniidata: %s", number, exc)
        return BitmapAvailability(
            number,
            True,
            latest,
            source="unverified",
            warning="Availability could not be verified; the indexer is unavailable.",
        )

    if inscriptions:
        logger.info("Bitmap %s is already inscribed %d times", number, len(inscriptions))
        return BitmapAvailability(
            number,
            False,
            latest,
            source="geniidata_verified",
            inscription_count=len(inscriptions),
            first_inscription=inscriptions[0],
        )
    return BitmapAvailability(number, True, latest, source="geniidata")


def check_sns_name(name: str, geniidata: GeniidataClient) -> Dict[str, Any]:
    normalized = normalize_sns_name(name)
    try:
        record = geniidata.sns_name(normalized)
    except IndexerError as exc:
        logger.warning("SNS lookup for %s failed, using heuristic: %s", normalized, exc)
        return {
            "name": normalized,
            "isAvailable": len(normalized) >= MIN_HEURISTIC_NAME_LENGTH
            and normalized not in RESERVED_SNS_NAMES,
            "warning": "Name availability is approximate. The lookup service is currently unavailable.",
            "fallback": True,
        }

    if record is None:
        return {"name": normalized, "isAvailable": True}
    return {
        "name": normalized,
        "isAvailable": False,
        "owner": record.get("owner") or record.get("address"),
        "address": record.get("address"),
        "inscription_id": record.get("inscriptionId") or record.get("inscription_id"),
    }


def _usd(sats: int) -> str:
    return f"{sats * SAT_TO_USD:.2f}"


def sns_fee_quote(tier: str = "normal", custom_fee: int | None = None) -> Dict[str, Any]:
    """Fee breakdown for registering an SNS name at ``tier``."""

    if tier not in SNS_TIER_RATES:
        raise ValueError(f"Unknown fee tier: {tier}")
    if tier == "custom":
        if not custom_fee:
            raise ValueError("Custom fee amount is required for custom tier")
        network_fee = custom_fee
    else:
        network_fee = SNS_NETWORK_FEES[tier]

    total = SNS_INSCRIPTION_FEE + network_fee + SNS_SIZE_FEE + SNS_PLATFORM_FEE
    return {
        "inscriptionFee": SNS_INSCRIPTION_FEE,
        "networkFee": network_fee,
        "sizeFee": SNS_SIZE_FEE,
        "serviceFee": SNS_PLATFORM_FEE,
        "total": total,
        "processingTime": SNS_PROCESSING_TIMES[tier],
        "registryAddress": SNS_REGISTRY_ADDRESS,
        "platformAddress": SNS_PLATFORM_ADDRESS,
        "usdValues": {
            "inscriptionFeeUSD": _usd(SNS_INSCRIPTION_FEE),
            "networkFeeUSD": _usd(network_fee),
            "sizeFeeUSD": _usd(SNS_SIZE_FEE),
            "serviceFeeUSD": _usd(SNS_PLATFORM_FEE),
            "totalUSD": _usd(total),
        },
        "feeRate": SNS_TIER_RATES[tier] if tier != "custom" else custom_fee,
    }
