"""Fee-rate tiers for the inscription forms.

Rates are taken from mempool.space when reachable, then from the node's
``estimatesmartfee``, and finally from static defaults so the UI always has
something to show.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from requests import RequestException

logger = logging.getLogger(__name__)

MEMPOOL_SPACE_URL = "https://mempool.space"
RECOMMENDED_FEES_PATH = "/api/v1/fees/recommended"
HTTP_TIMEOUT = 5

SOURCE_MEMPOOL = "mempool.space"
SOURCE_NODE = "estimatesmartfee"
SOURCE_DEFAULT = "default"

# tier -> (confirmation target in blocks, estimated time)
TIERS = {
    "economy": (6, "1 hour+"),
    "standard": (3, "~30 minutes"),
    "priority": (1, "~10 minutes"),
}
DEFAULT_FEE_RATES = {"economy": 2, "standard": 4, "priority": 8}

HIGH_MEMPOOL_RATE = 20
MEDIUM_MEMPOOL_RATE = 8


def btc_per_kvb_to_sat_vb(rate: float | int) -> float:
    """Convert a BTC/kvB fee rate to sat/vB."""

    # drop float noise before build_estimates rounds up
    return round(float(rate) * 100_000, 8)


def mempool_status(standard_rate: float) -> str:
    if standard_rate >= HIGH_MEMPOOL_RATE:
        return "High"
    if standard_rate >= MEDIUM_MEMPOOL_RATE:
        return "Medium"
    return "Low"


@dataclass
class FeeTier:
    fee: int
    estimated_time: str
    blocks: Optional[int] = None

    def as_dict(self) -> dict:
        payload: Dict[str, Any] = {"fee": self.fee, "estimatedTime": self.estimated_time}
        if self.blocks is not None:
            payload["blocks"] = self.blocks
        return payload


@dataclass
class FeeEstimates:
    fee_rates: Dict[str, FeeTier]
    mempool_status: str
    source: str
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "feeRates": {name: tier.as_dict() for name, tier in self.fee_rates.items()},
            "mempoolStatus": self.mempool_status,
            "lastUpdated": self.last_updated.isoformat(),
            "source": self.source,
        }


def build_estimates(rates: Dict[str, float], source: str) -> FeeEstimates:
    """Turn raw per-tier sat/vB rates into :class:`FeeEstimates`."""

    tiers: Dict[str, FeeTier] = {}
    for name, (blocks, estimated_time) in TIERS.items():
        # whole sat/vB only, never below 1
        fee = max(1, int(math.ceil(rates[name])))
        tiers[name] = FeeTier(fee, estimated_time, blocks)
    tiers["current"] = FeeTier(tiers["standard"].fee, "Current rate")
    return FeeEstimates(tiers, mempool_status(tiers["standard"].fee), source)


class FeeEstimator:
    """Fetch fee tiers, falling back source by source."""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        rpc_client: Any = None,
        mempool_url: str | None = MEMPOOL_SPACE_URL,
    ) -> None:
        self.session = session or requests.Session()
        self.rpc_client = rpc_client
        self.mempool_url = mempool_url.rstrip("/") if mempool_url else None

    def _from_mempool(self) -> Optional[Dict[str, float]]:
        if not self.mempool_url:
            return None
        try:
            response = self.session.get(self.mempool_url + RECOMMENDED_FEES_PATH, timeout=HTTP_TIMEOUT)
            response.raise_for_status()
            payload = response.json()
            return {
                "economy": float(payload["hourFee"]),
                "standard": float(payload["halfHourFee"]),
                "priority": float(payload["fastestFee"]),
            }
        except (RequestException, ValueError, KeyError, TypeError) as exc:
            logger.info("mempool.space fee estimate unavailable: %s", exc)
            return None

    def _from_node(self) -> Optional[Dict[str, float]]:
        if self.rpc_client is None:
            return None
        rates: Dict[str, float] = {}
        for name, (blocks, _) in TIERS.items():
            try:
                response = self.rpc_client.estimatesmartfee(blocks)
            except Exception as exc:  # RPC and transport errors vary
                logger.info("estimatesmartfee(%s) unavailable: %s", blocks, exc)
                return None
            rate = (response or {}).get("feerate")
            if rate is None:
                logger.info("estimatesmartfee(%s) returned no feerate: %s", blocks, response)
                return None
            rates[name] = btc_per_kvb_to_sat_vb(rate)
        return rates

    def estimate(self) -> FeeEstimates:
        rates = self._from_mempool()
        if rates is not None:
            return build_estimates(rates, SOURCE_MEMPOOL)
        rates = self._from_node()
        if rates is not None:
            return build_estimates(rates, SOURCE_NODE)
        logger.warning("No fee source available; using default fee rates")
        return build_estimates(dict(DEFAULT_FEE_RATES), SOURCE_DEFAULT)
