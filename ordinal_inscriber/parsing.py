"""Parse the text printed by ``ord wallet inscribe`` and ``bitcoin-cli``.

``ord`` has printed its result both as JSON and as loose ``key: value``
lines over the years, so :func:`parse_inscribe_output` tries the JSON form
first and falls back to a fixed set of patterns.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

UNKNOWN = "unknown"

INSCRIPTION_LINE = re.compile(r"inscription: ([a-f0-9]+i\d+)")
INSCRIPTION_WORD = re.compile(r"inscription\s+([a-f0-9]+i\d+)", re.IGNORECASE)
TRANSACTION_LINE = re.compile(r"(?:transaction|reveal|commit): ([a-f0-9]+)")
FEE_LINE = re.compile(r"(?:fee|paid): (\d+)")
TXID_TOKEN = re.compile(r"\b([a-f0-9]{64})\b")
CONFIRMATIONS = re.compile(r'"confirmations":\s*(\d+)')
SUCCESS_WORDS = re.compile(r"\bsuccess(?:ful(?:ly)?)?\b", re.IGNORECASE)


@dataclass
class InscribeOutcome:
    inscription_id: str
    transaction_id: str
    fee_paid: str
    raw: str

    @property
    def has_inscription(self) -> bool:
        return self.inscription_id != UNKNOWN

    @property
    def has_transaction(self) -> bool:
        return self.transaction_id != UNKNOWN

    def as_dict(self) -> dict:
        return {
            "inscriptionId": self.inscription_id,
            "transactionId": self.transaction_id,
            "feePaid": self.fee_paid,
        }


def _from_json(text: str) -> Optional[InscribeOutcome]:
    start = text.find("{")
    if start < 0:
        return None
    try:
        payload: Any = json.loads(text[start:])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    inscription_id = UNKNOWN
    inscriptions = payload.get("inscriptions")
    if isinstance(inscriptions, list) and inscriptions and isinstance(inscriptions[0], dict):
        inscription_id = str(inscriptions[0].get("id") or UNKNOWN)
    elif payload.get("inscription"):
        inscription_id = str(payload["inscription"])

    transaction_id = str(payload.get("reveal") or payload.get("commit") or UNKNOWN)
    fee = payload.get("total_fees", payload.get("fees"))
    fee_paid = str(fee) if fee is not None else UNKNOWN
    if inscription_id == UNKNOWN and transaction_id == UNKNOWN:
        return None
    return InscribeOutcome(inscription_id, transaction_id, fee_paid, text)


def parse_inscribe_output(text: str | None) -> InscribeOutcome:
    """Extract inscription id, transaction id and fee from command output.

    Fields that cannot be found are set to :data:`UNKNOWN`.
    """

    text = text or ""
    outcome = _from_json(text)
    if outcome is not None:
        return outcome

    inscription = INSCRIPTION_LINE.search(text) or INSCRIPTION_WORD.search(text)
    transaction = TRANSACTION_LINE.search(text)
    fee = FEE_LINE.search(text)

    transaction_id = transaction.group(1) if transaction else find_txid(text) or UNKNOWN

    return InscribeOutcome(
        inscription_id=inscription.group(1) if inscription else UNKNOWN,
        transaction_id=transaction_id,
        fee_paid=fee.group(1) if fee else UNKNOWN,
        raw=text,
    )


def parse_confirmations(text: str | None) -> Optional[int]:
    match = CONFIRMATIONS.search(text or "")
    return int(match.group(1)) if match else None


def find_txid(text: str | None) -> Optional[str]:
    match = TXID_TOKEN.search(text or "")
    return match.group(1) if match else None


def mentions_success(text: str | None) -> bool:
    return bool(SUCCESS_WORDS.search(text or ""))
