"""Build ``ord wallet inscribe`` command lines for every inscription flow.

Everything here is string assembly over validated input; nothing is executed.
User-supplied values are shell-quoted so the generated command can be pasted
into a terminal or run by the server as-is.
"""

from __future__ import annotations

import json
import re
import shlex
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

COMPACT_JSON_SEPARATORS = (",", ":")

MIN_FEE_RATE = 1
MAX_FEE_RATE = 10_000
BRC20_OPERATIONS = ("deploy", "mint", "transfer")
TICKER_PATTERN = re.compile(r"^[A-Z0-9]{1,4}$")
SNS_NAME_PATTERN = re.compile(r"^[a-z0-9-]+$")
BITMAP_PATTERN = re.compile(r"^\d+$")
INSCRIPTION_ID_PATTERN = re.compile(r"^[a-f0-9]{64}i\d+$")

BRC20_VBYTES = 400
SNS_VBYTES = 400
BITMAP_VBYTES = 320
BASE_FEE_SATS = 600


class CommandValidationError(ValueError):
    """Raised when form input cannot be turned into a command."""


@dataclass
class InscribeOptions:
    """Flags accepted by ``ord wallet inscribe``."""

    fee_rate: float
    file_path: str
    destination: Optional[str] = None
    metadata_path: Optional[str] = None
    parent_id: Optional[str] = None
    sat: Optional[str] = None
    sat_point: Optional[str] = None
    content_type: Optional[str] = None
    dry_run: bool = False
    no_limit_check: bool = False
    compress: bool = False


def validate_fee_rate(raw: Any) -> float:
    try:
        fee_rate = float(raw)
    except (TypeError, ValueError) as exc:
        raise CommandValidationError(f"Invalid fee rate: {raw!r}") from exc
    if not MIN_FEE_RATE <= fee_rate <= MAX_FEE_RATE:
        raise CommandValidationError(
            f"Fee rate must be between {MIN_FEE_RATE} and {MAX_FEE_RATE} sats/vB"
        )
    return fee_rate


def validate_amount(raw: Any, field_name: str) -> str:
    """Return ``raw`` as a canonical positive decimal string."""

    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise CommandValidationError(f"Invalid {field_name}: {raw!r}") from exc
    if not value.is_finite() or value <= 0:
        raise CommandValidationError(f"{field_name} must be a positive number")
    text = format(value.normalize(), "f")
    return text


def normalize_ticker(raw: Any) -> str:
    ticker = str(raw or "").strip().upper()
    if not TICKER_PATTERN.match(ticker):
        raise CommandValidationError("Invalid ticker format. Must be 1-4 alphanumeric characters.")
    return ticker


def normalize_sns_name(raw: Any) -> str:
    name = str(raw or "").strip().lower()
    if name.endswith(".sats"):
        name = name[: -len(".sats")]
    if not name or not SNS_NAME_PATTERN.match(name):
        raise CommandValidationError(
            "Invalid name format. Names can only contain letters, numbers, and hyphens."
        )
    return name


def _format_fee_rate(fee_rate: float) -> str:
    return str(int(fee_rate)) if float(fee_rate).is_integer() else str(fee_rate)


def _docker_exec_prefix(container: str, interactive: bool) -> List[str]:
    args = ["docker", "exec"]
    if interactive:
        args.append("-it")
    args.append(container)
    return args


def inscribe_args(options: InscribeOptions) -> List[str]:
    """Return the ``ord wallet inscribe`` argument list for ``options``."""

    fee_rate = validate_fee_rate(options.fee_rate)
    if not options.file_path:
        raise CommandValidationError("A file path is required")

    args = ["ord", "wallet", "inscribe", "--fee-rate", _format_fee_rate(fee_rate), "--file", options.file_path]
    if options.destination:
        args += ["--destination", options.destination]
    if options.no_limit_check:
        args.append("--no-limit-check")
    if options.sat:
        args += ["--sat", options.sat]
    if options.sat_point:
        args += ["--satpoint", options.sat_point]
    if options.parent_id:
        args += ["--parent", options.parent_id]
    if options.compress:
        args.append("--compress")
    if options.dry_run:
        args.append("--dry-run")
    if options.content_type:
        args += ["--content-type", options.content_type]
    if options.metadata_path:
        args += ["--metadata", options.metadata_path]
    return args


def build_inscribe_command(container: str, options: InscribeOptions, *, interactive: bool = True) -> str:
    return shlex.join(_docker_exec_prefix(container, interactive) + inscribe_args(options))


def build_transfer_commands(
    container: str,
    file_name: str,
    *,
    local_ip: str,
    port: int,
    container_path: str,
) -> List[str]:
    """Commands that serve ``file_name`` over HTTP and pull it into the container."""

    destination = f"{container_path}{file_name}"
    fetch = f"curl -o {shlex.quote(destination)} http://{local_ip}:{port}/{shlex.quote(file_name)}"
    return [
        f"python3 -m http.server {port}",
        shlex.join(["docker", "exec", "-it", container, "sh", "-c", fetch]),
    ]


def write_metadata_file(metadata_json: str, directory: Path) -> Path:
    """Validate ``metadata_json`` and write it as ``metadata_<ms>.json``."""

    try:
        json.loads(metadata_json)
    except (TypeError, json.JSONDecodeError) as exc:
        raise CommandValidationError(f"Metadata is not valid JSON: {exc}") from exc
    path = Path(directory) / f"metadata_{int(time.time() * 1000)}.json"
    path.write_text(metadata_json, encoding="utf-8")
    return path


def _inline_file_command(
    container: str,
    *,
    content: str,
    file_name: str,
    fee_rate: float,
    content_type: str,
    destination: Optional[str],
    interactive: bool,
) -> str:
    """Write ``content`` to a temp file inside the container and inscribe it."""

    target = f"/tmp/{file_name}"
    options = InscribeOptions(
        fee_rate=fee_rate,
        file_path=target,
        destination=destination,
        content_type=content_type,
    )
    script = f"printf '%s' {shlex.quote(content)} > {target} && {shlex.join(inscribe_args(options))}"
    return shlex.join(_docker_exec_prefix(container, interactive) + ["sh", "-c", script])


def brc20_payload(
    operation: str,
    ticker: str,
    *,
    amount: Any = None,
    max_supply: Any = None,
    mint_limit: Any = None,
) -> Dict[str, str]:
    if operation not in BRC20_OPERATIONS:
        raise CommandValidationError("Invalid operation. Must be 'deploy', 'mint', or 'transfer'.")
    payload = {"p": "brc-20", "op": operation, "tick": normalize_ticker(ticker)}
    if operation == "deploy":
        if max_supply in (None, ""):
            raise CommandValidationError("Missing maxSupply parameter for 'deploy' operation")
        payload["max"] = validate_amount(max_supply, "maxSupply")
        if mint_limit not in (None, ""):
            payload["lim"] = validate_amount(mint_limit, "mintLimit")
    else:
        if amount in (None, ""):
            raise CommandValidationError(f"Missing amount parameter for '{operation}' operation")
        payload["amt"] = validate_amount(amount, "amount")
    return payload


def build_brc20_command(
    container: str,
    operation: str,
    ticker: str,
    *,
    fee_rate: Any,
    amount: Any = None,
    max_supply: Any = None,
    mint_limit: Any = None,
    destination: Optional[str] = None,
    interactive: bool = True,
) -> tuple[str, Dict[str, str]]:
    """Return the command and the inlined BRC-20 JSON payload."""

    payload = brc20_payload(
        operation, ticker, amount=amount, max_supply=max_supply, mint_limit=mint_limit
    )
    command = _inline_file_command(
        container,
        content=json.dumps(payload, separators=COMPACT_JSON_SEPARATORS),
        file_name=f"brc20-{operation}.json",
        fee_rate=validate_fee_rate(fee_rate),
        content_type="application/json",
        destination=destination,
        interactive=interactive,
    )
    return command, payload


def build_bitmap_command(
    container: str,
    bitmap_number: Any,
    *,
    fee_rate: Any,
    destination: Optional[str] = None,
    interactive: bool = True,
) -> tuple[str, str]:
    number = str(bitmap_number or "").strip()
    if not BITMAP_PATTERN.match(number):
        raise CommandValidationError("Invalid bitmap number format. Must contain only digits.")
    content = f"{int(number)}.bitmap"
    command = _inline_file_command(
        container,
        content=content,
        file_name=f"bitmap-{int(number)}.txt",
        fee_rate=validate_fee_rate(fee_rate),
        content_type="text/plain;charset=utf-8",
        destination=destination,
        interactive=interactive,
    )
    return command, content


def sns_payload(name: str) -> Dict[str, str]:
    return {"p": "sns", "op": "reg", "name": f"{normalize_sns_name(name)}.sats"}


def build_sns_command(
    container: str,
    name: str,
    *,
    fee_rate: Any,
    destination: Optional[str] = None,
    interactive: bool = True,
) -> tuple[str, Dict[str, str]]:
    payload = sns_payload(name)
    command = _inline_file_command(
        container,
        content=json.dumps(payload, separators=COMPACT_JSON_SEPARATORS),
        file_name=f"sns-{payload['name']}.json",
        fee_rate=validate_fee_rate(fee_rate),
        content_type="text/plain;charset=utf-8",
        destination=destination,
        interactive=interactive,
    )
    return command, payload


def build_recursive_html(references: List[str], body: Optional[str] = None) -> str:
    """Return an HTML document that loads each referenced inscription by ``/content/<id>``."""

    for reference in references:
        if not INSCRIPTION_ID_PATTERN.match(reference):
            raise CommandValidationError(f"Invalid inscription id: {reference}")
    if body:
        return body
    tags = "\n".join(f'    <img src="/content/{reference}" alt="{reference}">' for reference in references)
    return f"<!DOCTYPE html>\n<html>\n  <body>\n{tags}\n  </body>\n</html>\n"


def build_recursive_command(
    container: str,
    *,
    container_file: str,
    fee_rate: Any,
    parent_id: Optional[str] = None,
    destination: Optional[str] = None,
    interactive: bool = True,
) -> str:
    if parent_id and not INSCRIPTION_ID_PATTERN.match(parent_id):
        raise CommandValidationError(f"Invalid inscription id: {parent_id}")
    options = InscribeOptions(
        fee_rate=validate_fee_rate(fee_rate),
        file_path=container_file,
        parent_id=parent_id,
        destination=destination,
        content_type="text/html;charset=utf-8",
    )
    return build_inscribe_command(container, options, interactive=interactive)


def processing_time(fee_rate: float) -> str:
    if fee_rate >= 25:
        return "Fast (likely next block, ~10 minutes)"
    if fee_rate >= 15:
        return "Standard (typically within an hour)"
    if fee_rate >= 5:
        return "Economy (may take several hours)"
    return "Very slow (could take a day or more)"


def estimate_fee(kind: str, fee_rate: Any) -> Dict[str, Any]:
    """Rough fee breakdown for a small text inscription of ``kind``."""

    rate = validate_fee_rate(fee_rate)
    vbytes = BITMAP_VBYTES if kind == "bitmap" else BRC20_VBYTES if kind == "brc20" else SNS_VBYTES
    inscription_fee = int(round(vbytes * rate))
    return {
        "vbyte": vbytes,
        "baseFee": BASE_FEE_SATS,
        "inscriptionFee": inscription_fee,
        "totalFee": inscription_fee + BASE_FEE_SATS,
        "feeRate": rate,
        "processingTime": processing_time(rate),
    }
