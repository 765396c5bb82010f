"""Flask application exposing the inscriber's JSON API.

Every collaborator the handlers need (resolver, stager, cache, status store,
file server, fee and indexer clients) hangs off an :class:`AppContext`
stored on the app, so tests can swap in stubs without touching globals.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, current_app, g, jsonify, request, send_file
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from .cache import CacheError, CacheManager
from .commands import (
    CommandValidationError,
    InscribeOptions,
    build_bitmap_command,
    build_brc20_command,
    build_inscribe_command,
    build_recursive_command,
    build_recursive_html,
    build_sns_command,
    build_transfer_commands,
    estimate_fee,
    normalize_sns_name,
    normalize_ticker,
    validate_fee_rate,
    write_metadata_file,
)
from .config import AppConfig, ConfigurationError, container_file_path, load_app_config, load_rpc_config
from .diagnostics import check_port, run_network_diagnostics, validate_port
from .environment import EnvironmentResolver
from .errorlog import DEFAULT_RECENT_LIMIT, RecentErrorHandler
from .executor import COPY_TIMEOUT, INSCRIBE_TIMEOUT, CommandRunner, DockerCLI
from .fees import FeeEstimator
from .file_server import FileServerError, FileServerHandle
from .indexers import (
    SNS_TIER_RATES,
    GeniidataClient,
    IndexerError,
    OrdApiClient,
    check_bitmap,
    check_sns_name,
    describe_token,
    sns_fee_quote,
)
from .parsing import UNKNOWN, parse_inscribe_output
from .probe import ResolutionError
from .rpc_client import BitcoinRPCClient, format_rpc_hint
from .stager import FileStager, StagingError, optimize_image
from .status import InscriptionNotFound, InscriptionStatusStore

logger = logging.getLogger(__name__)

EXTENSION_KEY = "ordinal_inscriber"
PACKAGE_LOGGER = "ordinal_inscriber"

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "text/plain",
    "text/markdown",
    "text/html",
    "application/json",
}
ALLOWED_EXTENSIONS = {".glb", ".gltf", ".txt", ".md", ".html", ".json"}
UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
DEFAULT_RECURSIVE_FEE_RATE = 5
MIN_ADDRESS_LENGTH = 10


@dataclass
class AppContext:
    """Collaborators shared by every request handler."""

    config: AppConfig
    runner: CommandRunner
    docker: DockerCLI
    resolver: EnvironmentResolver
    stager: FileStager
    cache: CacheManager
    statuses: InscriptionStatusStore
    file_server: FileServerHandle
    fees: FeeEstimator
    geniidata: GeniidataClient
    error_log: RecentErrorHandler
    ord_api: Optional[OrdApiClient] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, config: AppConfig, *, runner: CommandRunner | None = None) -> "AppContext":
        runner = runner or CommandRunner()
        docker = DockerCLI(runner)
        try:
            rpc_client = BitcoinRPCClient(load_rpc_config())
        except ConfigurationError as exc:
            logger.info("Bitcoin RPC not configured; fee estimates skip the node: %s", exc)
            rpc_client = None
        return cls(
            config=config,
            runner=runner,
            docker=docker,
            resolver=EnvironmentResolver(config, docker),
            stager=FileStager(
                docker,
                container_path=config.container_path,
                optimize_threshold_bytes=config.optimize_threshold_bytes,
            ),
            cache=CacheManager(config.staging_dir, config.cache_limit_bytes),
            statuses=InscriptionStatusStore(),
            file_server=FileServerHandle(config.file_server_port),
            fees=FeeEstimator(rpc_client=rpc_client),
            geniidata=GeniidataClient(api_key=config.geniidata_api_key),
            error_log=RecentErrorHandler(),
        )

    def ord_api_client(self) -> OrdApiClient:
        if self.ord_api is not None:
            return self.ord_api
        resolution = self.resolver.ord_api_url()
        client = OrdApiClient(resolution.value)
        # a guess made while ord was down is retried on the next request
        if not resolution.is_guess:
            self.ord_api = client
        return client

    def ord_container(self, requested: str | None = None) -> str:
        return requested or self.resolver.ord_container().value


api = Blueprint("api", __name__, url_prefix="/api")


def _ctx() -> AppContext:
    return current_app.extensions[EXTENSION_KEY]


def make_error(message: str, status_code: int = 400, **extra: Any):
    """Create a JSON error response."""

    body: Dict[str, Any] = {"error": True, "message": message}
    body.update(extra)
    return jsonify(body), status_code


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _port_option(raw: Any, default: int) -> int:
    if raw in (None, ""):
        return default
    try:
        return validate_port(raw)
    except ValueError as exc:
        raise CommandValidationError(f"{exc}: {raw}") from exc


def sanitize_file_name(name: str) -> str:
    return UNSAFE_NAME_CHARS.sub("_", Path(name).name)


def is_allowed_upload(file_name: str, mime_type: str | None) -> bool:
    if mime_type and mime_type.split(";")[0].strip().lower() in ALLOWED_MIME_TYPES:
        return True
    return Path(file_name).suffix.lower() in ALLOWED_EXTENSIONS


def _save_upload(ctx: AppContext) -> tuple[Path, str]:
    """Store the ``file`` part of a multipart request in the staging directory."""

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise CommandValidationError("No file uploaded")
    mime_type = upload.mimetype or ""
    if not is_allowed_upload(upload.filename, mime_type):
        raise CommandValidationError(
            "Only JPG, PNG, WEBP, GIF images, text, Markdown, HTML, JSON and GLB/GLTF models are allowed"
        )
    directory = ctx.config.staging_dir
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / sanitize_file_name(upload.filename)
    upload.save(path)
    logger.info("Stored upload %s (%s)", path.name, mime_type or "unknown type")
    ctx.cache.sweep(keep={path.name, path.with_suffix(".webp").name})
    return path, mime_type


def _request_data() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if body is None and request.form:
        body = request.form.to_dict()
    return {"params": request.view_args or {}, "query": request.args.to_dict(), "body": body}


# Meta ------------------------------------------------------------------------


@api.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


@api.route("/environment", methods=["GET"])
def environment():
    return jsonify(_ctx().resolver.describe())


@api.route("/container/check", methods=["GET"])
def container_check():
    name = request.args.get("name")
    if not name:
        return make_error("Container name is required")
    return jsonify({"exists": _ctx().docker.container_exists(name)})


@api.route("/port/check", methods=["GET"])
def port_check():
    raw = request.args.get("port")
    if not raw:
        return make_error("Port is required")
    try:
        port = validate_port(raw)
    except ValueError as exc:
        return make_error(str(exc))
    return jsonify({"available": check_port(port)})


@api.route("/network/diagnostics", methods=["GET"])
def network_diagnostics():
    ctx = _ctx()
    container = ctx.ord_container(request.args.get("container"))
    return jsonify(run_network_diagnostics(container, ctx.runner, ctx.resolver.interfaces))


@api.route("/umbrel/status", methods=["GET"])
def umbrel_status():
    ctx = _ctx()
    ord_container = ctx.resolver.ord_container()
    return jsonify(
        {
            "isUmbrel": ctx.resolver.is_umbrel,
            "platform": ctx.resolver.platform,
            "ordContainer": ord_container.as_dict(),
            "bitcoinContainer": ctx.resolver.bitcoin_container().as_dict(),
            "ordContainerRunning": ctx.docker.container_exists(ord_container.value),
        }
    )


@api.route("/umbrel/containers", methods=["GET"])
def umbrel_containers():
    ctx = _ctx()
    return jsonify(
        {
            "dockerAvailable": ctx.runner.docker_available(),
            "containers": ctx.docker.running_containers(),
        }
    )


# Cache -----------------------------------------------------------------------


@api.route("/cache/info", methods=["GET"])
def cache_info():
    return jsonify(_ctx().cache.info().as_dict())


@api.route("/cache/clear", methods=["POST"])
def cache_clear():
    count = _ctx().cache.clear_all()
    return jsonify(
        {
            "success": True,
            "deletedCount": count,
            "message": f"Successfully cleared {count} cached file{'' if count == 1 else 's'}",
        }
    )


@api.route("/cache/file/<name>", methods=["GET"])
def cache_file(name: str):
    return send_file(_ctx().cache.path_for(name))


@api.route("/cache/file/<name>", methods=["DELETE"])
def cache_file_delete(name: str):
    _ctx().cache.delete(name)
    return jsonify({"success": True, "message": f"Successfully deleted {name}"})


# Upload and execution --------------------------------------------------------


@api.route("/upload", methods=["POST"])
def upload_file():
    ctx = _ctx()
    path, mime_type = _save_upload(ctx)
    body: Dict[str, Any] = {
        "error": False,
        "fileName": path.name,
        "size": path.stat().st_size,
        "mimeType": mime_type,
    }
    if not _flag(request.form.get("stage")):
        return jsonify(body)

    container = ctx.ord_container(request.form.get("containerName"))
    alternatives = [] if request.form.get("containerName") else ctx.resolver.ord_container_candidates()
    result = ctx.stager.stage(
        path,
        container,
        mime_type=mime_type,
        optimize=_flag(request.form.get("optimizeImage")),
        verify=_flag(request.form.get("verify")),
        alternatives=alternatives,
    )
    body.update(result.as_dict())
    return jsonify(body), (500 if result.error else 200)


@api.route("/commands/generate", methods=["POST"])
def generate_commands():
    ctx = _ctx()
    path, _ = _save_upload(ctx)
    try:
        options = json.loads(request.form.get("config") or "{}")
    except json.JSONDecodeError as exc:
        raise CommandValidationError(f"Invalid config JSON: {exc}") from exc
    if not isinstance(options, dict):
        raise CommandValidationError("config must be a JSON object")

    container = ctx.ord_container(options.get("containerName"))
    container_path = container_file_path(options.get("containerPath") or ctx.config.container_path)
    port = _port_option(options.get("port"), ctx.config.file_server_port)
    local_ip = ctx.resolver.local_ip().value

    commands = build_transfer_commands(
        container, path.name, local_ip=local_ip, port=port, container_path=container_path
    )
    metadata_path = None
    if options.get("includeMetadata") and options.get("metadataJson"):
        metadata_file = write_metadata_file(options["metadataJson"], ctx.config.staging_dir)
        commands += build_transfer_commands(
            container, metadata_file.name, local_ip=local_ip, port=port, container_path=container_path
        )[1:]
        metadata_path = f"{container_path}{metadata_file.name}"

    inscribe = InscribeOptions(
        fee_rate=validate_fee_rate(options.get("feeRate")),
        file_path=f"{container_path}{path.name}",
        destination=options.get("destination") or None,
        metadata_path=metadata_path,
        parent_id=options.get("parentId") or None,
        sat=options.get("sat") or None,
        sat_point=options.get("satPoint") or None,
        content_type=options.get("mimeType") or None,
        dry_run=_flag(options.get("dryRun")),
        no_limit_check=_flag(options.get("noLimitCheck")),
        compress=_flag(options.get("compress")),
    )
    commands.append(build_inscribe_command(container, inscribe))
    return jsonify({"commands": commands, "fileName": path.name})


@api.route("/execute/serve", methods=["POST"])
def execute_serve():
    ctx = _ctx()
    path, mime_type = _save_upload(ctx)
    try:
        options = json.loads(request.form.get("config") or "{}")
    except json.JSONDecodeError as exc:
        raise CommandValidationError(f"Invalid config JSON: {exc}") from exc
    port = _port_option(request.form.get("port"), ctx.config.file_server_port)

    served = path
    body: Dict[str, Any] = {"imageOptimized": False}
    if isinstance(options, dict) and _flag(options.get("optimizeImage")):
        optimization = optimize_image(
            path, mime_type=mime_type, threshold_bytes=ctx.config.optimize_threshold_bytes
        )
        served = optimization.path
        body = {
            "imageOptimized": optimization.image_optimized,
            "originalSize": optimization.original_size,
            "finalSize": optimization.final_size,
        }
        if optimization.message:
            body["message"] = optimization.message

    try:
        result = ctx.file_server.start(served.parent, port=port)
    except FileServerError as exc:
        return jsonify({"error": True, "output": str(exc)}), 500
    if result.error:
        return jsonify({"error": True, "output": result.output}), 500

    local_ip = ctx.resolver.local_ip().value
    body.update(
        {
            "error": False,
            "fileName": served.name,
            "output": f"Serving HTTP on 0.0.0.0 port {port}...\n"
            f"File available at: http://{local_ip}:{port}/{served.name}",
        }
    )
    return jsonify(body)


@api.route("/execute/download", methods=["POST"])
def execute_download():
    command = _json_body().get("command")
    if not command:
        return make_error("Command is required")
    result = _ctx().runner.run(command, timeout=COPY_TIMEOUT)
    if result.error:
        return jsonify({"error": True, "output": result.output}), 500
    return jsonify({"error": False, "output": result.output or "File downloaded successfully to container"})


def _format_fee(fee_paid: str) -> str:
    if fee_paid == UNKNOWN or not fee_paid.isdigit():
        return fee_paid
    return f"{int(fee_paid):,} sats"


@api.route("/execute/inscribe", methods=["POST"])
def execute_inscribe():
    ctx = _ctx()
    command = _json_body().get("command")
    if not command:
        return make_error("Command is required")
    try:
        result = ctx.runner.run(command, timeout=INSCRIBE_TIMEOUT)
    finally:
        ctx.file_server.stop()

    if result.error:
        body: Dict[str, Any] = {"error": True, "output": result.output}
        hint = format_rpc_hint(result.output)
        if hint:
            body["hint"] = hint
        return jsonify(body), 500

    outcome = parse_inscribe_output(result.output)
    return jsonify(
        {
            "error": False,
            "output": result.output,
            "inscriptionId": outcome.inscription_id,
            "transactionId": outcome.transaction_id,
            "feePaid": _format_fee(outcome.fee_paid),
        }
    )


@api.route("/fees/estimate", methods=["GET"])
def fees_estimate():
    return jsonify(_ctx().fees.estimate().as_dict())


# BRC-20 ----------------------------------------------------------------------


@api.route("/brc20/token/<ticker>", methods=["GET"])
def brc20_token(ticker: str):
    ticker = normalize_ticker(ticker)
    record = _ctx().geniidata.brc20_token(ticker)
    if record is None:
        return jsonify(
            {
                "ticker": ticker,
                "deployed": False,
                "available": True,
                "message": "Token is available for deployment",
            }
        )
    body = describe_token(record)
    body.update({"available": False, "message": "Token has already been deployed"})
    return jsonify(body)


@api.route("/brc20/balance/<address>", methods=["GET"])
@api.route("/brc20/balance/<address>/<ticker>", methods=["GET"])
def brc20_balance(address: str, ticker: str | None = None):
    if len(address) < MIN_ADDRESS_LENGTH:
        return make_error("Invalid Bitcoin address format.")
    ticker = normalize_ticker(ticker) if ticker else None
    balances = _ctx().geniidata.brc20_balances(address, ticker)
    return jsonify({"address": address, "ticker": ticker or "all", "balances": balances})


@api.route("/brc20/generate-command", methods=["POST"])
def brc20_generate_command():
    ctx = _ctx()
    data = _json_body()
    if not data.get("operation") or not data.get("ticker") or not data.get("feeRate"):
        return make_error("Missing required parameters")
    command, payload = build_brc20_command(
        ctx.ord_container(data.get("containerName")),
        data["operation"],
        data["ticker"],
        fee_rate=data["feeRate"],
        amount=data.get("amount"),
        max_supply=data.get("maxSupply"),
        mint_limit=data.get("mintLimit"),
        destination=data.get("destinationAddress") or None,
    )
    return jsonify(
        {
            "command": command,
            "operation": payload["op"],
            "ticker": payload["tick"],
            "inscriptionContent": payload,
            "feeDetails": estimate_fee("brc20", data["feeRate"]),
        }
    )


# Bitmap ----------------------------------------------------------------------


@api.route("/bitmap/check/<number>", methods=["GET"])
def bitmap_check(number: str):
    if not number.isdigit():
        return make_error("Invalid bitmap number format. Must contain only digits.")
    ctx = _ctx()
    ord_api = None
    try:
        ord_api = ctx.ord_api_client()
    except ResolutionError as exc:
        logger.warning("ord API unavailable for bitmap check: %s", exc)
    return jsonify(check_bitmap(int(number), ctx.geniidata, ord_api).as_dict())


@api.route("/bitmap/calculate-fees", methods=["POST"])
def bitmap_calculate_fees():
    fee_rate = _json_body().get("feeRate")
    if not fee_rate:
        return make_error("Missing fee rate parameter")
    details = estimate_fee("bitmap", fee_rate)
    details["estimatedUsd"] = None
    return jsonify(details)


@api.route("/bitmap/generate-command", methods=["POST"])
def bitmap_generate_command():
    ctx = _ctx()
    data = _json_body()
    if not data.get("bitmapNumber") or not data.get("feeRate"):
        return make_error("Missing required parameters")
    command, content = build_bitmap_command(
        ctx.ord_container(data.get("containerName")),
        data["bitmapNumber"],
        fee_rate=data["feeRate"],
        destination=data.get("destinationAddress") or None,
    )
    return jsonify(
        {
            "command": command,
            "bitmapNumber": str(data["bitmapNumber"]),
            "format": content,
            "feeDetails": estimate_fee("bitmap", data["feeRate"]),
        }
    )


# SNS -------------------------------------------------------------------------


def _custom_fee(raw: Any) -> int | None:
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise CommandValidationError(f"Invalid custom fee: {raw!r}") from exc


@api.route("/sns/fees", methods=["GET"])
def sns_fees():
    tier = request.args.get("tier") or "normal"
    try:
        quote = sns_fee_quote(tier, _custom_fee(request.args.get("customFee")))
    except ValueError as exc:
        return make_error(str(exc))
    return jsonify(quote)


@api.route("/sns/name/check", methods=["GET"])
def sns_name_check():
    name = request.args.get("name")
    if not name:
        return make_error("Name is required")
    return jsonify(check_sns_name(name, _ctx().geniidata))


@api.route("/sns/generate-command", methods=["POST"])
def sns_generate_command():
    ctx = _ctx()
    data = _json_body()
    if not data.get("name"):
        return make_error("Name is required")
    tier = data.get("tier") or "normal"
    custom_fee = _custom_fee(data.get("customFee"))
    try:
        fees = sns_fee_quote(tier, custom_fee)
    except ValueError as exc:
        return make_error(str(exc))
    fee_rate = data.get("feeRate") or (custom_fee if tier == "custom" else SNS_TIER_RATES[tier])

    command, payload = build_sns_command(
        ctx.ord_container(data.get("containerName")),
        data["name"],
        fee_rate=fee_rate,
        destination=data.get("destinationAddress") or None,
    )
    return jsonify(
        {
            "command": command,
            "name": normalize_sns_name(data["name"]),
            "inscriptionContent": payload,
            "fees": fees,
            "feeDetails": estimate_fee("sns", fee_rate),
        }
    )


# Status records --------------------------------------------------------------


@api.route("/inscriptions/recursive", methods=["POST"])
def recursive_inscription():
    ctx = _ctx()
    data = _json_body()
    primary = data.get("primaryInscriptionId")
    references = data.get("referenceInscriptions")
    if not primary or not isinstance(references, list) or not references:
        return make_error("Missing required fields: primaryInscriptionId, referenceInscriptions")

    html = build_recursive_html(references, data.get("html"))
    fee_rate = validate_fee_rate(data.get("feeRate") or DEFAULT_RECURSIVE_FEE_RATE)
    container = ctx.ord_container(data.get("containerName"))

    directory = ctx.config.staging_dir
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"recursive_{uuid.uuid4()}.html"
    path.write_text(html, encoding="utf-8")

    staged = ctx.stager.copy_to_container(path, container)
    if staged.error:
        return jsonify(staged.as_dict()), 500

    command = build_recursive_command(
        container,
        container_file=staged.container_path,
        fee_rate=fee_rate,
        parent_id=primary,
        destination=data.get("destination") or None,
    )
    body: Dict[str, Any] = {
        "success": True,
        "fileName": path.name,
        "command": command,
        "references": references,
        "primaryInscription": primary,
    }
    if _flag(data.get("execute")):
        result = ctx.runner.run(command, timeout=INSCRIBE_TIMEOUT)
        if result.error:
            return jsonify({"error": True, "output": result.output, "command": command}), 500
        outcome = parse_inscribe_output(result.output)
        body.update({"inscriptionId": outcome.inscription_id, "txid": outcome.transaction_id})
    return jsonify(body), 201


@api.route("/inscriptions", methods=["GET"])
def list_inscriptions():
    return jsonify([record.as_dict() for record in _ctx().statuses.list()])


@api.route("/inscriptions", methods=["POST"])
def create_inscription():
    data = _json_body()
    if not data.get("fileName") or not data.get("fileType"):
        return make_error("Missing required fields")
    record = _ctx().statuses.create(
        data["fileName"],
        data["fileType"],
        satoshi_type=data.get("satoshiType"),
        command=data.get("command"),
    )
    return jsonify(record.as_dict()), 201


@api.route("/inscriptions", methods=["DELETE"])
def clear_inscriptions():
    _ctx().statuses.clear()
    return "", 204


@api.route("/inscriptions/<inscription_id>", methods=["GET"])
def get_inscription(inscription_id: str):
    return jsonify(_ctx().statuses.get(inscription_id).as_dict())


@api.route("/inscriptions/<inscription_id>", methods=["PATCH"])
def update_inscription(inscription_id: str):
    try:
        record = _ctx().statuses.update(inscription_id, _json_body())
    except ValueError as exc:
        return make_error(str(exc))
    return jsonify(record.as_dict())


@api.route("/inscriptions/<inscription_id>", methods=["DELETE"])
def delete_inscription(inscription_id: str):
    _ctx().statuses.delete(inscription_id)
    return "", 204


@api.route("/inscriptions/<inscription_id>/check", methods=["POST"])
def check_inscription(inscription_id: str):
    ctx = _ctx()
    ctx.statuses.get(inscription_id)
    record = ctx.statuses.check(
        inscription_id, ctx.runner, bitcoin_container=ctx.resolver.bitcoin_container().value
    )
    return jsonify(record.as_dict())


@api.route("/inscriptions/<inscription_id>/process", methods=["POST"])
def process_inscription(inscription_id: str):
    ctx = _ctx()
    command = _json_body().get("command")
    ctx.statuses.get(inscription_id)
    if not command:
        return make_error("Command is required")
    return jsonify(ctx.statuses.process(inscription_id, command, ctx.runner).as_dict())


@api.route("/errors/recent", methods=["GET"])
def recent_errors():
    handler = _ctx().error_log
    limit = request.args.get("limit", DEFAULT_RECENT_LIMIT, type=int)
    return jsonify({"errors": handler.recent(limit), "logFile": str(handler.log_file)})


# Hooks and error handlers ----------------------------------------------------


@api.before_app_request
def _start_timer() -> None:
    g.request_started = time.monotonic()


@api.after_app_request
def _log_request(response):
    if request.path.startswith("/api"):
        started = g.get("request_started")
        elapsed = (time.monotonic() - started) * 1000 if started else 0.0
        logger.info("%s %s %s in %dms", request.method, request.path, response.status_code, elapsed)
    return response


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CommandValidationError)
    @app.errorhandler(CacheError)
    def _validation_error(exc: Exception):
        return make_error(str(exc), 400)

    @app.errorhandler(StagingError)
    def _staging_failed(exc: StagingError):
        logger.warning("Staging failed for %s %s: %s", request.method, request.path, exc)
        return make_error(str(exc), 422)

    @app.errorhandler(InscriptionNotFound)
    def _inscription_missing(exc: InscriptionNotFound):
        return make_error("Inscription not found", 404)

    @app.errorhandler(FileNotFoundError)
    def _file_missing(exc: FileNotFoundError):
        return make_error("File not found", 404)

    @app.errorhandler(IndexerError)
    @app.errorhandler(ResolutionError)
    def _upstream_unavailable(exc: Exception):
        logger.warning("Upstream unavailable for %s %s: %s", request.method, request.path, exc)
        return make_error(str(exc), 503)

    @app.errorhandler(RequestEntityTooLarge)
    def _too_large(exc: RequestEntityTooLarge):
        limit_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) / (1024 * 1024)
        return make_error(f"File too large. Maximum size is {limit_mb:g} MB", 413)

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return make_error(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        logger.error(
            "Unhandled error in %s %s: %s",
            request.method,
            request.path,
            exc,
            exc_info=exc,
            extra={
                "error_type": "api_error",
                "endpoint": f"{request.method} {request.full_path.rstrip('?')}",
                "request_data": _request_data(),
                "response_status": 500,
            },
        )
        return make_error("Internal server error", 500, output=str(exc))


def create_app(config: AppConfig | None = None, *, context: AppContext | None = None) -> Flask:
    """Build the Flask application.

    ``context`` wins over ``config``; with neither, configuration is loaded
    from the environment and ``~/.ordinal-inscriber.yaml``.
    """

    if context is None:
        context = AppContext.build(config or load_app_config())

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = context.config.max_upload_bytes
    app.extensions[EXTENSION_KEY] = context

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if context.error_log not in package_logger.handlers:
        package_logger.addHandler(context.error_log)

    app.register_blueprint(api)
    _register_error_handlers(app)
    return app
