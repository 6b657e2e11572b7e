"""
CLI entry point for the subtensor registrar.
"""

import logging
import threading
from pathlib import Path
from typing import NoReturn, Optional

import structlog
import typer
from dotenv import load_dotenv

from .config import RegistrarConfig, load_config, load_settings
from .errors import BlockTimeEstimationError, ChainReadError, ConfigError
from .models import Cancelled, GaveUp, Outcome, Registered, RegistrationRequest

EXIT_REGISTERED = 0
EXIT_GAVE_UP = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 130

app = typer.Typer(
    name="subtensor-registrar",
    help="Register a hotkey on a subnet once the burn price drops under a ceiling",
    add_completion=False,
)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog once for the process."""
    min_level = logging.getLevelName(level.upper())
    if not isinstance(min_level, int):
        raise ConfigError(f"unknown log level: {level}")

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
    )


def exit_code_for(outcome: Outcome) -> int:
    if isinstance(outcome, Registered):
        return EXIT_REGISTERED
    if isinstance(outcome, Cancelled):
        return EXIT_CANCELLED
    return EXIT_GAVE_UP


def _fail_config(error: ConfigError) -> NoReturn:
    typer.echo(f"Configuration error: {error}", err=True)
    raise typer.Exit(EXIT_CONFIG_ERROR)


def _max_price_rao(max_price: Optional[int], max_price_tao: Optional[str]) -> Optional[int]:
    if max_price_tao is None:
        return max_price
    if max_price is not None:
        raise ConfigError("use only one of --max-price and --max-price-tao")
    from .units import tao_to_rao

    try:
        return tao_to_rao(max_price_tao)
    except (ArithmeticError, ValueError) as e:
        raise ConfigError(f"invalid --max-price-tao: {e}") from e


def _resolve_interval(config: RegistrarConfig, cancel: threading.Event) -> float:
    if not config.poll_per_block:
        return config.poll_interval_seconds

    from .blocktime import estimate_block_time
    from .rpc import NodeRpc

    typer.echo("Estimating block time (this samples 10 blocks)...")
    rpc = NodeRpc(config.chain_endpoint)
    try:
        return estimate_block_time(rpc, cancel=cancel)
    except BlockTimeEstimationError as e:
        structlog.get_logger().warning(
            "block_time_estimation_failed",
            error=str(e),
            fallback_seconds=config.poll_interval_seconds,
        )
        return config.poll_interval_seconds
    finally:
        rpc.close()


def run_registration(config: RegistrarConfig, cancel: threading.Event) -> Outcome:
    """Wire the chain adapter, signer, journal and engine together and run."""
    from .chain import SubstrateChainClient, SubstrateConnection
    from .db import AttemptJournal
    from .engine import RegistrationEngine
    from .guard import SubmissionGuard
    from .monitor import PendingExtrinsicsMonitor
    from .rpc import NodeRpc
    from .scheduler import ExponentialBackoff, PollingScheduler
    from .signer import KeypairSigner, resolve_address
    from .units import format_tao

    connection = SubstrateConnection(config.chain_endpoint)
    signer = KeypairSigner.from_secret(connection, config.coldkey)
    request = RegistrationRequest(
        coldkey=signer.address,
        hotkey=resolve_address(config.hotkey, "hotkey"),
        network_uid=config.network_uid,
    )
    client = SubstrateChainClient(
        connection,
        network_uid=config.network_uid,
        wait_for_finalization=config.wait_for_finalization,
    )
    journal = AttemptJournal(config.database_url) if config.database_url else None

    interval = _resolve_interval(config, cancel)
    scheduler = PollingScheduler(
        interval=interval,
        backoff=ExponentialBackoff(base=interval, max_delay=max(config.backoff_max_seconds, interval)),
        cancel=cancel,
        timeout=config.timeout_seconds,
    )
    engine = RegistrationEngine(
        scheduler,
        guard=SubmissionGuard(max_retries=config.max_submit_retries),
        journal=journal,
    )

    typer.echo(f"Coldkey: {request.coldkey}")
    typer.echo(f"Hotkey: {request.hotkey}")
    typer.echo(f"Subnet: {request.network_uid}")
    typer.echo(f"Max price: {config.max_price} rao ({format_tao(config.max_price)})")
    typer.echo(f"Polling every {interval:.1f}s. Press Ctrl+C to stop.")

    monitor = None
    if config.monitor_pending:
        monitor = PendingExtrinsicsMonitor(NodeRpc(config.chain_endpoint))
        monitor.start()

    try:
        return engine.register(client, signer, request, config.max_price)
    finally:
        if monitor:
            monitor.stop()
            monitor.rpc.close()
        if journal:
            journal.close()
        connection.close()


@app.command()
def register(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a TOML config file (default: ./config.toml if present)"
    ),
    coldkey: Optional[str] = typer.Option(
        None, "--coldkey", envvar="REGISTRAR_COLDKEY", help="Coldkey secret URI, mnemonic or 0x seed"
    ),
    hotkey: Optional[str] = typer.Option(None, "--hotkey", help="Hotkey SS58 address or secret URI"),
    netuid: Optional[int] = typer.Option(None, "--netuid", help="Subnet to register on"),
    max_price: Optional[int] = typer.Option(None, "--max-price", help="Maximum burn to pay, in rao"),
    max_price_tao: Optional[str] = typer.Option(
        None, "--max-price-tao", help="Maximum burn to pay, in TAO"
    ),
    chain_endpoint: Optional[str] = typer.Option(None, "--chain-endpoint", help="Node websocket URL"),
    poll_interval: Optional[float] = typer.Option(
        None, "--poll-interval", help="Seconds between price reads"
    ),
    per_block: Optional[bool] = typer.Option(
        None, "--per-block/--fixed-interval", help="Estimate block time and poll once per block"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Give up after this many seconds without registering"
    ),
    database_url: Optional[str] = typer.Option(
        None, "--database-url", help="Attempt journal URL (empty string disables)"
    ),
    monitor_pending: Optional[bool] = typer.Option(
        None, "--monitor-pending/--no-monitor-pending", help="Log the node's pending extrinsic count"
    ),
    wait_for_finalization: Optional[bool] = typer.Option(
        None, "--wait-for-finalization/--wait-for-inclusion", help="How long to wait after submitting"
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    json_logs: Optional[bool] = typer.Option(None, "--json-logs/--console-logs", help="Log format"),
) -> None:
    """
    Poll the subnet burn price and register the hotkey once it is at or
    below the maximum price.

    Exit codes: 0 registered, 1 gave up, 2 configuration error, 130 cancelled.
    """
    try:
        config = load_config(
            config_path,
            coldkey=coldkey,
            hotkey=hotkey,
            network_uid=netuid,
            max_price=_max_price_rao(max_price, max_price_tao),
            chain_endpoint=chain_endpoint,
            poll_interval_seconds=poll_interval,
            poll_per_block=per_block,
            timeout_seconds=timeout,
            database_url=database_url,
            monitor_pending=monitor_pending,
            wait_for_finalization=wait_for_finalization,
            log_level=log_level,
            log_json=json_logs,
        )
        configure_logging(config.log_level, config.log_json)
    except ConfigError as e:
        _fail_config(e)

    from .shutdown import install_signal_handlers

    cancel = threading.Event()
    install_signal_handlers(cancel)

    try:
        outcome = run_registration(config, cancel)
    except ConfigError as e:
        _fail_config(e)

    if isinstance(outcome, Registered):
        receipt = outcome.receipt
        typer.echo(f"✓ Registered: {receipt.extrinsic_hash} (block {receipt.block_hash})")
    elif isinstance(outcome, GaveUp):
        typer.echo(f"✗ Gave up: {outcome.reason}", err=True)
    else:
        typer.echo("Cancelled. No registration was made.", err=True)

    raise typer.Exit(exit_code_for(outcome))


@app.command()
def price(
    netuid: int = typer.Argument(..., help="Subnet to inspect"),
    chain_endpoint: str = typer.Option(
        "ws://127.0.0.1:9944", "--chain-endpoint", help="Node websocket URL"
    ),
    max_price: Optional[int] = typer.Option(
        None, "--max-price", help="Compare against this ceiling, in rao"
    ),
) -> None:
    """
    Show the current burn price of a subnet (without registering).
    """
    from .chain import SubstrateChainClient, SubstrateConnection
    from .evaluator import Verdict, evaluate
    from .units import format_tao

    configure_logging("WARNING")
    connection = SubstrateConnection(chain_endpoint)
    client = SubstrateChainClient(connection, network_uid=netuid)

    try:
        current = client.read_price()
    except ChainReadError as e:
        typer.echo(f"Error reading price: {e}", err=True)
        raise typer.Exit(1)
    finally:
        connection.close()

    typer.echo(f"Subnet {netuid} burn: {current} rao ({format_tao(current)})")
    if max_price is not None:
        verdict = evaluate(current, max_price)
        if verdict is Verdict.PROCEED:
            typer.echo(f"At or below max price {max_price} rao: would register now")
        else:
            typer.echo(f"Above max price {max_price} rao: would wait")


@app.command("estimate-block-time")
def estimate_block_time_cmd(
    chain_endpoint: str = typer.Option(
        "ws://127.0.0.1:9944", "--chain-endpoint", help="Node websocket or HTTP URL"
    ),
    sample_size: int = typer.Option(10, "--sample-size", min=1, help="Blocks to sample"),
) -> None:
    """
    Estimate the average block time by sampling new blocks.
    """
    from .blocktime import estimate_block_time
    from .rpc import NodeRpc

    configure_logging("INFO")
    rpc = NodeRpc(chain_endpoint)
    typer.echo(f"Sampling {sample_size} blocks...")
    try:
        seconds = estimate_block_time(rpc, sample_size=sample_size)
    except BlockTimeEstimationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        rpc.close()
    typer.echo(f"Estimated block time: {seconds:.2f}s")


@app.command()
def history(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to TOML config"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="Attempt journal URL"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of attempts to show"),
) -> None:
    """
    List recent registration attempts from the journal.
    """
    from .db import AttemptJournal
    from .units import format_tao

    try:
        settings = load_settings(config_path, database_url=database_url)
    except ConfigError as e:
        _fail_config(e)

    if not settings.database_url:
        typer.echo("Attempt journal is disabled (empty database_url).")
        return

    configure_logging("WARNING")
    journal = AttemptJournal(settings.database_url)
    try:
        attempts = journal.list_attempts(limit)
    finally:
        journal.close()

    if not attempts:
        typer.echo("No registration attempts recorded.")
        return

    for attempt in attempts:
        typer.echo(
            f"#{attempt.id} {attempt.attempted_at:%Y-%m-%d %H:%M:%S} "
            f"netuid={attempt.network_uid} hotkey={attempt.hotkey} "
            f"price={format_tao(attempt.price_rao)} status={attempt.status}"
        )
        if attempt.extrinsic_hash:
            typer.echo(f"    extrinsic: {attempt.extrinsic_hash}")
        if attempt.error:
            typer.echo(f"    error: {attempt.error}")


@app.command()
def version() -> None:
    """Show the registrar version."""
    from subtensor_registrar import __version__

    typer.echo(f"subtensor-registrar v{__version__}")


def main() -> None:
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
