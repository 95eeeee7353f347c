"""
``rescue`` command line.

    rescue run [--env-file .env] [--amount 5] [--attempts 1] [--no-dry-run]
    rescue methods [--abi-path contractABI.json]
    rescue version

Credentials and endpoints come from the environment (or a .env file); they
are never printed.
"""
import logging
from typing import Optional

import typer

from bundle_rescue import __version__
from bundle_rescue.config import RescueConfig
from bundle_rescue.encoder import load_interface, read_descriptor_file
from bundle_rescue.exceptions import (
    ConfigurationError,
    EncodingError,
    RescueError,
    SigningError,
    TransferRequestError,
)
from bundle_rescue.models import FinalStatus, TransferReport, TransferRequest
from bundle_rescue.orchestrator import TransferOrchestrator
from bundle_rescue.utils import format_units, redact_url

app = typer.Typer(
    name="rescue",
    help="Move tokens out of a compromised account through a private relay.",
    add_completion=False,
)

logger = logging.getLogger("rescue_cli")

EXIT_CODES = {
    FinalStatus.INCLUDED: 0,
    FinalStatus.ABORTED: 1,
    FinalStatus.NOT_INCLUDED: 2,
    FinalStatus.SUBMISSION_ERROR: 3,
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fatal_step(error: RescueError) -> str:
    if isinstance(error, ConfigurationError):
        return "configuration"
    if isinstance(error, EncodingError):
        return "encoding"
    if isinstance(error, TransferRequestError):
        return "transfer request"
    if isinstance(error, SigningError):
        return "signing"
    return "setup"


def _echo_setup(config: RescueConfig, request: TransferRequest) -> None:
    typer.echo(f"Network:      {config.network} (chain id {config.chain_id})")
    typer.echo(f"RPC:          {redact_url(config.rpc_url)}")
    typer.echo(f"Relay:        {redact_url(config.relay_url)}")
    typer.echo(f"Token:        {request.token.address} ({request.token.decimals} decimals)")
    typer.echo(f"Source:       {request.source}")
    typer.echo(f"Destination:  {request.destination}")
    typer.echo(f"Amount:       {config.amount} ({request.amount} base units)")
    typer.echo(f"Gas:          limit {config.gas_limit} at {config.gas_price_gwei} gwei")


def _echo_report(report: TransferReport) -> None:
    if report.token_balance is not None:
        typer.echo(
            f"Balance of source account: {format_units(report.token_balance, report.decimals)} "
            f"({report.token_balance} base units)"
        )
    if report.dry_run_succeeded is not None:
        typer.echo("Dry run: succeeded" if report.dry_run_succeeded else f"Dry run: failed ({report.dry_run_error})")
    if report.outcome is not None:
        typer.echo(f"Bundle: {report.outcome.bundle_hash or 'unknown hash'} for block {report.outcome.target_block}")
    if report.attempts > 1:
        typer.echo(f"Attempts: {report.attempts}")
    typer.echo(report.status_line())


@app.command()
def run(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to a .env file"),
    amount: Optional[str] = typer.Option(None, "--amount", help="Human-readable token amount"),
    attempts: Optional[int] = typer.Option(None, "--attempts", min=1, help="Target blocks to try"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for each target block"),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", help="Simulate before submitting"),
    fund_gas: Optional[bool] = typer.Option(None, "--fund-gas/--no-fund-gas", help="Top up gas from the funding account"),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
):
    """Submit the transfer privately for the next block and report the outcome."""
    _configure_logging(log_level)
    orchestrator = None
    try:
        config = RescueConfig.from_env(
            dotenv_path=env_file,
            amount=amount,
            attempts=attempts,
            outcome_timeout=timeout,
            dry_run=dry_run,
            fund_gas=fund_gas,
        )
        orchestrator = TransferOrchestrator.from_config(config)
        request = orchestrator.build_request(config)
        _echo_setup(config, request)
        report = orchestrator.run(request)
    except RescueError as e:
        logger.error(f"Aborted: {e}")
        report = TransferReport(status=FinalStatus.ABORTED, failed_step=_fatal_step(e), detail=str(e))
    except Exception as e:
        # Unknown failure point: do not claim nothing was sent
        logger.exception("Unexpected error during transfer")
        report = TransferReport(status=FinalStatus.SUBMISSION_ERROR, failed_step="unexpected", detail=str(e))
    finally:
        if orchestrator is not None:
            orchestrator.relay.close()

    _echo_report(report)
    raise typer.Exit(code=EXIT_CODES[report.status])


@app.command()
def methods(
    abi_path: Optional[str] = typer.Option(None, "--abi-path", help="Interface descriptor (defaults to ERC-20)"),
):
    """List the callable methods of an interface descriptor."""
    try:
        table = load_interface(read_descriptor_file(abi_path))
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    for name in sorted(table):
        for sig in table[name]:
            outputs = ",".join(sig.outputs)
            typer.echo(f"0x{sig.selector.hex()}  {sig.signature} -> ({outputs}) [{sig.state_mutability}]")


@app.command()
def version():
    """Print the installed version."""
    typer.echo(__version__)


if __name__ == "__main__":
    app()
