#!/usr/bin/env python3
"""
Example of rescuing tokens from a compromised account with bundle-rescue.
"""
import logging
import threading

from bundle_rescue import ConfigurationError, RescueConfig, RescueError, TransferOrchestrator


def main():
    """
    Demonstrate the library API behind ``rescue run``.

    This example shows how to:
    1. Load configuration from the environment (or a .env file)
    2. Wire the orchestrator from that configuration
    3. Submit the transfer privately and read the report
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        # RPC_URL, FUNDING_PRIVATE_KEY, SOURCE_PRIVATE_KEY and DESTINATION_ADDRESS are required
        config = RescueConfig.from_env(attempts=3)
    except ConfigurationError as e:
        print(f"ERROR: {e}")
        return

    orchestrator = TransferOrchestrator.from_config(config)
    # Another thread (or a signal handler) may set this to stop waiting
    orchestrator.cancel = threading.Event()

    try:
        request = orchestrator.build_request(config)
        print(f"Rescuing {config.amount} tokens ({request.amount} base units) to {request.destination}")
        report = orchestrator.run(request)
    except RescueError as e:
        print(f"Aborted: {e}")
        return
    finally:
        orchestrator.relay.close()

    if report.dry_run_succeeded is False:
        print(f"Dry run failed: {report.dry_run_error}")
    if report.outcome and report.outcome.stats:
        print(f"Relay stats: {report.outcome.stats}")
    print(report.status_line())


if __name__ == "__main__":
    main()
