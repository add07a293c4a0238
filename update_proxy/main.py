"""Main module entrypoint for one update-job proxy run.

This module validates startup configuration, builds the proxy for the job and
publishes its connection details, or removes a job's leftover resources.
"""

import argparse
import logging
from pathlib import Path

from update_proxy.bootstrap import bootstrap_create_docker_client, bootstrap_create_update_orchestrator
from update_proxy.config import SettingsLoadError, config_load_settings
from update_proxy.logging_config import setup_logging
from update_proxy.proxy import ProxyTeardownError, proxy_cleanup_job_resources

logger = logging.getLogger("update_proxy.main")


def main(argv: list[str] | None = None) -> None:
    """Run selected runtime command with validated startup configuration.

    Args:
        argv: Optional argument list; defaults to the process arguments.

    Returns:
        None: This function does not return a runtime value.

    Raises:
        SystemExit: Raised with status 1 when the job or cleanup fails.
    """

    argument_parser = argparse.ArgumentParser(description="Update job proxy runner")
    argument_parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=("run", "cleanup"),
        help="Runtime command: `run` builds the proxy for one job, `cleanup` removes a job's proxy resources",
        type=str,
    )
    argument_parser.add_argument("--job-id", dest="job_id", type=int, help="Job identifier")
    argument_parser.add_argument("--job-token", dest="job_token", type=str, help="Job-control token")
    argument_parser.add_argument(
        "--credentials-token",
        dest="credentials_token",
        type=str,
        help="Credential retrieval token",
    )
    argument_parser.add_argument(
        "--job-control-api-url",
        dest="job_control_api_url",
        type=str,
        help="Job-control service base URL",
    )
    argument_parser.add_argument(
        "--working-directory",
        dest="working_directory",
        type=Path,
        help="Directory receiving cert.pem and keystore.p12",
    )
    parsed_arguments = argument_parser.parse_args(argv)

    try:
        settings = config_load_settings(
            job_id=parsed_arguments.job_id,
            job_token=parsed_arguments.job_token,
            credentials_token=parsed_arguments.credentials_token,
            job_control_api_url=parsed_arguments.job_control_api_url,
            working_directory=parsed_arguments.working_directory,
        )
    except SettingsLoadError as error:
        setup_logging()
        logger.error("%s", error)
        raise SystemExit(1) from error
    setup_logging(settings.log_level)

    if parsed_arguments.command == "cleanup":
        if settings.job_id is None:
            logger.error("cleanup requires --job-id")
            raise SystemExit(1)
        try:
            removed = proxy_cleanup_job_resources(bootstrap_create_docker_client(settings), settings.job_id)
        except ProxyTeardownError as error:
            logger.error("%s", error)
            raise SystemExit(1) from error
        logger.info("Removed %d proxy resources for job %d", len(removed), settings.job_id)
        return

    orchestrator = bootstrap_create_update_orchestrator(settings=settings)
    execution_result = orchestrator.job_execute()
    if execution_result.outcome.outcome_is_failure():
        raise SystemExit(1)
    if execution_result.outputs is not None:
        for key, value in execution_result.outputs.outputs_as_environment().items():
            print(f"{key}={value}")


if __name__ == "__main__":
    main()
