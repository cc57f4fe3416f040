#!/usr/bin/env python
import asyncio
import argparse
import logging
import os
import sys

from adcommand_kit import ckit_logs
from adcommand_kit.ckit_ask_model import OpenAIChatModel
from adcommand_kit.execution.config import ExecutorConfig
from adcommand_kit.execution.events import format_sse
from adcommand_kit.execution.materials import HttpMaterialsSource
from adcommand_kit.execution.orchestrator import CommandOrchestrator
from adcommand_kit.integrations.facebook.client import HttpToolGateway

logger = logging.getLogger("run_command")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Execute one natural-language Facebook ads command, streaming the step timeline as SSE")
    parser.add_argument("--account", required=True, help="Ad account ID, with or without the act_ prefix")
    parser.add_argument("--business", default=None, help="Business ID passed to the tool gateway")
    parser.add_argument("--tenant", default=os.getenv("ADCOMMAND_TENANT_ID", ""), help="Tenant ID (default: $ADCOMMAND_TENANT_ID)")
    parser.add_argument("--resume", default=None, help="Run ID of an earlier run to continue from")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("command", nargs="+", help="The command, e.g. Create a leads campaign for Romanian men aged 20-45")
    args = parser.parse_args()

    ckit_logs.setup_logger(getattr(logging, args.log_level))
    config = ExecutorConfig.from_env()
    if not config.gateway_url:
        logger.error("ADCOMMAND_GATEWAY_URL is not set")
        return 2

    model = OpenAIChatModel(
        config.model,
        api_key=os.getenv("OPENAI_API_KEY"),
        base_url=os.getenv("OPENAI_BASE_URL") or None,
        timeout=config.model_timeout,
    )
    gateway = HttpToolGateway(config.gateway_url, tenant_id=args.tenant, business_id=args.business, timeout=config.tool_timeout)
    materials = HttpMaterialsSource(config.gateway_url, tenant_id=args.tenant)
    orchestrator = CommandOrchestrator(model, gateway, materials_source=materials, config=config)

    session = orchestrator.launch(" ".join(args.command), args.account, business_id=args.business, tenant_id=args.tenant, resume_from_run_id=args.resume)
    async for event in session.feed.subscribe():
        sys.stdout.write(format_sse(event))
        sys.stdout.flush()
    result = await session.task

    if result is None or not result.success:
        return 1
    return 0


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
