"""Main entry point for the AI detection bot."""

import argparse
import asyncio
import logging
import sys

from .bot import Bot
from .config import Config, load_config
from .services.database import DatabaseService, init_db_service
from .services.webhook_handler import WebhookHandler
from .webhook_server import create_webhook_app


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


async def create_webhook_handler(config: Config, bot: Bot) -> WebhookHandler:
    """Build the delivery handler, scoped to the bot's own account when known."""
    for_user_id = await bot.twitter.get_bot_user_id()
    if for_user_id is None:
        logging.getLogger(__name__).warning(
            "Bot user id unknown, webhook deliveries will not be filtered by account"
        )
    return WebhookHandler(
        bot=bot,
        consumer_secret=config.twitter.api_key_secret.get_secret_value(),
        for_user_id=for_user_id,
    )


async def run_webhook_server(args, logger, config: Config, bot: Bot) -> None:
    """Serve the webhook and lookup API until stopped."""
    import uvicorn

    port = args.webhook_port or config.server.port
    logger.info("Starting webhook server on %s:%d...", config.server.host, port)

    webhook_handler = await create_webhook_handler(config, bot)
    app = create_webhook_app(config, webhook_handler, bot.detection_service)

    uvicorn_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=port,
        log_level="info" if args.verbose else "warning",
    )
    server = uvicorn.Server(uvicorn_config)
    await server.serve()


async def run_polling(args, logger, bot: Bot) -> None:
    if args.once:
        logger.info("Running single poll tick...")
        dispatched = await bot.poll_tick()
        await bot.wait_for_background_tasks()
        logger.info("Processed %d mention(s)", dispatched)
    else:
        await bot.run()


async def run_combined(args, logger, config: Config, bot: Bot) -> None:
    """Run both polling bot and webhook server concurrently."""
    logger.info("Starting combined mode (polling + webhook)")

    polling_task = asyncio.create_task(run_polling(args, logger, bot))
    webhook_task = asyncio.create_task(run_webhook_server(args, logger, config, bot))

    # Wait for either task to complete (or fail)
    done, pending = await asyncio.wait(
        [polling_task, webhook_task],
        return_when=asyncio.FIRST_COMPLETED,
    )

    for task in pending:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    for task in done:
        task.result()


async def async_main(args, logger) -> int:
    """Load config, open the database and run the selected mode."""
    db_service: DatabaseService | None = None
    bot: Bot | None = None
    try:
        logger.info("Loading configuration from %s", args.config)
        config = load_config(args.config)

        logger.info("Initializing database at %s", config.bot.database_path)
        db_service = await init_db_service(config.bot.database_path)

        bot = Bot(config, db_service)

        if args.mode == "webhook":
            await run_webhook_server(args, logger, config, bot)
        elif args.mode == "combined":
            await run_combined(args, logger, config, bot)
        else:
            await run_polling(args, logger, bot)

        return 0

    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except ImportError as e:
        logger.error("Missing dependency: %s", e)
        return 1
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
    finally:
        if bot is not None:
            await bot.aclose()
        if db_service is not None:
            await db_service.close()
            logger.info("Database connection closed")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Twitter bot that checks mentioned images for AI generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Run with default config.yaml (polling mode)
  %(prog)s -c myconfig.yaml             # Run with custom config
  %(prog)s -v                           # Run with verbose logging
  %(prog)s --once                       # Run one poll tick and exit
  %(prog)s --mode webhook               # Run webhook server only
  %(prog)s --mode combined              # Run both polling + webhook
  %(prog)s --mode combined --webhook-port 9000  # Combined mode with custom port
        """,
    )

    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one poll tick and exit (don't poll continuously)",
    )
    parser.add_argument(
        "--mode",
        choices=["polling", "webhook", "combined"],
        default="polling",
        help="Run mode: polling (default), webhook only, or combined",
    )
    parser.add_argument(
        "--webhook-port",
        type=int,
        default=None,
        help="Port for webhook server (default: server.port from config)",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        return asyncio.run(async_main(args, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
