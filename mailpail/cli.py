import argparse
import asyncio
import logging
import sys

from mailpail.adapters.git.bitbucket import BitbucketPlatform
from mailpail.adapters.mailbox.maildir import DEFAULT_STAGING_MAX_AGE, Maildir
from mailpail.adapters.storage.sql import SQLStateIndex
from mailpail.core.config import MailpailConfig, load_config
from mailpail.core.exceptions import (
    ConfigError,
    MailboxError,
    SourceError,
    StateIndexError,
)
from mailpail.core.formatter import ArticleFormatter
from mailpail.core.reconciler import Reconciler, summarize_failures
from mailpail.core.utils.logging_filters import configure_logging, install_token_redaction

logger = logging.getLogger("mailpail")

EXIT_OK = 0
EXIT_FAILURE = 1


def _open_state_index(config: MailpailConfig) -> SQLStateIndex:
    return SQLStateIndex(config.state_url)


def cmd_sync(config: MailpailConfig, args: argparse.Namespace) -> int:
    config.validate()
    token = config.api.resolve_token()
    install_token_redaction([token])

    store = Maildir(config.maildir_path)
    index = _open_state_index(config)
    try:
        source = BitbucketPlatform(config.api.endpoint, token, source=config.source)
        reconciler = Reconciler(
            source,
            store,
            index,
            ArticleFormatter(config.message_id_domain),
            bootstrap_from_mailbox=not args.no_bootstrap,
        )
        report = asyncio.run(reconciler.run())
    finally:
        index.close()

    for line in summarize_failures(report.items):
        logger.warning("Not delivered: %s", line)
    print(report.summary())
    return EXIT_OK


def cmd_clean(config: MailpailConfig, args: argparse.Namespace) -> int:
    store = Maildir(config.maildir_path)
    removed = store.clean_staging(max_age=args.max_age_hours * 3600)
    print(f"removed {removed} staging files")
    return EXIT_OK


def cmd_state(config: MailpailConfig, args: argparse.Namespace) -> int:
    index = _open_state_index(config)
    try:
        for key, watermark in index.records():
            print(f"{key} {watermark}")
    finally:
        index.close()
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailpail", description="Deliver Bitbucket pull requests into a maildir"
    )
    parser.add_argument("--config", help="Path to a YAML/JSON config file")
    subparsers = parser.add_subparsers(dest="command")

    sync_parser = subparsers.add_parser("sync", help="Reconcile upstream items into the maildir")
    sync_parser.add_argument(
        "--no-bootstrap",
        action="store_true",
        help="Replace unindexed maildir files instead of seeding the index from their headers",
    )
    sync_parser.set_defaults(handler=cmd_sync)

    clean_parser = subparsers.add_parser("clean", help="Remove stray staging files")
    clean_parser.add_argument(
        "--max-age-hours",
        type=float,
        default=DEFAULT_STAGING_MAX_AGE / 3600,
        help="Remove unpublished staging files older than this",
    )
    clean_parser.set_defaults(handler=cmd_clean)

    state_parser = subparsers.add_parser("state", help="Print delivered keys and watermarks")
    state_parser.set_defaults(handler=cmd_state)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "handler", None):
        parser.print_help()
        return EXIT_FAILURE

    try:
        config = load_config(args.config)
        configure_logging(config.log_level)
        return args.handler(config, args)
    except (ConfigError, MailboxError, StateIndexError, SourceError) as exc:
        logger.error("%s", exc)
        print(f"mailpail: {exc}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
