"""
main.py — Shard Auditor Entrypoint
=====================================
Command line interface for running audits and reading results.

    shard-auditor run    -c config.json -d datadir [--nodes-file F] [NODE_ID ...]
    shard-auditor report -d datadir [NODE_ID]
    shard-auditor serve  -d datadir
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Iterable, List, Optional

from shard_auditor.config import Settings, settings
from shard_auditor.core.errors import LedgerReadError
from shard_auditor.core.hashing import digest_size
from shard_auditor.core.models import is_node_id
from shard_auditor.services.auditor import AuditOrchestrator, AuditSummary
from shard_auditor.services.index_client import ShardIndexClient, start_offset
from shard_auditor.services.ledger import LedgerStore
from shard_auditor.services.retrieval import RetrievalClient
from shard_auditor.services.verifier import ShardVerifier

logger = logging.getLogger("shard-auditor")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def read_node_ids(lines: Iterable[str]) -> List[str]:
    """
    Parse node ids, one per line. Blank lines and '#' comments are ignored.

    Raises:
        ValueError: If a line is not a valid node id.
    """
    node_ids = []
    for number, line in enumerate(lines, start=1):
        value = line.split("#", 1)[0].strip()
        if not value:
            continue
        if not is_node_id(value):
            raise ValueError(f"Line {number}: invalid node id {value!r}")
        node_ids.append(value.lower())
    return node_ids


def build_orchestrator(cfg: Settings, transport=None) -> AuditOrchestrator:
    """Wire the ledger, clients and worker described by cfg."""
    retrieval = RetrievalClient(
        cfg.BRIDGE_URL,
        negotiation_timeout=cfg.NEGOTIATION_TIMEOUT,
        auth=cfg.bridge_auth,
        transport=transport,
    )
    return AuditOrchestrator(
        ledger=LedgerStore(cfg.ledger_dir),
        index=ShardIndexClient(
            cfg.INDEX_URL,
            timeout=cfg.INDEX_TIMEOUT,
            page_size=cfg.INDEX_PAGE_SIZE,
            transport=transport,
        ),
        retrieval=retrieval,
        verifier=ShardVerifier(
            cfg.shard_dir,
            retrieval,
            transfer_timeout=cfg.TRANSFER_TIMEOUT,
            algorithm=cfg.DIGEST_ALGORITHM,
        ),
        node_concurrency=cfg.NODE_CONCURRENCY,
        shard_concurrency=cfg.SHARD_CONCURRENCY,
        start_hash=start_offset(cfg.SAMPLE_MODE, digest_size(cfg.DIGEST_ALGORITHM)),
    )


async def run_audit(cfg: Settings, node_ids: List[str], transport=None) -> AuditSummary:
    orchestrator = build_orchestrator(cfg, transport=transport)
    logger.info("Index:    %s", cfg.INDEX_URL)
    logger.info("Bridge:   %s", cfg.BRIDGE_URL)
    logger.info("Data dir: %s", cfg.DATA_DIR)
    logger.info("Sampling: %s", cfg.SAMPLE_MODE)
    if orchestrator.start_hash:
        logger.info("Starting at shard hash %s", orchestrator.start_hash[:16])
    return await orchestrator.run(node_ids)


def _cmd_run(args) -> int:
    if args.node_ids:
        node_ids = read_node_ids(args.node_ids)
    elif args.nodes_file:
        with open(args.nodes_file, encoding="utf-8") as fh:
            node_ids = read_node_ids(fh)
    else:
        node_ids = read_node_ids(sys.stdin)

    if not node_ids:
        logger.warning("No node ids given, nothing to audit")
    summary = asyncio.run(run_audit(settings, node_ids))
    print(json.dumps(summary.to_dict(), indent=2))
    return 0


def _cmd_report(args) -> int:
    ledger = LedgerStore(settings.ledger_dir)
    node_ids = [args.node_id.lower()] if args.node_id else ledger.node_ids()
    report = {}
    for node_id in node_ids:
        try:
            report[node_id] = ledger.get(node_id)
        except LedgerReadError as e:
            logger.error("%s", e)
            report[node_id] = None
    print(json.dumps(report, indent=2, sort_keys=True))
    return 0


def _cmd_serve(args) -> int:
    import uvicorn

    from shard_auditor.api.app import app

    uvicorn.run(app, host=settings.API_HOST, port=args.port or settings.API_PORT)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shard-auditor",
        description="Audit shards held by storage nodes against their digests.",
    )
    parser.add_argument("-c", "--config", help="path to the config file")
    parser.add_argument("-d", "--datadir", help="path to the data directory")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="audit nodes (ids from args, --nodes-file or stdin)")
    run.add_argument("node_ids", nargs="*", metavar="NODE_ID")
    run.add_argument("--nodes-file", help="file with one node id per line")
    run.set_defaults(handler=_cmd_run)

    report = sub.add_parser("report", help="print ledger entries as JSON")
    report.add_argument("node_id", nargs="?", metavar="NODE_ID")
    report.set_defaults(handler=_cmd_report)

    serve = sub.add_parser("serve", help="serve the read-only report API")
    serve.add_argument("--port", type=int, help="port (default from config)")
    serve.set_defaults(handler=_cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings.apply(args.config, args.datadir)
    except (OSError, ValueError) as e:
        parser.error(f"invalid configuration: {e}")
    configure_logging(settings.LOG_LEVEL)

    try:
        return args.handler(args)
    except ValueError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
