#!/usr/bin/env python3
"""One-shot approval of an admin access request, for bootstrapping the first admin."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

from school_admin.admins.repository import AdminRequestRepository
from school_admin.admins.workflow import AdminRequestWorkflow
from school_admin.auth.authenticator import Authenticator
from school_admin.core.config import AppConfig
from school_admin.core.errors import WorkflowError
from school_admin.core.logging import setup_logging
from school_admin.core.validators import normalize_email
from school_admin.storage.document_store import DocumentStore


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Approve a submitted admin access request by email."
    )
    parser.add_argument("--email", required=True, help="Email used in the access request.")
    parser.add_argument(
        "--actor",
        default="System",
        help="Identity recorded as approved_by.",
    )
    parser.add_argument(
        "--runtime-dir",
        type=Path,
        default=None,
        help="Override RUNTIME_DIR for the local document store fallback.",
    )
    return parser.parse_args(argv)


async def _approve(config: AppConfig, runtime_dir: Path, email: str, actor: str) -> dict:
    store = DocumentStore(
        runtime_dir,
        mongo_uri=config.storage.mongo_uri,
        mongo_db=config.storage.mongo_db,
    )
    try:
        repository = AdminRequestRepository(store)
        workflow = AdminRequestWorkflow(
            repository, Authenticator(store, config.auth), registration=config.registration
        )
        request = await repository.find_by_email(normalize_email(email))
        if request is None:
            raise LookupError(f"No admin request found for {email}")
        approved = await workflow.approve(request.id, actor)
        return {"id": approved.id, "email": approved.email, "status": approved.status.value}
    finally:
        store.close()


def main(argv: list[str] | None = None) -> int:
    """Run the approval and print a JSON summary."""
    args = _parse_args(argv)
    load_dotenv()
    config = AppConfig.from_env()
    setup_logging(config.logging.level)
    runtime_dir = args.runtime_dir or Path(config.storage.runtime_dir)

    try:
        summary = asyncio.run(_approve(config, runtime_dir, args.email, args.actor))
    except (LookupError, WorkflowError) as exc:
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return 1
    print(json.dumps(summary, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
