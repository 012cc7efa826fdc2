#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from cveval.evaluation_nodes import create_orchestrator_from_env  # noqa: E402
from cveval.main import queue_backend  # noqa: E402
from cveval.seed import seed_reference_documents  # noqa: E402
from cveval.store import store  # noqa: E402
from cveval.worker_runtime import create_worker_runtime_from_env  # noqa: E402

logger = logging.getLogger("cveval.run_worker")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the evaluation worker loop for queued jobs.")
    parser.add_argument(
        "--iterations",
        type=int,
        default=0,
        help="Stop after N queue polls (0 means run until SIGINT/SIGTERM).",
    )
    parser.add_argument(
        "--seed-samples",
        action="store_true",
        help="Also seed the sample job descriptions when the reference corpus is empty.",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    orchestrator = create_orchestrator_from_env(store=store)
    seed_reference_documents(
        store=store,
        llm=orchestrator.llm,
        include_samples=args.seed_samples,
        retry=orchestrator.retry,
    )
    runtime = create_worker_runtime_from_env(store=store, queue_backend=queue_backend, orchestrator=orchestrator)

    def _handle_signal(signum, _frame) -> None:
        logger.info("shutdown_requested signal=%s", signum)
        runtime.stop(timeout=0)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    stats = runtime.run_forever(stop_after_iterations=args.iterations if args.iterations > 0 else None)
    print(json.dumps({"success": True, "stats": stats}, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
