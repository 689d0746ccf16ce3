"""Command-line entry point.

Run an import
-------------
    python -m nutrition_import data/FoodData_Central_sr_legacy_food_csv_2018-04

Press Ctrl-C once to cancel cleanly: the stage in progress rolls back its
open transaction and earlier stages keep their data.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from nutrition_import.config import settings

EXIT_CODES = {"completed": 0, "failed": 1, "cancelled": 130}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import a nutrition dataset")
    parser.add_argument(
        "dataset_root",
        nargs="?",
        default=settings.dataset_root,
        help="Directory containing food.csv, nutrient.csv, …",
    )
    parser.add_argument(
        "--no-embeddings",
        action="store_true",
        help="Skip the embedding stage",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log = logging.getLogger("nutrition_import")

    from nutrition_import.pipeline.importer import build_importer

    cancel_event = threading.Event()

    def _on_sigint(signum, frame) -> None:  # noqa: ANN001
        log.warning("Interrupt received; cancelling after the current row")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        importer = build_importer(settings, logger=log)
        report = importer.run(args.dataset_root, cancel_event, embed=not args.no_embeddings)
    finally:
        signal.signal(signal.SIGINT, previous)

    print(report.model_dump_json(indent=2))
    return EXIT_CODES[report.status]


if __name__ == "__main__":
    sys.exit(main())
