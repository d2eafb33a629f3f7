import argparse
import json
import logging
import sys
from pathlib import Path

from alert_window import AlertWindow
from constants import APP_DATA_DIR, CAPTURE_INTERVAL_SECS, DATABASE_FILENAME
from db import ScreenshotStore
from focus_schema import DecisionOutcome, DistractionAlert
from focusguard import FocusGuard, record_alert_feedback
from monitor import ScreentapMonitor
from settings_store import (
    SUPPORTED_BACKENDS,
    EngineConfig,
    FocusGuardConfigError,
    get_focusguard_root_dir,
    save_engine_config,
)

logger = logging.getLogger("screentap")


def build_focusguard(app_data_dir: Path):
    """FocusGuard for this data dir, or None when the plugin is inactive or misconfigured."""
    try:
        return FocusGuard.from_app_data_dir(app_data_dir)
    except FocusGuardConfigError as exc:
        logger.error("FocusGuard disabled: %s", exc)
        return None


def cmd_run(args: argparse.Namespace) -> int:
    app_data_dir = Path(args.data_dir)
    store = ScreenshotStore(app_data_dir, DATABASE_FILENAME)
    focusguard = build_focusguard(app_data_dir)

    alert_sink = None
    if focusguard:
        focusguard_root = get_focusguard_root_dir(app_data_dir)

        def on_feedback(alert: DistractionAlert, liked: bool) -> None:
            record_alert_feedback(
                store,
                focusguard_root,
                liked=liked,
                screenshot_id=alert.screenshot_id,
                png_image_path=alert.png_image_path,
                job_title=alert.job_title,
                job_role=alert.job_role,
            )

        alert_sink = AlertWindow(on_feedback=on_feedback)

    def on_outcome(outcome: DecisionOutcome) -> None:
        logger.debug("FocusGuard outcome: %s", json.dumps(outcome.to_dict()))

    monitor = ScreentapMonitor(
        store,
        focusguard=focusguard,
        alert_sink=alert_sink,
        capture_interval=args.interval,
        on_outcome=on_outcome,
    )
    try:
        monitor.run_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting.")
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    store = ScreenshotStore(Path(args.data_dir), DATABASE_FILENAME)
    records = store.search_screenshots_ocr(args.term, limit=args.limit)
    if args.json:
        print(json.dumps([record.to_dict() for record in records], indent=2))
        return 0
    for record in records:
        snippet = " ".join(record.ocr_text.split())[:100]
        print(f"{record.id}\t{record.timestamp}\t{record.file_path}\t{snippet}")
    if not records:
        print("No screenshots matched.")
    return 0


def cmd_init_config(args: argparse.Namespace) -> int:
    config = EngineConfig(
        job_title=args.job_title,
        job_role=args.job_role,
        llava_backend=args.backend,
        productivity_score_threshold=5,
        duration_between_alerts_secs=300,
        image_resize_scale=0.5,
    )
    path = save_engine_config(Path(args.data_dir), config)
    print(f"Wrote FocusGuard config to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Screentap: searchable screen timeline with FocusGuard.")
    parser.add_argument("--data-dir", default=str(APP_DATA_DIR), help="Where screenshots, the DB and plugin config live")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Capture screenshots in a loop")
    run.add_argument("--interval", type=float, default=CAPTURE_INTERVAL_SECS, help="Seconds between captures")
    run.set_defaults(func=cmd_run)

    search = sub.add_parser("search", help="Full-text search over captured OCR text")
    search.add_argument("term", nargs="?", default="", help="Search term (empty lists the latest screenshots)")
    search.add_argument("--limit", type=int, default=20)
    search.add_argument("--json", action="store_true", help="Print full records, images included, as JSON")
    search.set_defaults(func=cmd_search)

    init = sub.add_parser("init-config", help="Write a starter FocusGuard config.json")
    init.add_argument("--job-title", required=True)
    init.add_argument("--job-role", required=True)
    init.add_argument("--backend", default="ollama", choices=SUPPORTED_BACKENDS)
    init.set_defaults(func=cmd_init_config)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
