"""
ECG System - Main Entry Point
Orchestrates one capture run:
  1. Load settings and connect to the session store
  2. Connect to an ECG device (BLE, or the simulator)
  3. Record one session (countdown, recording, auto-stop)
  4. Save the session
  5. Optionally request an AI summary of all stored sessions
"""

import sys
import asyncio
import argparse
import logging

from db.db_access import SessionStore
from ecg_system.errors import DeviceError, ECGSystemError
from ecg_system.gateways.summary import SummaryGateway
from ecg_system.pipeline import CapturePipeline
from ecg_system.sensors.ecg.config import ECGConfig
from ecg_system.settings import AppSettings

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

logger = logging.getLogger('ecg')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record one ECG session.")
    parser.add_argument(
        "--simulate", action="store_true",
        help="Use the synthetic ECG source instead of a Bluetooth sensor.",
    )
    parser.add_argument(
        "--device", metavar="ADDRESS",
        help="Device address to connect to (default: first ECG device found).",
    )
    parser.add_argument(
        "--duration", type=int, default=None,
        help="Recording length in seconds (clamped to 10-600, default 30).",
    )
    parser.add_argument(
        "--calibration", action="store_true",
        help="Short calibration recording with the default calibration duration.",
    )
    parser.add_argument(
        "--partial-save", action="store_true",
        help="Also save sessions aborted by a disconnect.",
    )
    parser.add_argument(
        "--summarize", metavar="LANG", nargs="?", const="en",
        help="Request an AI summary of all stored sessions (language code, default en).",
    )
    parser.add_argument(
        "--log-file", metavar="PATH",
        help="Also write a debug log to this file.",
    )
    return parser


def build_config(args) -> ECGConfig:
    if args.calibration:
        config = ECGConfig.for_calibration()
    else:
        config = ECGConfig.for_session()
    if args.simulate:
        config = ECGConfig.for_simulation(config.mode)
    config.persist_partial_sessions = args.partial_save
    return config


def configure_logging(settings: AppSettings, log_file=None):
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO), format=LOG_FORMAT)
    if log_file:
        fh = logging.FileHandler(log_file)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(fh)


async def run(args, settings: AppSettings) -> int:
    try:
        store = SessionStore.from_settings(settings)
    except Exception as e:
        logger.error(f"Cannot connect to database: {e}")
        print("\n✗ Could not connect to the session database.")
        return 1

    gateway = SummaryGateway.from_settings(settings) if settings.enable_ai_analysis else None
    pipeline = CapturePipeline(
        settings=settings,
        config=build_config(args),
        store=store,
        gateway=gateway,
        simulate=args.simulate,
    )

    try:
        device = await pipeline.connect(args.device)
        logger.info(f"✓ Using {device.display_name}")

        session = await pipeline.record(args.duration)
        if session is None:
            print("\n⚠ Recording did not complete.")
            return 1

        metrics = session.metrics
        print(f"\n✓ Recorded {session.sample_count} samples ({session.recorded_seconds:.0f}s)")
        if metrics:
            print(f"  Heart rate : {metrics.avg_bpm:.0f} bpm ({metrics.min_bpm:.0f}-{metrics.max_bpm:.0f})")
            print(f"  Rhythm     : {metrics.rhythm}")
            print(f"  Assessment : {metrics.assessment}")
            print(f"  Quality    : {metrics.quality}")

        if args.summarize:
            summary = await pipeline.summarize(args.summarize)
            print("\nSummary" + (" (default)" if summary.is_fallback else ""))
            print(f"  {summary.summary}")
            print(f"  {summary.observations}")
            for suggestion in summary.suggestions:
                print(f"  - {suggestion}")
        return 0

    except DeviceError as e:
        logger.error(f"Device error: {e}")
        print(f"\n✗ {e.message}")
        return 1

    except ECGSystemError as e:
        logger.error(f"Capture failed: {e}", exc_info=True)
        return 1

    finally:
        logger.debug(f"Pipeline status: {pipeline.get_status()}")
        await pipeline.close()


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = AppSettings.from_env()
    configure_logging(settings, args.log_file)

    print()
    print("=" * 50)
    print("  ECG System")
    print("=" * 50)
    print()

    if not settings.validate():
        logger.error("Invalid configuration, see warnings above")
        sys.exit(1)
    logger.info(f"Settings: {settings.to_dict()}")

    try:
        code = asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        code = 130
    sys.exit(code)


if __name__ == '__main__':
    main()
