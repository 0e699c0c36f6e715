import argparse
import logging

from careslot.core import config
from careslot.database import SessionLocal, create_schema, engine
from careslot.services.container import build_services


def _setup_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CareSlot: release reservation holds whose time-box elapsed")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args(argv)

    _setup_logging()
    config.validate_runtime_config()
    create_schema(engine)
    sweeper = build_services(SessionLocal).sweeper

    if args.once:
        released = sweeper.sweep_with_retry()
        logging.getLogger(__name__).info("Single sweep released %s hold(s)", released)
        return 0

    try:
        sweeper.run_forever()
    except KeyboardInterrupt:
        sweeper.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
