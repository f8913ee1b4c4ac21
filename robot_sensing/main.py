#!/usr/bin/env python3
"""Main entry point for heading estimation and ranging.

Runs the heading EKF on magnetometer samples, takes periodic range
measurements and outputs JSON-formatted state lines to stdout.
"""

import argparse
import json
import logging
import signal
import sys
import time
from typing import Optional, Tuple

import numpy as np
import yaml

from .communication import (
    Lsm303agr,
    MockMagnetometer,
    PigpioInputPin,
    PigpioOutputPin,
    SimulatedSonar,
    open_pigpio,
)
from .core import (
    Config,
    MonotonicClock,
    SensorIoError,
    SimulatedClock,
    load_config,
)
from .core.types import HeadingEstimate, RangeResult, range_result_to_dict
from .fusion import HeadingTracker
from .monitoring import PerformanceMonitor
from .ranging import RangeFinder

logger = logging.getLogger(__name__)

SHUTDOWN_REQUESTED = False

MOCK_MIN_DISTANCE_CM = 20
MOCK_DISTANCE_SPAN_CM = 280


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global SHUTDOWN_REQUESTED
    SHUTDOWN_REQUESTED = True
    logger.info("Shutdown requested")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


class _MockRanging:
    """Range finder on a simulated sensor with a slowly moving target."""

    def __init__(self, config: Config):
        self._sonar = SimulatedSonar(SimulatedClock())
        self._finder = RangeFinder(
            self._sonar.trigger, self._sonar.echo, config.ranging, self._sonar.clock
        )
        self._divisor = config.ranging.roundtrip_divisor_us
        self._count = 0

    def measure_distance(self) -> RangeResult:
        distance = MOCK_MIN_DISTANCE_CM + (self._count * 7) % MOCK_DISTANCE_SPAN_CM
        self._count += 1
        self._sonar.set_distance_cm(distance, self._divisor)
        result = self._finder.measure_distance()
        # Let the simulated echo clear before the next ping
        self._sonar.clock.delay_us(self._finder.max_blocking_us)
        return result


def build_sensors(config: Config, use_mock: bool) -> Tuple[object, object, object]:
    """Create the magnetometer, range finder and GPIO handle.

    Args:
        config: System configuration.
        use_mock: If True, use simulated hardware.

    Returns:
        (magnetometer, range_finder, pi) where pi is None for mocks.

    Raises:
        SensorIoError: If the hardware cannot be opened.
    """
    if use_mock:
        magnetometer = MockMagnetometer(
            config.calibration,
            sample_period_s=1.0 / config.monitoring.target_hz,
            noise_nt=50.0,
        )
        return magnetometer, _MockRanging(config), None

    magnetometer = Lsm303agr.open(config.bus)
    try:
        pi = open_pigpio()
        trigger = PigpioOutputPin(pi, config.ranging.trigger_gpio)
        echo = PigpioInputPin(pi, config.ranging.echo_gpio)
    except SensorIoError:
        magnetometer.close()
        raise
    finder = RangeFinder(trigger, echo, config.ranging, MonotonicClock())
    return magnetometer, finder, pi


def format_output(
    estimate: HeadingEstimate,
    tracker: HeadingTracker,
    last_range: Optional[RangeResult],
) -> str:
    """Build one JSON output line."""
    output = estimate.to_dict()
    field = tracker.last_field
    if field is not None:
        output.update({"mx": field.x, "mz": field.z})
    health = tracker.health
    output.update({
        "heading_sigma_deg": float(np.rad2deg(health.heading_uncertainty)),
        "stale": health.is_stale,
    })
    if last_range is not None:
        output.update(range_result_to_dict(last_range))
    return json.dumps(output)


def run_sensing_loop(
    config: Config,
    use_mock: bool = False,
) -> int:
    """Run the main sensing loop.

    Args:
        config: System configuration.
        use_mock: If True, use simulated hardware.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    try:
        magnetometer, finder, pi = build_sensors(config, use_mock)
    except SensorIoError as e:
        logger.error("Failed to initialize sensors: %s", e)
        return 1

    clock = MonotonicClock()
    tracker = HeadingTracker(magnetometer, config, clock)
    monitor = PerformanceMonitor(config)

    emit_interval = 1.0 / config.loop.emit_rate_hz
    last_emit_time = 0.0
    last_range_time = 0.0
    last_range: Optional[RangeResult] = None
    estimate: Optional[HeadingEstimate] = None

    try:
        logger.info("Starting heading estimation")
        estimate = tracker.initialize()

        while not SHUTDOWN_REQUESTED:
            now = clock.now_s()

            if now - last_range_time >= config.loop.range_interval_s:
                last_range = finder.measure_distance()
                monitor.record_range(last_range)
                last_range_time = now

            monitor.start_iteration()
            updated = tracker.poll()
            if updated is None:
                time.sleep(config.loop.idle_sleep_s)
                continue

            estimate = updated
            sample_time = clock.now_s()
            monitor.end_iteration(sample_time, tracker.estimator.last_outcome)

            if tracker.estimator.consecutive_skips > config.monitoring.target_hz:
                logger.warning("Heading updates skipped for %d cycles",
                               tracker.estimator.consecutive_skips)

            if sample_time - last_emit_time >= emit_interval:
                print(format_output(estimate, tracker, last_range), flush=True)
                last_emit_time = sample_time

    except SensorIoError as e:
        logger.error("Sensor I/O error: %s", e)
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")

    finally:
        magnetometer.close()
        if pi is not None:
            pi.stop()
        stats = monitor.get_stats()

        logger.info("Final statistics:")
        logger.info("  Iterations: %d", stats.total_iterations)
        logger.info("  Effective rate: %.1f Hz", stats.effective_rate_hz)
        logger.info("  Samples read: %d", tracker.stats.samples_read)
        logger.info("  Updates skipped: %d", tracker.stats.updates_skipped)
        logger.info("  Ranges ok/busy/timeout: %d/%d/%d",
                    stats.ranges_ok, stats.ranges_busy, stats.ranges_timed_out)
        if estimate is not None:
            logger.info("  Final heading: %.1f deg", estimate.heading_deg)

    return 0


def main() -> int:
    """Application entry point.

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(
        description="Magnetometer heading EKF with ultrasonic ranging"
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use simulated sensors for testing",
    )
    args = parser.parse_args()

    setup_logging(verbose=args.verbose)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except (ValueError, TypeError, yaml.YAMLError) as e:
        logger.error("Failed to load configuration: %s", e)
        return 1

    return run_sensing_loop(config, use_mock=args.mock)


if __name__ == "__main__":
    sys.exit(main())
