"""GPIO lines for the ultrasonic sensor.

Real pins go through the pigpio daemon. SimulatedSonar drives a
trigger/echo pair from a SimulatedClock for tests and mock runs.
"""

import logging
from typing import Optional

import pigpio

from ..core.clock import SimulatedClock
from ..core.errors import GpioError

logger = logging.getLogger(__name__)


def open_pigpio(host: Optional[str] = None) -> "pigpio.pi":
    """Connect to the pigpio daemon.

    Args:
        host: Daemon host, or None for the local default.

    Returns:
        Connected pigpio handle.

    Raises:
        GpioError: If the daemon is not reachable.
    """
    pi = pigpio.pi() if host is None else pigpio.pi(host)
    if not pi.connected:
        raise GpioError("pigpio not connected. Start pigpiod: sudo systemctl start pigpiod")
    return pi


class PigpioOutputPin:
    """Output line driven through pigpio. Starts low."""

    def __init__(self, pi: "pigpio.pi", gpio: int):
        """Configure pin as output.

        Args:
            pi: Connected pigpio handle.
            gpio: BCM pin number.

        Raises:
            GpioError: If the pin cannot be configured.
        """
        self._pi = pi
        self._gpio = gpio
        try:
            pi.set_mode(gpio, pigpio.OUTPUT)
            pi.write(gpio, 0)
        except pigpio.error as e:
            raise GpioError(f"Failed to configure output GPIO {gpio}: {e}") from e

    def set(self, level: bool) -> None:
        """Drive the line high or low."""
        try:
            self._pi.write(self._gpio, 1 if level else 0)
        except pigpio.error as e:
            raise GpioError(f"Failed to write GPIO {self._gpio}: {e}") from e


class PigpioInputPin:
    """Input line read through pigpio, pulled down."""

    def __init__(self, pi: "pigpio.pi", gpio: int):
        """Configure pin as input with pull-down.

        Args:
            pi: Connected pigpio handle.
            gpio: BCM pin number.

        Raises:
            GpioError: If the pin cannot be configured.
        """
        self._pi = pi
        self._gpio = gpio
        try:
            pi.set_mode(gpio, pigpio.INPUT)
            pi.set_pull_up_down(gpio, pigpio.PUD_DOWN)
        except pigpio.error as e:
            raise GpioError(f"Failed to configure input GPIO {gpio}: {e}") from e

    def is_high(self) -> bool:
        """Whether the line reads high."""
        try:
            return self._pi.read(self._gpio) == 1
        except pigpio.error as e:
            raise GpioError(f"Failed to read GPIO {self._gpio}: {e}") from e


class _SimulatedTrigger:
    """Trigger line that arms the simulated echo on its falling edge."""

    def __init__(self, sonar: "SimulatedSonar"):
        self._sonar = sonar
        self.level = False
        self.pulses = 0

    def set(self, level: bool) -> None:
        if self.level and not level:
            self.pulses += 1
            self._sonar._arm()
        self.level = level


class _SimulatedEcho:
    """Echo line whose level follows the simulated clock."""

    def __init__(self, sonar: "SimulatedSonar"):
        self._sonar = sonar

    def is_high(self) -> bool:
        return self._sonar._echo_level()


class SimulatedSonar:
    """Simulated HC-SR04 style sensor.

    After each trigger pulse the echo rises ``echo_delay_us`` later and
    stays high for ``echo_width_us``. The width is timed from the first
    poll that observes the rising edge, so the measured width equals the
    configured one regardless of polling phase.
    """

    def __init__(
        self,
        clock: SimulatedClock,
        echo_delay_us: int = 450,
        echo_width_us: Optional[int] = None,
        stuck_high: bool = False,
    ):
        """Initialize simulated sensor.

        Args:
            clock: Clock shared with the code under test.
            echo_delay_us: Time from trigger to echo rise.
            echo_width_us: Echo pulse width, or None for no echo.
            stuck_high: Hold the echo line high permanently.
        """
        self.clock = clock
        self.echo_delay_us = echo_delay_us
        self.echo_width_us = echo_width_us
        self.stuck_high = stuck_high

        self.trigger = _SimulatedTrigger(self)
        self.echo = _SimulatedEcho(self)

        self._armed_at: Optional[int] = None
        self._rise_seen_at: Optional[int] = None

    def set_distance_cm(self, centimeters: int, roundtrip_divisor_us: int = 58) -> None:
        """Place an object at the given distance."""
        self.echo_width_us = centimeters * roundtrip_divisor_us

    def remove_object(self) -> None:
        """No echo will be returned."""
        self.echo_width_us = None

    def _arm(self) -> None:
        # Triggers during an echo are ignored, as on the real sensor
        if self._rise_seen_at is not None and self._echo_level():
            return
        self._armed_at = self.clock.peek_us()
        self._rise_seen_at = None

    def _echo_level(self) -> bool:
        if self.stuck_high:
            return True
        if self._armed_at is None or self.echo_width_us is None:
            return False

        now = self.clock.peek_us()
        if self._rise_seen_at is None:
            if now >= self._armed_at + self.echo_delay_us:
                self._rise_seen_at = now
                return True
            return False

        if now < self._rise_seen_at + self.echo_width_us:
            return True
        self._armed_at = None
        return False
