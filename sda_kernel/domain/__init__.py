"""Pure domain logic for the SDA kernel: clock, DTOs, rates and rules."""

from sda_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
