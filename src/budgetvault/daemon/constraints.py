"""Device condition probes: charging and network connectivity."""

from __future__ import annotations

import logging
import socket

import psutil

from budgetvault.backup.scheduler import Constraints

log = logging.getLogger(__name__)

# Public DNS resolvers; reaching one means the machine is online
_PROBE_HOSTS = (("1.1.1.1", 53), ("8.8.8.8", 53))


class DeviceConstraints:
    """Check job constraints against the current machine."""

    def __init__(self, probe_hosts=_PROBE_HOSTS, timeout: float = 3.0) -> None:
        self._probe_hosts = probe_hosts
        self._timeout = timeout

    def is_charging(self) -> bool:
        """True on AC power. Machines without a battery count as charging."""
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, NotImplementedError, OSError):
            return True
        if battery is None:
            return True
        return battery.power_plugged is not False

    def has_network(self) -> bool:
        for host, port in self._probe_hosts:
            try:
                with socket.create_connection((host, port), timeout=self._timeout):
                    return True
            except OSError:
                continue
        return False

    def check(self, constraints: Constraints) -> tuple[bool, str]:
        """Returns (satisfied, reason)."""
        if constraints.requires_charging and not self.is_charging():
            return False, "waiting for charger"
        if constraints.requires_network and not self.has_network():
            return False, "waiting for network"
        return True, ""
