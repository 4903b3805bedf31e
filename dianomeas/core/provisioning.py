"""
Device provisioning and teardown.

State flow for a device managed by this tool:

    absent -> creating -> active -> deleting -> deleted

Setup is create-or-reuse followed by a bounded poll until the device is
active. Teardown is idempotent. Transport errors are never retried; the
poll loop only retries the "not yet active" condition.
"""

import logging
import random
import time
from typing import Callable, Optional

from .capacity import CapacityLocator
from .errors import PollTimeoutError
from dianomeas.provider.models import Device, DeviceCreateRequest, DeviceState, Host

logger = logging.getLogger(__name__)


class NameGenerator:
    """Seedable generator of device hostnames.

    Collisions are possible but unlikely; names are not meant to be secret.
    """

    def __init__(self, seed: Optional[int] = None, upper_bound: int = 1000):
        self._rng = random.Random(seed)
        self.upper_bound = upper_bound

    def __call__(self, prefix: str) -> str:
        return f"{prefix}-{self._rng.randrange(self.upper_bound)}"


class ProvisioningController:
    """Creates, waits for, and tears down devices in a single project."""

    def __init__(
        self,
        client,
        locator: CapacityLocator,
        project_id: str,
        plan: str,
        operating_system: str,
        poll_interval: float = 60.0,
        poll_timeout: float = 1800.0,
        name_generator: Optional[Callable[[str], str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the controller.

        Args:
            client: Device service (list_devices, create_device, get_device, delete_device)
            locator: Capacity locator used before creating a device
            project_id: Provider project identifier
            plan: Plan slug to provision
            operating_system: OS image slug to install
            poll_interval: Seconds between state checks
            poll_timeout: Ceiling in seconds for the whole poll loop
            name_generator: Callable mapping a prefix to a hostname
            sleep: Sleep function, injectable for tests

        Raises:
            ValueError: If the polling parameters are not positive
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if poll_timeout <= 0:
            raise ValueError("poll_timeout must be > 0")

        self.client = client
        self.locator = locator
        self.project_id = project_id
        self.plan = plan
        self.operating_system = operating_system
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.name_generator = name_generator or NameGenerator()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        """Number of state checks the poll loop performs at most."""
        return max(1, int(self.poll_timeout // self.poll_interval))

    def setup(self, name_prefix: str) -> Host:
        """Create or reuse a device and wait until it is active.

        Args:
            name_prefix: Hostname prefix; a random suffix is appended

        Returns:
            Active device snapshot

        Raises:
            NotFoundError: If no capacity is available for the plan
            PollTimeoutError: If the device is not active before the deadline
            TransportError: On any API failure
        """
        hostname = self.name_generator(name_prefix)

        start = time.monotonic()
        logger.info("Setting up %s", hostname)
        try:
            device = self.find_device(hostname)
            if device is None:
                device = self._create(hostname)
            else:
                logger.info("Reusing existing device %s (%s)", device.name, device.id)
            return self.wait_for_active(device)
        finally:
            elapsed = (time.monotonic() - start) / 60
            logger.info("%s setup completed in %.2f minutes", hostname, elapsed)

    def teardown(self, name: str) -> None:
        """Delete the device with the given hostname, if it exists.

        Raises:
            TransportError: If listing or deleting fails
        """
        device = self.find_device(name)
        if device is None:
            logger.info("Host %s already removed", name)
            return

        logger.info("Deleting host %s (%s)", device.name, device.id)
        self.client.delete_device(device.id)

    def find_device(self, name: str) -> Optional[Device]:
        """Return the project device with this exact hostname, or None."""
        for device in self.client.list_devices(self.project_id):
            if device.name == name:
                return device
        return None

    def wait_for_active(self, device: Device) -> Device:
        """Poll the device until it is active.

        Checks immediately, then once per poll_interval, for at most
        max_attempts checks.

        Raises:
            PollTimeoutError: If the attempts run out first
            TransportError: If a status check fails (aborts immediately)
        """
        attempts = self.max_attempts
        for attempt in range(1, attempts + 1):
            current = self.client.get_device(device.id)
            logger.info(
                "Host %s (%s) current state is %s",
                current.name, current.id, current.raw_state or current.state.value,
            )
            if current.state == DeviceState.ACTIVE:
                return current
            if attempt < attempts:
                self._sleep(self.poll_interval)

        raise PollTimeoutError(
            f"Device {device.name} ({device.id}) not active after "
            f"{attempts} checks every {self.poll_interval:g}s",
            attempts=attempts,
        )

    def _create(self, hostname: str) -> Device:
        metro = self.locator.check_availability_for(self.plan)
        logger.info(
            "Creating new instance %s (%s, %s) in metro %s",
            hostname, self.plan, self.operating_system, metro,
        )
        return self.client.create_device(DeviceCreateRequest(
            hostname=hostname,
            metro=metro,
            plan=self.plan,
            operating_system=self.operating_system,
            project_id=self.project_id,
        ))
