"""
Unit tests for device provisioning.

Tests create-or-reuse, the bounded poll loop and idempotent teardown.
"""

import re
from unittest.mock import Mock, call

import pytest

from dianomeas.core.errors import NotFoundError, PollTimeoutError, TransportError
from dianomeas.core.provisioning import NameGenerator, ProvisioningController
from dianomeas.provider.models import Device, DeviceCreateRequest, DeviceState, Host

HOSTNAME = "ipi-42"


def device(state: DeviceState = DeviceState.CREATING, name: str = HOSTNAME) -> Device:
    return Device(
        id="dev-1",
        name=name,
        state=state,
        address="147.75.0.1",
        raw_state=state.value,
    )


class TestNameGenerator:
    """Test hostname generation."""

    def test_format(self):
        """Names are prefix, dash and a suffix below the bound."""
        name = NameGenerator(seed=1)("ipi")
        assert re.fullmatch(r"ipi-\d{1,3}", name)

    def test_seeded_generators_are_deterministic(self):
        """Same seed, same sequence."""
        first, second = NameGenerator(seed=99), NameGenerator(seed=99)
        assert [first("x") for _ in range(5)] == [second("x") for _ in range(5)]


class TestSetup:
    """Test ProvisioningController.setup."""

    def setup_method(self):
        """Set up a controller with mocked collaborators."""
        self.client = Mock()
        self.locator = Mock()
        self.sleep = Mock()
        self.controller = ProvisioningController(
            client=self.client,
            locator=self.locator,
            project_id="proj-1",
            plan="n2.xlarge.x86",
            operating_system="rocky_8",
            poll_interval=10,
            poll_timeout=30,
            name_generator=lambda prefix: HOSTNAME,
            sleep=self.sleep,
        )

    def test_creates_device_when_absent(self):
        """A missing device is created in the metro returned by the locator."""
        self.client.list_devices.return_value = []
        self.locator.check_availability_for.return_value = "dc"
        self.client.create_device.return_value = device()
        self.client.get_device.return_value = device(DeviceState.ACTIVE)

        result = self.controller.setup("ipi")

        self.locator.check_availability_for.assert_called_once_with("n2.xlarge.x86")
        self.client.create_device.assert_called_once_with(DeviceCreateRequest(
            hostname=HOSTNAME,
            metro="dc",
            plan="n2.xlarge.x86",
            operating_system="rocky_8",
            project_id="proj-1",
        ))
        assert result.state == DeviceState.ACTIVE
        assert result.address == "147.75.0.1"

    def test_setup_returns_host(self):
        """The result exposes the id, name and address of the host."""
        self.client.list_devices.return_value = [device(DeviceState.ACTIVE)]
        self.client.get_device.return_value = device(DeviceState.ACTIVE)

        result = self.controller.setup("ipi")

        assert isinstance(result, Host)
        assert (result.id, result.name, result.address) == ("dev-1", HOSTNAME, "147.75.0.1")

    def test_existing_device_skips_creation(self):
        """A device with the target name is reused and only polled."""
        self.client.list_devices.return_value = [device(name="other"), device()]
        self.client.get_device.return_value = device(DeviceState.ACTIVE)

        result = self.controller.setup("ipi")

        self.client.create_device.assert_not_called()
        self.locator.check_availability_for.assert_not_called()
        self.client.get_device.assert_called_once_with("dev-1")
        assert result.state == DeviceState.ACTIVE

    def test_polls_until_active(self):
        """Each not-yet-active check is followed by one interval sleep."""
        self.client.list_devices.return_value = [device()]
        self.client.get_device.side_effect = [
            device(DeviceState.CREATING),
            device(DeviceState.CREATING),
            device(DeviceState.ACTIVE),
        ]

        result = self.controller.setup("ipi")

        assert result.state == DeviceState.ACTIVE
        assert self.sleep.call_args_list == [call(10), call(10)]

    def test_timeout_within_budget(self):
        """The loop gives up after timeout // interval checks."""
        self.client.list_devices.return_value = [device()]
        self.client.get_device.return_value = device(DeviceState.CREATING)

        with pytest.raises(PollTimeoutError) as exc_info:
            self.controller.setup("ipi")

        assert exc_info.value.attempts == 3
        assert self.client.get_device.call_count == 3
        slept = sum(c.args[0] for c in self.sleep.call_args_list)
        assert slept <= self.controller.poll_interval * self.controller.max_attempts

    def test_timeout_is_a_builtin_timeout(self):
        assert issubclass(PollTimeoutError, TimeoutError)

    def test_transport_error_aborts_poll(self):
        """A failing status check ends the loop immediately."""
        self.client.list_devices.return_value = [device()]
        self.client.get_device.side_effect = TransportError("503", status_code=503)

        with pytest.raises(TransportError):
            self.controller.setup("ipi")

        assert self.client.get_device.call_count == 1
        self.sleep.assert_not_called()

    def test_no_capacity_propagates(self):
        """NotFoundError from the locator aborts before creating."""
        self.client.list_devices.return_value = []
        self.locator.check_availability_for.side_effect = NotFoundError("none")

        with pytest.raises(NotFoundError):
            self.controller.setup("ipi")

        self.client.create_device.assert_not_called()

    def test_max_attempts_at_least_one(self):
        """A timeout shorter than the interval still checks once."""
        controller = ProvisioningController(
            self.client, self.locator, "proj-1", "plan", "os",
            poll_interval=60, poll_timeout=10, sleep=self.sleep,
        )
        assert controller.max_attempts == 1

    def test_invalid_poll_parameters_raise(self):
        with pytest.raises(ValueError, match="poll_interval"):
            ProvisioningController(self.client, self.locator, "p", "plan", "os", poll_interval=0)
        with pytest.raises(ValueError, match="poll_timeout"):
            ProvisioningController(self.client, self.locator, "p", "plan", "os", poll_timeout=0)


class TestTeardown:
    """Test ProvisioningController.teardown."""

    def setup_method(self):
        self.client = Mock()
        self.controller = ProvisioningController(
            client=self.client,
            locator=Mock(),
            project_id="proj-1",
            plan="n2.xlarge.x86",
            operating_system="rocky_8",
        )

    def test_deletes_existing_device(self):
        self.client.list_devices.return_value = [device(DeviceState.ACTIVE)]

        self.controller.teardown(HOSTNAME)

        self.client.list_devices.assert_called_once_with("proj-1")
        self.client.delete_device.assert_called_once_with("dev-1")

    def test_absent_device_is_a_no_op(self):
        self.client.list_devices.return_value = []

        self.controller.teardown(HOSTNAME)

        self.client.delete_device.assert_not_called()

    def test_idempotent_when_called_twice(self):
        """The second teardown finds nothing and performs no delete."""
        self.client.list_devices.side_effect = [[device(DeviceState.ACTIVE)], []]

        self.controller.teardown(HOSTNAME)
        self.controller.teardown(HOSTNAME)

        assert self.client.delete_device.call_count == 1

    def test_delete_failure_propagates(self):
        self.client.list_devices.return_value = [device(DeviceState.ACTIVE)]
        self.client.delete_device.side_effect = TransportError("forbidden", status_code=403)

        with pytest.raises(TransportError):
            self.controller.teardown(HOSTNAME)
