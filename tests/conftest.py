"""
Pytest configuration and shared fixtures for the pump agent test suite.

Every fake here stands in for an I/O boundary (clock, network interfaces,
broker client, meter, flash) so the control logic runs without hardware.
"""
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import httpx
import pytest

from pump_agent.application.device_controller import DeviceController
from pump_agent.application.firmware_update_service import FirmwareUpdateService
from pump_agent.core.connectivity import ConnectivityConfig, ConnectivityManager
from pump_agent.core.device_context import DeviceContext
from pump_agent.core.mqtt_client import HandshakeState
from pump_agent.core.mqtt_topics import MqttTopics
from pump_agent.domain.actuator.actuator import ControlParameters
from pump_agent.domain.models.broker_credentials import BrokerCredentials
from pump_agent.domain.network.network_link import LinkKind
from pump_agent.domain.sensors.readings import PhaseReadings
from pump_agent.infrastructure.config.settings_repository import SettingsRepository
from pump_agent.infrastructure.io.board_layout import BoardLayout
from pump_agent.infrastructure.io.io_driver import MemoryIODriver
from pump_agent.infrastructure.io.output_register import OutputRegister
from pump_agent.infrastructure.io.panel_inputs import PanelInputs
from pump_agent.infrastructure.network.transport import LeaseEvent
from pump_agent.infrastructure.sensors.sensor_feed import SensorFeed, SensorReadError
from pump_agent.infrastructure.storage.persistent_store import PersistentStore

DEVICE_ID = "FL-AABBCC"

# DI2 is the normally-closed STOP contact: bit set means "not pressed".
IDLE_INPUTS = 0x02


class FakeClock:
    def __init__(self, start: float = 1000.0, wall: Optional[datetime] = None):
        self.now = start
        self.wall = wall

    def monotonic(self) -> float:
        return self.now

    def wall_time(self) -> Optional[datetime]:
        return self.wall

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    def __init__(self, kind: LinkKind, up: bool = True, address: str = "10.0.0.2"):
        self.kind = kind
        self.up = up
        self.address = address
        self.lease_events = deque()
        self.connect_calls = 0
        self.begin_calls = 0
        self.teardowns = 0
        # Time a real blocking bring-up would have spent waiting.
        self.blocked_s = 0.0

    def connect(self, timeout_s: float) -> bool:
        self.connect_calls += 1
        if not self.up:
            self.blocked_s += timeout_s
        return self.up

    def begin_connect(self) -> None:
        self.begin_calls += 1

    def poll_connect(self) -> bool:
        return self.up

    def link_up(self) -> bool:
        return self.up

    def maintain_lease(self) -> LeaseEvent:
        if self.lease_events:
            return self.lease_events.popleft()
        return LeaseEvent.NOTHING

    def teardown(self) -> None:
        self.teardowns += 1

    def bind_address(self) -> Optional[str]:
        return self.address if self.up else None


class FakeBrokerClient:
    def __init__(self, outcome: HandshakeState = HandshakeState.CONNECTED):
        self.on_message = None
        self.outcome = outcome
        self.start_ok = True
        self.connect_args = None
        self.subscriptions: List[str] = []
        self.published: List[tuple] = []
        self.publish_ok = True
        self.loop_ok = True
        self.disconnected = False
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def begin_connect(self, host, port, **kwargs) -> bool:
        self.connect_args = {"host": host, "port": port, **kwargs}
        return self.start_ok

    def poll_connect(self, wait_s: float = 0.0) -> HandshakeState:
        if self.outcome == HandshakeState.CONNECTED:
            self._connected = True
        return self.outcome

    def subscribe(self, topic: str) -> bool:
        self.subscriptions.append(topic)
        return True

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> bool:
        self.published.append((topic, payload, retain))
        return self.publish_ok

    def loop(self) -> bool:
        return self.loop_ok and self._connected

    def disconnect(self) -> None:
        self.disconnected = True
        self._connected = False

    def deliver(self, topic: str, payload: bytes) -> None:
        self.on_message(topic, payload)


class FakeClientFactory:
    def __init__(self):
        self.clients: List[FakeBrokerClient] = []
        self.outcomes = deque()

    def __call__(self) -> FakeBrokerClient:
        outcome = self.outcomes.popleft() if self.outcomes else HandshakeState.CONNECTED
        client = FakeBrokerClient(outcome)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeBrokerClient:
        return self.clients[-1]


class FakeSensorSource:
    def __init__(self, readings: Optional[PhaseReadings] = None):
        self.readings = readings or PhaseReadings(230.0, 230.0, 230.0, 0.0, 0.0, 0.0)
        self.fail = False

    def read(self) -> PhaseReadings:
        if self.fail:
            raise SensorReadError("no response")
        return self.readings


class MemoryFlashSink:
    def __init__(self):
        self.data = bytearray()
        self.expected = 0
        self.begun = False
        self.aborted = False
        self.finalized = False
        self.short_write = False
        self.accept_begin = True

    def begin(self, total_bytes: int) -> bool:
        self.expected = total_bytes
        self.begun = self.accept_begin
        return self.accept_begin

    def write(self, chunk: bytes) -> int:
        if self.short_write:
            chunk = chunk[:-1]
        self.data.extend(chunk)
        return len(chunk)

    def abort(self) -> None:
        self.aborted = True
        self.data.clear()

    def finalize(self) -> bool:
        self.finalized = len(self.data) == self.expected
        return self.finalized


class RecordingFaultObserver:
    def __init__(self):
        self.faults = []
        self.cleared = []

    def on_fault(self, actuator, kind) -> None:
        self.faults.append((actuator.actuator_id, kind))

    def on_fault_cleared(self, actuator) -> None:
        self.cleared.append(actuator.actuator_id)


def mock_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> Callable[[], httpx.Client]:
    return lambda: httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def topics():
    return MqttTopics.for_device(DEVICE_ID)


@pytest.fixture
def credentials():
    return BrokerCredentials(host="broker.example", port=8883, username="pump", password="secret", use_tls=True)


@pytest.fixture
def wired():
    return FakeTransport(LinkKind.WIRED)


@pytest.fixture
def wireless():
    return FakeTransport(LinkKind.WIRELESS, address="192.168.4.20")


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def connectivity(wired, wireless, client_factory, credentials, topics, clock):
    return ConnectivityManager(
        wired,
        wireless,
        client_factory,
        credentials,
        topics,
        clock,
        ConnectivityConfig(),
    )


@pytest.fixture
def store(tmp_path):
    return PersistentStore(tmp_path / "store.json")


@dataclass
class Rig:
    controller: DeviceController
    connectivity: ConnectivityManager
    client_factory: FakeClientFactory
    wired: FakeTransport
    wireless: FakeTransport
    driver: MemoryIODriver
    sensors: FakeSensorSource
    sink: MemoryFlashSink
    store: PersistentStore
    observer: RecordingFaultObserver
    clock: FakeClock

    def connect(self) -> FakeBrokerClient:
        self.connectivity.select_transport()
        assert self.connectivity.connect_broker()
        self.controller.boot()
        return self.client_factory.last

    def send(self, payload: str) -> None:
        client = self.client_factory.last
        client.deliver(self.connectivity.topics.command, payload.encode("utf-8"))

    def published_on(self, topic: str) -> List[str]:
        return [payload for client in self.client_factory.clients for (t, payload, _r) in client.published if t == topic]


@pytest.fixture
def rig_factory(tmp_path, clock, credentials):
    def build(
        pump_count: int = 1,
        *,
        firmware_handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        inputs: int = IDLE_INPUTS,
    ) -> Rig:
        store = PersistentStore(tmp_path / "store.json")
        repository = SettingsRepository(store, multi_pump=pump_count > 1)
        context = DeviceContext(
            device_id=DEVICE_ID,
            topics=MqttTopics.for_device(DEVICE_ID),
            firmware_name="Pump Agent",
            firmware_version="2.10.0",
            hardware_type="PUMP_AGENT",
            boot_time=clock.monotonic(),
        )

        wired = FakeTransport(LinkKind.WIRED)
        wireless = FakeTransport(LinkKind.WIRELESS, address="192.168.4.20")
        factory = FakeClientFactory()
        connectivity = ConnectivityManager(wired, wireless, factory, credentials, context.topics, clock)

        layout = BoardLayout.for_pumps(pump_count)
        driver = MemoryIODriver(inputs=inputs)
        sensors = FakeSensorSource()
        sink = MemoryFlashSink()
        observer = RecordingFaultObserver()

        handler = firmware_handler or (lambda request: httpx.Response(404))
        firmware = FirmwareUpdateService(sink, chunk_size=100, client_factory=mock_http_client(handler))

        controller = DeviceController(
            context=context,
            clock=clock,
            connectivity=connectivity,
            repository=repository,
            sensor_feed=SensorFeed(sensors, max_failures=5),
            panel=PanelInputs(
                driver,
                feedback_bits=layout.feedback_bits,
                has_buttons=layout.has_buttons,
                debounce_s=0.05,
            ),
            outputs=OutputRegister(
                driver,
                contactor_channels=layout.contactor_channels,
                alarm_channels=layout.alarm_channels,
            ),
            firmware=firmware,
            parameters=ControlParameters(),
            pump_count=pump_count,
            telemetry_interval_s=2.0,
            fault_observer=observer,
        )

        return Rig(
            controller=controller,
            connectivity=connectivity,
            client_factory=factory,
            wired=wired,
            wireless=wireless,
            driver=driver,
            sensors=sensors,
            sink=sink,
            store=store,
            observer=observer,
            clock=clock,
        )

    return build
