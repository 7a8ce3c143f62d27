import os
import socketserver
import threading

import pytest

from embedded_kafka.errors import KafkaNotFoundError
from embedded_kafka.lifecycle import LifecycleState
from embedded_kafka.settings import Settings
from embedded_kafka.zookeeper import EmbeddedZookeeper


class FakeProcess:
    instances = []

    def __init__(self, name, command, log_path, env=None):
        self.name = name
        self.command = command
        self.log_path = log_path
        self.env = env
        self.is_alive = False
        self.stopped_with = None
        FakeProcess.instances.append(self)

    def start(self):
        self.is_alive = True

    def stop(self, timeout_s):
        self.stopped_with = timeout_s
        self.is_alive = False
        return 0


class RuokHandler(socketserver.BaseRequestHandler):
    def handle(self):
        if self.request.recv(4) == b"ruok":
            self.request.sendall(b"imok")


@pytest.fixture
def kafka_home(tmp_path):
    bin_dir = tmp_path / "kafka" / "bin"
    bin_dir.mkdir(parents=True)
    for script in ("zookeeper-server-start.sh", "kafka-server-start.sh"):
        (bin_dir / script).write_text("#!/bin/sh\n")
    return str(tmp_path / "kafka")


@pytest.fixture
def ruok_server():
    server = socketserver.TCPServer(("127.0.0.1", 0), RuokHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


@pytest.fixture(autouse=True)
def reset_instances():
    FakeProcess.instances = []


def make_zookeeper(tmp_path, kafka_home, port=2181):
    settings = Settings(base_dir=str(tmp_path / "embedded"), kafka_home=kafka_home,
                        zookeeper_port=port, register_shutdown_hook=False, shutdown_timeout_s=3)
    return EmbeddedZookeeper(settings, process_factory=FakeProcess), settings


def test_start_writes_config_and_launches(tmp_path, kafka_home):
    zookeeper, settings = make_zookeeper(tmp_path, kafka_home)

    zookeeper.start()

    process = FakeProcess.instances[0]
    properties = os.path.join(settings.config_dir, "zookeeper.properties")
    assert process.command == [os.path.join(kafka_home, "bin", "zookeeper-server-start.sh"), properties]
    assert process.log_path == os.path.join(settings.service_log_dir, "zookeeper.log")
    assert f"clientPort={settings.zookeeper_port}\n" in open(properties).read()
    assert os.path.isdir(settings.zookeeper_data_dir)
    assert zookeeper.state is LifecycleState.RUNNING


def test_start_is_guarded(tmp_path, kafka_home):
    zookeeper, _ = make_zookeeper(tmp_path, kafka_home)
    threads = [threading.Thread(target=zookeeper.start) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    zookeeper.start()

    assert len(FakeProcess.instances) == 1


def test_is_running_needs_ruok(tmp_path, kafka_home, ruok_server):
    zookeeper, _ = make_zookeeper(tmp_path, kafka_home, port=ruok_server)
    assert zookeeper.is_running is False

    zookeeper.start()
    assert zookeeper.is_running is True

    FakeProcess.instances[0].is_alive = False
    assert zookeeper.is_running is False


def test_is_running_false_when_nothing_listens(tmp_path, kafka_home):
    zookeeper, _ = make_zookeeper(tmp_path, kafka_home, port=1)
    zookeeper.start()
    assert zookeeper.is_running is False


def test_shutdown_stops_and_deletes_data(tmp_path, kafka_home):
    zookeeper, settings = make_zookeeper(tmp_path, kafka_home)
    zookeeper.start()

    zookeeper.shutdown()
    zookeeper.shutdown()

    assert FakeProcess.instances[0].stopped_with == 3
    assert not os.path.exists(settings.zookeeper_data_dir)
    assert zookeeper.state is LifecycleState.STOPPED


def test_shutdown_without_start(tmp_path, kafka_home):
    zookeeper, _ = make_zookeeper(tmp_path, kafka_home)
    zookeeper.shutdown()
    assert zookeeper.state is LifecycleState.STOPPED


def test_missing_distribution(tmp_path):
    zookeeper, _ = make_zookeeper(tmp_path, str(tmp_path / "nowhere"))
    with pytest.raises(KafkaNotFoundError):
        zookeeper.start()
    assert zookeeper.state is LifecycleState.STOPPED
