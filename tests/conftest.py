"""
In-memory stand-ins for ZooKeeper, the ZooKeeper client, the broker, the
producer and consumers so the lifecycle logic can be tested without a Kafka
install.

Every double appends to a shared ``events`` list, which lets tests assert
start/stop ordering.
"""

import os

import pytest

from embedded_kafka.embedded import EmbeddedKafka
from embedded_kafka.settings import Settings
from embedded_kafka.zookeeper_client import LeaderAndIsr


class FakeZookeeper:
    def __init__(self, services, settings):
        self.services = services
        self.settings = settings
        self.started = False
        self.stopped = False

    def start(self):
        self.services.events.append("zookeeper.start")
        self.started = True

    @property
    def is_running(self):
        return self.started and not self.stopped and self.services.zookeeper_healthy

    def shutdown(self):
        self.services.events.append("zookeeper.shutdown")
        if self.services.fail_on == "zookeeper.shutdown":
            raise RuntimeError("zookeeper refused to stop")
        self.stopped = True


class FakeZkClient:
    def __init__(self, services, settings):
        self.services = services
        self.settings = settings
        self.connected = False
        self.state_polls = 0

    def start(self):
        self.services.events.append("zk_client.start")
        self.connected = True
        return self

    def broker_ids(self):
        broker = self.services.broker
        if broker is not None and broker.started and self.services.broker_registers:
            return [self.settings.broker_id]
        return []

    def partition_state(self, topic, partition):
        self.state_polls += 1
        if (topic, partition) not in self.services.topics:
            return None
        if self.state_polls < self.services.propagate_after:
            return None
        return LeaderAndIsr(leader=self.settings.broker_id, leader_epoch=0,
                            isr=(self.settings.broker_id,), controller_epoch=1)

    def close(self):
        self.services.events.append("zk_client.close")
        if self.services.fail_on == "zk_client.close":
            raise RuntimeError("session already expired")
        self.connected = False


class FakeAdmin:
    def __init__(self, services):
        self.services = services
        self.created = []

    def create_topics(self, new_topics):
        if self.services.admin_error is not None:
            raise self.services.admin_error
        for topic in new_topics:
            self.created.append(topic)
            for partition in range(topic.num_partitions):
                self.services.topics.add((topic.name, partition))


class FakeBroker:
    def __init__(self, services, settings):
        self.services = services
        self.settings = settings
        self.log_dirs = settings.log_dirs
        self.admin = FakeAdmin(services)
        self.started = False
        self.stopped = False

    def startup(self):
        self.services.events.append("broker.startup")
        for log_dir in self.log_dirs:
            os.makedirs(log_dir, exist_ok=True)
            with open(os.path.join(log_dir, "meta.properties"), "w") as f:
                f.write(f"broker.id={self.settings.broker_id}\n")
        self.started = True

    def is_ready(self):
        return self.started and not self.stopped

    def partition_metadata(self, topic, partition):
        if (topic, partition) not in self.services.topics:
            return None
        leader = self.services.leader if self.services.leader is not None else self.settings.broker_id
        return {"partition": partition, "leader": leader, "isr": list(self.services.isr), "replicas": [0]}

    def shutdown(self):
        self.services.events.append("broker.shutdown")
        if self.services.fail_on == "broker.shutdown":
            raise RuntimeError("controlled shutdown failed")

    def await_shutdown(self, timeout_s=None):
        self.services.events.append("broker.await_shutdown")
        self.stopped = True


class FakeProducer:
    def __init__(self, services, config):
        self.services = services
        self.config = config
        self.sent = []
        self.closed = False
        self.closed_with = None

    def send(self, topic, messages):
        messages = list(messages)
        self.sent.extend((topic, m) for m in messages)
        return len(messages)

    def close(self, timeout=None):
        self.services.events.append("producer.close")
        self.closed_with = timeout
        self.closed = True


class FakeConsumer:
    def __init__(self, services, topic, config, **kwargs):
        self.services = services
        self.topic = topic
        self.config = config
        self.kwargs = kwargs
        self.running = False
        self.shutdowns = 0

    def start(self):
        self.running = True
        return self

    def shutdown(self, timeout_s=10.0):
        self.services.events.append(f"consumer.shutdown {self.topic}")
        self.shutdowns += 1
        self.running = False


class FakeServices:
    """Factories plus the knobs tests turn to simulate slow or failing services."""

    def __init__(self):
        self.events = []
        self.zookeeper_healthy = True
        self.broker_registers = True
        self.propagate_after = 1
        self.leader = None
        self.isr = [0]
        self.topics = set()
        self.admin_error = None
        self.fail_on = None
        self.broker = None
        self.zookeepers = []
        self.producers = []
        self.consumers = []

    def zookeeper(self, settings):
        zk = FakeZookeeper(self, settings)
        self.zookeepers.append(zk)
        return zk

    def zk_client(self, settings):
        return FakeZkClient(self, settings)

    def kafka_broker(self, settings):
        self.broker = FakeBroker(self, settings)
        return self.broker

    def producer(self, config):
        producer = FakeProducer(self, config)
        self.producers.append(producer)
        return producer

    def consumer(self, topic, config, **kwargs):
        consumer = FakeConsumer(self, topic, config, **kwargs)
        self.consumers.append(consumer)
        return consumer


@pytest.fixture
def settings(tmp_path):
    return Settings(
        base_dir=str(tmp_path / "embedded"),
        kafka_home=str(tmp_path / "kafka"),
        register_shutdown_hook=False,
        zookeeper_start_timeout_ms=300,
        zookeeper_poll_interval_ms=10,
        broker_start_timeout_ms=300,
        broker_poll_interval_ms=10,
        server_access_timeout_ms=300,
        server_access_poll_interval_ms=10,
    )


@pytest.fixture
def services():
    return FakeServices()


@pytest.fixture
def kafka(settings, services):
    harness = EmbeddedKafka(
        settings,
        zookeeper_factory=services.zookeeper,
        zk_client_factory=services.zk_client,
        broker_factory=services.kafka_broker,
        producer_factory=services.producer,
        consumer_factory=services.consumer,
    )
    yield harness
    harness.shutdown()
