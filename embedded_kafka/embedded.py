"""
Embedded single-node ZooKeeper + Kafka for integration tests.

    kafka = EmbeddedKafka()
    kafka.start()
    kafka.create_topic("test", 1, 1)
    kafka.send_messages("test", ["a", "b", "c"])
    kafka.shutdown()

start() brings services up in dependency order (ZooKeeper, ZooKeeper
client, broker), waiting for each to report ready. shutdown() tears them
down in reverse order, treats every step as best effort and never raises:
it is also registered as a process exit hook.
"""

import atexit
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from kafka.admin import NewTopic

from embedded_kafka.broker import KafkaBroker, is_valid_broker_id
from embedded_kafka.errors import IllegalStateError, ShutdownFailure
from embedded_kafka.handles import AtomicFlag, ResourceHandle
from embedded_kafka.lifecycle import LifecycleState
from embedded_kafka.retry import eventually
from embedded_kafka.sessions import ConsumerSession, ProducerSession
from embedded_kafka.settings import Settings
from embedded_kafka.utils import delete_recursively
from embedded_kafka.zookeeper import EmbeddedZookeeper
from embedded_kafka.zookeeper_client import ZookeeperClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicDescriptor:
    name: str
    partitions: int
    replication_factor: int

    def __post_init__(self):
        if not self.name:
            raise ValueError("Topic name must not be empty")
        if self.partitions < 1 or self.replication_factor < 1:
            raise ValueError(
                f"Topic {self.name}: partitions and replication factor must be positive, "
                f"got {self.partitions}/{self.replication_factor}"
            )

    def to_new_topic(self) -> NewTopic:
        return NewTopic(name=self.name, num_partitions=self.partitions,
                        replication_factor=self.replication_factor)


class EmbeddedKafka:
    """Owns the ZooKeeper node, its client session, the broker and the producer."""

    def __init__(self, settings: Optional[Settings] = None,
                 zookeeper_factory: Callable[[Settings], Any] = EmbeddedZookeeper,
                 zk_client_factory: Callable[[Settings], Any] = ZookeeperClient.from_settings,
                 broker_factory: Callable[[Settings], Any] = KafkaBroker,
                 producer_factory: Callable[[Dict[str, Any]], Any] = ProducerSession,
                 consumer_factory: Callable[..., Any] = ConsumerSession):
        self.settings = settings if settings is not None else Settings()
        self._zookeeper_factory = zookeeper_factory
        self._zk_client_factory = zk_client_factory
        self._broker_factory = broker_factory
        self._producer_factory = producer_factory
        self._consumer_factory = consumer_factory

        self._state_lock = threading.Lock()
        self._state = LifecycleState.STOPPED
        self._running = AtomicFlag(False)

        self._zookeeper: ResourceHandle = ResourceHandle("zookeeper")
        self._zk_client: ResourceHandle = ResourceHandle("zookeeper client")
        self._server: ResourceHandle = ResourceHandle("kafka server")
        self._producer: ResourceHandle = ResourceHandle("producer")
        self._consumers: List[Any] = []
        self._consumers_lock = threading.Lock()

        # Should an error occur, make sure it shuts down.
        self._exit_hook_registered = False
        if self.settings.register_shutdown_hook:
            atexit.register(self.shutdown)
            self._exit_hook_registered = True

    @property
    def state(self) -> LifecycleState:
        with self._state_lock:
            return self._state

    def _transition(self, expected: LifecycleState, new: LifecycleState) -> bool:
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    def _set_state(self, new: LifecycleState) -> None:
        with self._state_lock:
            self._state = new

    @property
    def is_running(self) -> bool:
        """ZooKeeper answering AND a broker present AND the running flag set."""
        zookeeper = self._zookeeper.get()
        return (
            zookeeper is not None
            and zookeeper.is_running
            and self._server.get() is not None
            and self._running.get()
        )

    @property
    def zookeeper(self):
        return self._zookeeper.get()

    @property
    def zk_client(self):
        return self._zk_client.get()

    @property
    def handles(self) -> Dict[str, Any]:
        """Current contents of every resource handle, None where empty."""
        return {h.name: h.get() for h in (self._zookeeper, self._zk_client, self._server, self._producer)}

    @property
    def server(self):
        """The broker. Starts the harness first if nothing has been started yet."""
        server = self._server.get()
        if server is not None:
            return server

        logger.warning("Attempt to call server before starting EmbeddedKafka instance. Starting automatically...")
        self.start()
        s = self.settings
        eventually(s.server_access_timeout_ms, s.server_access_poll_interval_ms,
                   lambda: self.is_running, "Kafka must be running.")
        server = self._server.get()
        if server is None:
            raise IllegalStateError("Kafka server not initialized.")
        return server

    @property
    def producer(self):
        producer = self._producer.get()
        if producer is not None:
            return producer
        if not self.is_running:
            raise IllegalStateError(
                "Attempt to call producer before starting EmbeddedKafka instance. "
                "Call EmbeddedKafka.start() first."
            )
        session = self._producer_factory(self.settings.producer_config())
        if not self._producer.set_if_empty(session):
            # another thread won the race
            session.close()
        return self._producer.get() or session

    def start(self) -> None:
        """Starts the embedded ZooKeeper server and the Kafka broker, blocking until both are ready."""
        if not self._transition(LifecycleState.STOPPED, LifecycleState.STARTING):
            logger.info(f"EmbeddedKafka is {self.state.value}, ignoring start()")
            return

        try:
            self._start_zookeeper()
            self._start_zk_client()
            self._start_broker()
        except BaseException:
            logger.error("EmbeddedKafka failed to start, releasing what was started")
            for failure in self._release_all():
                logger.warning(f"Cleanup after failed start: {failure}")
            self._running.set(False)
            self._set_state(LifecycleState.STOPPED)
            raise

        self._running.set(True)
        self._set_state(LifecycleState.RUNNING)
        logger.info(f"EmbeddedKafka running, bootstrap servers {self.settings.bootstrap_servers}")

    def _occupy(self, handle: ResourceHandle, value) -> None:
        if not handle.set_if_empty(value):
            raise IllegalStateError(f"{handle.name} already present, shut down before starting again")

    def _start_zookeeper(self) -> None:
        s = self.settings
        zookeeper = self._zookeeper_factory(s)
        self._occupy(self._zookeeper, zookeeper)
        zookeeper.start()
        eventually(s.zookeeper_start_timeout_ms, s.zookeeper_poll_interval_ms,
                   lambda: zookeeper.is_running,
                   "Zookeeper must be started before proceeding with setup.")

    def _start_zk_client(self) -> None:
        client = self._zk_client_factory(self.settings)
        client.start()
        self._occupy(self._zk_client, client)

    def _start_broker(self) -> None:
        s = self.settings
        zk_client = self._zk_client.get()
        logger.info("Starting KafkaServer")
        server = self._broker_factory(s)
        self._occupy(self._server, server)
        server.startup()

        def registered():
            return server.is_ready() and s.broker_id in zk_client.broker_ids()

        eventually(s.broker_start_timeout_ms, s.broker_poll_interval_ms, registered,
                   f"Kafka broker {s.broker_id} did not register with Zookeeper.")

    def create_topic(self, topic: str, num_partitions: Optional[int] = None,
                     replication_factor: Optional[int] = None) -> TopicDescriptor:
        """Creates a topic and waits until every partition has propagated."""
        descriptor = TopicDescriptor(
            topic,
            self.settings.num_partitions if num_partitions is None else num_partitions,
            self.settings.replication_factor if replication_factor is None else replication_factor,
        )
        logger.info(f"Creating topic {descriptor.name} "
                    f"({descriptor.partitions} partitions, replication {descriptor.replication_factor})")
        self.server.admin.create_topics([descriptor.to_new_topic()])
        for partition in range(descriptor.partitions):
            self.await_propagation(descriptor.name, partition)
        return descriptor

    def await_propagation(self, topic: str, partition: int) -> None:
        server = self.server
        zk_client = self._zk_client.get()
        if zk_client is None:
            raise IllegalStateError("Zookeeper client not initialized.")

        def is_propagated():
            if zk_client.partition_state(topic, partition) is None:
                return False
            info = server.partition_metadata(topic, partition)
            if info is None:
                return False
            return is_valid_broker_id(info["leader"]) and bool(info["isr"])

        s = self.settings
        eventually(s.propagation_timeout_ms, s.propagation_poll_interval_ms, is_propagated,
                   f"Partition [{topic}, {partition}] metadata not propagated after timeout")

    def send_messages(self, topic: str, messages) -> int:
        """
        Publish messages to topic. ``messages`` is either an iterable of
        messages or a mapping of message -> number of copies to send.
        """
        if isinstance(messages, Mapping):
            messages = [m for m, freq in messages.items() for _ in range(freq)]
        return self.producer.send(topic, messages)

    def consumer(self, topic: str, group: str, offset_policy: str = "earliest",
                 auto_commit: bool = True, **kwargs) -> ConsumerSession:
        """
        Start a counting consumer against this broker. Sessions still open
        when the harness shuts down are closed with it.
        """
        if not self.is_running:
            raise IllegalStateError("Call EmbeddedKafka.start() before creating consumers.")
        config = self.settings.consumer_config(group, offset_policy=offset_policy, auto_commit=auto_commit)
        session = self._consumer_factory(topic, config, **kwargs)
        with self._consumers_lock:
            self._consumers.append(session)
        return session.start()

    def shutdown(self) -> List[ShutdownFailure]:
        """
        Shuts down the embedded servers. Never raises; failed steps are
        logged and returned.
        """
        failures: List[ShutdownFailure] = []
        try:
            self._running.compare_and_set(True, False)
            self._set_state(LifecycleState.STOPPING)
            if any(v is not None for v in self.handles.values()):
                logger.info("Shutting down Kafka server.")
            failures = self._release_all()
        except Exception as e:
            logger.exception("Error shutting down.")
            failures.append(ShutdownFailure("shutdown", e))
        finally:
            self._running.set(False)
            self._set_state(LifecycleState.STOPPED)
        return failures

    def _release_all(self) -> List[ShutdownFailure]:
        failures: List[ShutdownFailure] = []
        timeout = self.settings.shutdown_timeout_s

        producer = self._producer.clear()
        if producer is not None:
            self._attempt(failures, "producer", producer.close, timeout)

        with self._consumers_lock:
            consumers, self._consumers = self._consumers, []
        for consumer in consumers:
            self._attempt(failures, f"consumer {consumer.topic}", consumer.shutdown, timeout)

        server = self._server.clear()
        if server is not None:
            self._attempt(failures, "kafka server", server.shutdown)
            self._attempt(failures, "kafka server await", server.await_shutdown, timeout)
            for log_dir in server.log_dirs:
                self._attempt(failures, f"kafka log dir {log_dir}", delete_recursively, log_dir)

        zk_client = self._zk_client.clear()
        if zk_client is not None:
            self._attempt(failures, "zookeeper client", zk_client.close)

        zookeeper = self._zookeeper.clear()
        if zookeeper is not None:
            self._attempt(failures, "zookeeper", zookeeper.shutdown)

        return failures

    @staticmethod
    def _attempt(failures: List[ShutdownFailure], step: str, action, *args) -> None:
        try:
            action(*args)
        except Exception as e:
            logger.exception(f"Error shutting down {step}")
            failures.append(ShutdownFailure(step, e))

    def close(self) -> List[ShutdownFailure]:
        """shutdown() and drop the exit hook."""
        failures = self.shutdown()
        if self._exit_hook_registered:
            atexit.unregister(self.shutdown)
            self._exit_hook_registered = False
        return failures

    def __enter__(self) -> "EmbeddedKafka":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self):
        return f"EmbeddedKafka({self.settings.bootstrap_servers}, state={self.state.value})"
