"""Single Kafka broker process registered with the embedded ZooKeeper."""

import logging
import os
import threading
from typing import Any, Dict, Optional, Tuple

from kafka import KafkaAdminClient
from kafka.errors import KafkaError

from embedded_kafka.errors import HarnessError
from embedded_kafka.lifecycle import LifecycleState
from embedded_kafka.process import ServiceProcess
from embedded_kafka.utils import find_script, port_open, write_properties

logger = logging.getLogger(__name__)


def is_valid_broker_id(broker_id: Optional[int]) -> bool:
    return broker_id is not None and broker_id >= 0


class KafkaBroker:
    """
    Wraps kafka-server-start with a server.properties derived from Settings.

    shutdown() sends SIGTERM, which makes the broker run its controlled
    shutdown (controller hand-off, leader migration) before exiting;
    await_shutdown() then waits and SIGKILLs on timeout.
    """

    def __init__(self, settings, process_factory=ServiceProcess, admin_factory=KafkaAdminClient):
        self.settings = settings
        self.config: Dict[str, Any] = settings.kafka_config()
        self._process_factory = process_factory
        self._admin_factory = admin_factory
        self._admin = None
        self._admin_lock = threading.Lock()
        self._process = None
        self._state = LifecycleState.STOPPED

    @property
    def broker_id(self) -> int:
        return int(self.config["broker.id"])

    @property
    def log_dirs(self) -> Tuple[str, ...]:
        return tuple(d for d in str(self.config["log.dirs"]).split(",") if d)

    @property
    def state(self) -> LifecycleState:
        return self._state

    def startup(self) -> None:
        if self._process is not None:
            raise HarnessError(f"Broker {self.broker_id} already started")
        self._state = LifecycleState.STARTING
        for log_dir in self.log_dirs:
            os.makedirs(log_dir, exist_ok=True)
        properties = write_properties(
            os.path.join(self.settings.config_dir, "server.properties"), self.config
        )
        script = find_script(self.settings.kafka_home, "kafka-server-start")
        process = self._process_factory(
            "kafka",
            [script, properties],
            os.path.join(self.settings.service_log_dir, "kafka.log"),
            env={"LOG_DIR": self.settings.service_log_dir},
        )
        try:
            process.start()
        except Exception:
            self._state = LifecycleState.STOPPED
            raise
        self._process = process

    def is_ready(self) -> bool:
        """Listener is accepting connections. Raises if the process died."""
        process = self._process
        if process is None:
            return False
        if not process.is_alive:
            raise HarnessError(
                f"Kafka broker exited with code {process.returncode}, see {process.log_path}"
            )
        ready = port_open(self.settings.host, self.settings.kafka_port)
        if ready:
            self._state = LifecycleState.RUNNING
        return ready

    @property
    def admin(self) -> KafkaAdminClient:
        with self._admin_lock:
            if self._admin is None:
                self._admin = self._admin_factory(
                    bootstrap_servers=self.settings.bootstrap_servers,
                    client_id=f"embedded-kafka-admin-{self.broker_id}",
                )
            return self._admin

    def partition_metadata(self, topic: str, partition: int) -> Optional[Dict[str, Any]]:
        """
        Leader and ISR for one partition as the broker reports them, or None
        while the broker does not know the partition yet.
        """
        try:
            topics = self.admin.describe_topics([topic])
        except KafkaError as e:
            logger.debug(f"Metadata for {topic} not available yet: {e}")
            return None

        # Older kafka-python reports "topic"/"partition"/"leader"/"isr", newer
        # releases use the protocol field names "name"/"partition_index"/...
        for topic_meta in topics:
            name = topic_meta.get("topic", topic_meta.get("name"))
            if name != topic or topic_meta.get("error_code", 0) != 0:
                continue
            for p in topic_meta.get("partitions", []):
                index = p.get("partition", p.get("partition_index"))
                if index != partition or p.get("error_code", 0) != 0:
                    continue
                return {
                    "partition": index,
                    "leader": p.get("leader", p.get("leader_id")),
                    "isr": list(p.get("isr", p.get("isr_nodes")) or []),
                    "replicas": list(p.get("replicas", p.get("replica_nodes")) or []),
                }
        return None

    def shutdown(self) -> None:
        self._state = LifecycleState.STOPPING
        with self._admin_lock:
            admin, self._admin = self._admin, None
        try:
            if admin is not None:
                admin.close()
        finally:
            if self._process is not None:
                logger.info(f"Shutting down Kafka broker {self.broker_id}")
                self._process.terminate()

    def await_shutdown(self, timeout_s: Optional[float] = None) -> None:
        process, self._process = self._process, None
        try:
            if process is not None:
                process.wait(self.settings.shutdown_timeout_s if timeout_s is None else timeout_s)
        finally:
            self._state = LifecycleState.STOPPED
