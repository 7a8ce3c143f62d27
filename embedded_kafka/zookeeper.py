"""Single ZooKeeper node owned by the harness."""

import logging
import os
import threading

from embedded_kafka.lifecycle import LifecycleState
from embedded_kafka.process import ServiceProcess
from embedded_kafka.utils import delete_recursively, find_script, four_letter_word, write_properties

logger = logging.getLogger(__name__)


class EmbeddedZookeeper:
    """
    ZooKeeper bound to settings.zookeeper_port with its data under
    settings.zookeeper_data_dir. The data directory is deleted on shutdown.
    """

    def __init__(self, settings, process_factory=ServiceProcess):
        self.settings = settings
        self.data_dir = settings.zookeeper_data_dir
        self._process_factory = process_factory
        self._lock = threading.Lock()
        self._process = None
        self._state = LifecycleState.STOPPED

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def connect_string(self) -> str:
        return self.settings.zookeeper_connect

    def start(self) -> None:
        with self._lock:
            if self._state is not LifecycleState.STOPPED:
                logger.debug(f"Zookeeper already {self._state.value}, ignoring start()")
                return
            self._state = LifecycleState.STARTING
            try:
                os.makedirs(self.data_dir, exist_ok=True)
                properties = write_properties(
                    os.path.join(self.settings.config_dir, "zookeeper.properties"),
                    self.settings.zookeeper_config(),
                )
                script = find_script(self.settings.kafka_home, "zookeeper-server-start")
                process = self._process_factory(
                    "zookeeper",
                    [script, properties],
                    os.path.join(self.settings.service_log_dir, "zookeeper.log"),
                    env={"LOG_DIR": self.settings.service_log_dir},
                )
                process.start()
            except Exception:
                self._state = LifecycleState.STOPPED
                raise
            self._process = process
            self._state = LifecycleState.RUNNING
            logger.info(f"Zookeeper starting on {self.connect_string}")

    @property
    def is_running(self) -> bool:
        """True once the client port answers 'ruok' with 'imok'."""
        process = self._process
        if process is None or not process.is_alive:
            return False
        return four_letter_word(self.settings.host, self.settings.zookeeper_port, "ruok") == "imok"

    def shutdown(self) -> None:
        with self._lock:
            process, self._process = self._process, None
            if process is None and self._state is LifecycleState.STOPPED:
                return
            self._state = LifecycleState.STOPPING
            try:
                if process is not None:
                    process.stop(self.settings.shutdown_timeout_s)
                delete_recursively(self.data_dir)
            finally:
                self._state = LifecycleState.STOPPED
            logger.info("Zookeeper stopped")
