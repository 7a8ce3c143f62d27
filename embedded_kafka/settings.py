"""
Immutable configuration shared by the ZooKeeper, broker and client components.

Settings are created once per harness and read by everything else.
Every value can be overridden explicitly; Settings.from_env() additionally reads
EMBEDDED_KAFKA_* environment variables and KAFKA_HOME.
"""

import os
import tempfile
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from embedded_kafka.serialization import Serialization

DEFAULT_HOST = "127.0.0.1"
DEFAULT_KAFKA_PORT = 9092
DEFAULT_ZOOKEEPER_PORT = 2181

DefaultKafkaConnect = f"{DEFAULT_HOST}:{DEFAULT_KAFKA_PORT}"
DefaultZookeeperConnect = f"{DEFAULT_HOST}:{DEFAULT_ZOOKEEPER_PORT}"

# Old high-level consumer names for auto.offset.reset
_OFFSET_POLICIES = {
    "earliest": "earliest",
    "latest": "latest",
    "smallest": "earliest",
    "largest": "latest",
}

_ENV_OVERRIDES = {
    "EMBEDDED_KAFKA_BROKER_ID": ("broker_id", int),
    "EMBEDDED_KAFKA_HOST": ("host", str),
    "EMBEDDED_KAFKA_PORT": ("kafka_port", int),
    "EMBEDDED_KAFKA_ZOOKEEPER_PORT": ("zookeeper_port", int),
    "EMBEDDED_KAFKA_BASE_DIR": ("base_dir", str),
}


def _default_base_dir() -> str:
    return os.path.join(tempfile.gettempdir(), f"embedded-kafka-{os.getpid()}")


def _default_kafka_home() -> Optional[str]:
    return os.environ.get("KAFKA_HOME") or None


@dataclass(frozen=True)
class Settings:
    """Ports, directories, timeouts and client defaults for one harness."""
    broker_id: int = 0
    host: str = DEFAULT_HOST
    kafka_port: int = DEFAULT_KAFKA_PORT
    zookeeper_port: int = DEFAULT_ZOOKEEPER_PORT
    base_dir: str = field(default_factory=_default_base_dir)
    kafka_home: Optional[str] = field(default_factory=_default_kafka_home)

    zk_session_timeout_ms: int = 6000
    zk_connection_timeout_ms: int = 8000

    num_partitions: int = 1
    replication_factor: int = 1

    zookeeper_start_timeout_ms: int = 5000
    zookeeper_poll_interval_ms: int = 500
    broker_start_timeout_ms: int = 10000
    broker_poll_interval_ms: int = 500
    propagation_timeout_ms: int = 10000
    propagation_poll_interval_ms: int = 100
    server_access_timeout_ms: int = 5000
    server_access_poll_interval_ms: int = 500
    shutdown_timeout_s: float = 30.0

    key_serialization: Serialization = Serialization.STRING
    value_serialization: Serialization = Serialization.STRING

    register_shutdown_hook: bool = True
    extra_broker_config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("kafka_port", "zookeeper_port"):
            port = getattr(self, name)
            if not 0 < port < 65536:
                raise ValueError(f"{name} must be in 1..65535, got {port}")
        if self.broker_id < 0:
            raise ValueError(f"broker_id must be >= 0, got {self.broker_id}")
        if self.num_partitions < 1 or self.replication_factor < 1:
            raise ValueError("num_partitions and replication_factor must be positive")
        for name in ("zk_session_timeout_ms", "zk_connection_timeout_ms",
                     "zookeeper_start_timeout_ms", "zookeeper_poll_interval_ms",
                     "broker_start_timeout_ms", "broker_poll_interval_ms",
                     "propagation_timeout_ms", "propagation_poll_interval_ms",
                     "server_access_timeout_ms", "server_access_poll_interval_ms",
                     "shutdown_timeout_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        object.__setattr__(self, "key_serialization", Serialization.parse(self.key_serialization))
        object.__setattr__(self, "value_serialization", Serialization.parse(self.value_serialization))
        object.__setattr__(self, "extra_broker_config", MappingProxyType(dict(self.extra_broker_config)))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """Build settings from EMBEDDED_KAFKA_* variables; keyword overrides win."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for var, (name, convert) in _ENV_OVERRIDES.items():
            raw = environ.get(var)
            if raw:
                try:
                    values[name] = convert(raw)
                except ValueError:
                    raise ValueError(f"Invalid value for {var}: {raw!r}") from None
        if environ.get("KAFKA_HOME"):
            values["kafka_home"] = environ["KAFKA_HOME"]
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)

    @property
    def zookeeper_connect(self) -> str:
        return f"{self.host}:{self.zookeeper_port}"

    @property
    def bootstrap_servers(self) -> str:
        return f"{self.host}:{self.kafka_port}"

    @property
    def config_dir(self) -> str:
        return os.path.join(self.base_dir, "config")

    @property
    def zookeeper_data_dir(self) -> str:
        return os.path.join(self.base_dir, "zookeeper")

    @property
    def log_dirs(self) -> Tuple[str, ...]:
        return (os.path.join(self.base_dir, "kafka-logs"),)

    @property
    def service_log_dir(self) -> str:
        return os.path.join(self.base_dir, "logs")

    def kafka_config(self) -> Dict[str, Any]:
        """Broker server.properties for a single node bound to the embedded ZooKeeper."""
        config = {
            "broker.id": self.broker_id,
            "listeners": f"PLAINTEXT://{self.host}:{self.kafka_port}",
            "advertised.listeners": f"PLAINTEXT://{self.host}:{self.kafka_port}",
            "log.dirs": ",".join(self.log_dirs),
            "zookeeper.connect": self.zookeeper_connect,
            "zookeeper.session.timeout.ms": self.zk_session_timeout_ms,
            "zookeeper.connection.timeout.ms": self.zk_connection_timeout_ms,
            "num.partitions": self.num_partitions,
            "default.replication.factor": self.replication_factor,
            "offsets.topic.replication.factor": 1,
            "offsets.topic.num.partitions": 1,
            "transaction.state.log.replication.factor": 1,
            "transaction.state.log.min.isr": 1,
            "group.initial.rebalance.delay.ms": 0,
            "controlled.shutdown.enable": "true",
            "auto.create.topics.enable": "true",
            "delete.topic.enable": "true",
        }
        config.update(self.extra_broker_config)
        return config

    def zookeeper_config(self) -> Dict[str, Any]:
        return {
            "dataDir": self.zookeeper_data_dir,
            "clientPort": self.zookeeper_port,
            "clientPortAddress": self.host,
            "tickTime": 2000,
            "maxClientCnxns": 0,
            "admin.enableServer": "false",
            "4lw.commands.whitelist": "ruok,srvr,stat",
        }

    def producer_config(self) -> Dict[str, Any]:
        """Keyword arguments for kafka.KafkaProducer."""
        return {
            "bootstrap_servers": self.bootstrap_servers,
            "client_id": f"embedded-kafka-producer-{self.broker_id}",
            "key_serializer": self.key_serialization.serializer(),
            "value_serializer": self.value_serialization.serializer(),
            "acks": 1,
            "linger_ms": 5,
            "retries": 3,
        }

    def consumer_config(self, group: str, offset_policy: str = "earliest",
                        auto_commit: bool = True,
                        key_serialization: Optional[Serialization] = None,
                        value_serialization: Optional[Serialization] = None) -> Dict[str, Any]:
        """Keyword arguments for kafka.KafkaConsumer."""
        try:
            reset = _OFFSET_POLICIES[offset_policy.lower()]
        except KeyError:
            raise ValueError(f"Unknown offset policy '{offset_policy}'") from None
        key = Serialization.parse(key_serialization or self.key_serialization)
        value = Serialization.parse(value_serialization or self.value_serialization)
        return {
            "bootstrap_servers": self.bootstrap_servers,
            "group_id": group,
            "auto_offset_reset": reset,
            "enable_auto_commit": auto_commit,
            "key_deserializer": key.deserializer(),
            "value_deserializer": value.deserializer(),
        }
