"""Embedded ZooKeeper + Kafka test harness."""

from embedded_kafka.embedded import EmbeddedKafka, TopicDescriptor
from embedded_kafka.errors import (
    HarnessError,
    IllegalStateError,
    KafkaNotFoundError,
    PreconditionTimeout,
    ShutdownFailure,
)
from embedded_kafka.handles import AtomicFlag, ResourceHandle
from embedded_kafka.lifecycle import LifecycleState
from embedded_kafka.retry import eventually
from embedded_kafka.serialization import Serialization
from embedded_kafka.sessions import ConsumerSession, ProducerSession
from embedded_kafka.settings import DefaultKafkaConnect, DefaultZookeeperConnect, Settings

__version__ = "0.1.0"

__all__ = [
    "AtomicFlag",
    "ConsumerSession",
    "DefaultKafkaConnect",
    "DefaultZookeeperConnect",
    "EmbeddedKafka",
    "HarnessError",
    "IllegalStateError",
    "KafkaNotFoundError",
    "LifecycleState",
    "PreconditionTimeout",
    "ProducerSession",
    "ResourceHandle",
    "Serialization",
    "Settings",
    "ShutdownFailure",
    "TopicDescriptor",
    "eventually",
]
