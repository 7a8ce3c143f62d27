"""
ZooKeeper session used for broker registration and partition state checks.

Kafka (ZooKeeper mode) keeps its cluster metadata in well-known znodes:

    /brokers/ids/<id>                              live broker registrations
    /brokers/topics/<topic>/partitions/<p>/state   leader, leader_epoch, isr
    /controller                                    {"brokerid": <id>, ...}
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from kazoo.client import KazooClient
from kazoo.exceptions import NoNodeError
from kazoo.handlers.threading import KazooTimeoutError

from embedded_kafka.errors import IllegalStateError, PreconditionTimeout

logger = logging.getLogger(__name__)

BROKER_IDS_PATH = "/brokers/ids"
CONTROLLER_PATH = "/controller"


@dataclass(frozen=True)
class LeaderAndIsr:
    leader: int
    leader_epoch: int
    isr: Tuple[int, ...]
    controller_epoch: int

    @staticmethod
    def partition_state_path(topic: str, partition: int) -> str:
        return f"/brokers/topics/{topic}/partitions/{partition}/state"

    @classmethod
    def from_json(cls, data: bytes) -> "LeaderAndIsr":
        state = json.loads(data.decode('utf-8'))
        return cls(
            leader=int(state["leader"]),
            leader_epoch=int(state.get("leader_epoch", 0)),
            isr=tuple(int(b) for b in state.get("isr", [])),
            controller_epoch=int(state.get("controller_epoch", 0)),
        )


class ZookeeperClient:
    def __init__(self, connect: str, session_timeout_ms: int, connection_timeout_ms: int,
                 client_factory=KazooClient):
        self.connect = connect
        self.session_timeout_ms = session_timeout_ms
        self.connection_timeout_ms = connection_timeout_ms
        self._client_factory = client_factory
        self._client = None

    @classmethod
    def from_settings(cls, settings, client_factory=KazooClient) -> "ZookeeperClient":
        return cls(settings.zookeeper_connect, settings.zk_session_timeout_ms,
                   settings.zk_connection_timeout_ms, client_factory=client_factory)

    def start(self) -> "ZookeeperClient":
        if self._client is not None:
            return self
        logger.info(f"Starting ZkClient for {self.connect}")
        client = self._client_factory(hosts=self.connect, timeout=self.session_timeout_ms / 1000.0)
        try:
            client.start(timeout=self.connection_timeout_ms / 1000.0)
        except KazooTimeoutError as e:
            client.close()
            raise PreconditionTimeout(
                f"Could not connect to Zookeeper at {self.connect} within {self.connection_timeout_ms}ms"
            ) from e
        self._client = client
        return self

    @property
    def connected(self) -> bool:
        return self._client is not None and self._client.connected

    def _require_client(self):
        if self._client is None:
            raise IllegalStateError("ZkClient is not started")
        return self._client

    def broker_ids(self) -> List[int]:
        client = self._require_client()
        try:
            children = client.get_children(BROKER_IDS_PATH)
        except NoNodeError:
            return []
        return sorted(int(c) for c in children)

    def partition_state(self, topic: str, partition: int) -> Optional[LeaderAndIsr]:
        """Leader/ISR znode contents, or None while the path is missing or empty."""
        client = self._require_client()
        try:
            data, _ = client.get(LeaderAndIsr.partition_state_path(topic, partition))
        except NoNodeError:
            return None
        if not data:
            return None
        return LeaderAndIsr.from_json(data)

    def controller_id(self) -> Optional[int]:
        client = self._require_client()
        try:
            data, _ = client.get(CONTROLLER_PATH)
        except NoNodeError:
            return None
        if not data:
            return None
        return int(json.loads(data.decode('utf-8'))["brokerid"])

    def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.stop()
        finally:
            client.close()
        logger.info("ZkClient closed")
