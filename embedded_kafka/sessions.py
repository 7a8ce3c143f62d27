"""Producer and consumer sessions bound to the embedded broker."""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from kafka import KafkaConsumer, KafkaProducer

from embedded_kafka.errors import IllegalStateError
from embedded_kafka.retry import eventually

logger = logging.getLogger(__name__)


class ProducerSession:
    """One KafkaProducer; records are batched by the client and flushed per send()."""

    def __init__(self, config: Dict[str, Any], producer_factory=KafkaProducer):
        self.config = dict(config)
        self._producer = producer_factory(**self.config)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, topic: str, messages: Iterable[Any]) -> int:
        """Publish each message as an independent record. Returns the number sent."""
        with self._lock:
            if self._closed:
                raise IllegalStateError("Producer session is closed")
            count = 0
            for message in messages:
                self._producer.send(topic, value=message)
                count += 1
            self._producer.flush()
        logger.debug(f"Sent {count} messages to {topic}")
        return count

    def flush(self) -> None:
        self._producer.flush()

    def close(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._producer.close(timeout=timeout)
        logger.info("Producer closed")


class ConsumerSession:
    """
    Subscribes to one topic and counts what arrives, for polling assertions
    such as ``session.await_count(1000)``.
    """

    def __init__(self, topic: str, config: Dict[str, Any], consumer_factory=KafkaConsumer,
                 poll_timeout_ms: int = 500, keep_messages: bool = True):
        self.topic = topic
        self.config = dict(config)
        self.poll_timeout_ms = poll_timeout_ms
        self.keep_messages = keep_messages
        self._consumer_factory = consumer_factory
        self._consumer = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._count = 0
        self._messages: List[Any] = []
        self.error: Optional[BaseException] = None

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def messages(self) -> List[Any]:
        with self._lock:
            return list(self._messages)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "ConsumerSession":
        if self._thread is not None:
            raise IllegalStateError(f"Consumer for {self.topic} already started")
        self._stop.clear()
        self._consumer = self._consumer_factory(**self.config)
        self._consumer.subscribe([self.topic])
        self._thread = threading.Thread(
            target=self._run, name=f"embedded-kafka-consumer-{self.topic}", daemon=True
        )
        self._thread.start()
        logger.info(f"Consumer subscribed to {self.topic} (group {self.config.get('group_id')})")
        return self

    def _run(self):
        try:
            while not self._stop.is_set():
                batches = self._consumer.poll(timeout_ms=self.poll_timeout_ms)
                for records in batches.values():
                    with self._lock:
                        self._count += len(records)
                        if self.keep_messages:
                            self._messages.extend(r.value for r in records)
        except Exception as e:
            self.error = e
            logger.exception(f"Consumer for {self.topic} stopped on error")

    def wait_for_assignment(self, timeout_ms: int = 10000) -> None:
        """Block until the group coordinator has assigned partitions."""
        eventually(timeout_ms, 100, lambda: bool(self._consumer and self._consumer.assignment()),
                   f"No partitions of {self.topic} assigned after {timeout_ms}ms")

    def await_count(self, expected: int, timeout_ms: int = 10000, interval_ms: int = 100) -> None:
        def received():
            if self.error is not None:
                raise self.error
            return self.count >= expected

        eventually(timeout_ms, interval_ms, received,
                   f"Expected {expected} messages on {self.topic} within {timeout_ms}ms")

    def shutdown(self, timeout_s: float = 10.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout_s)
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.close()
            logger.info(f"Consumer for {self.topic} closed")
