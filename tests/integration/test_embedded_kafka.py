#!/usr/bin/env python3
"""
End-to-end checks against a real ZooKeeper + Kafka started from $KAFKA_HOME.

Run with:
    KAFKA_HOME=/opt/kafka pytest tests/integration -m integration
"""

import uuid

import pytest

from embedded_kafka.lifecycle import LifecycleState

pytestmark = pytest.mark.integration


def unique(prefix):
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def test_harness_is_running(embedded_kafka):
    assert embedded_kafka.is_running
    assert embedded_kafka.state is LifecycleState.RUNNING
    assert embedded_kafka.settings.broker_id in embedded_kafka.zk_client.broker_ids()
    assert embedded_kafka.zk_client.controller_id() == embedded_kafka.settings.broker_id


def test_create_topic_propagates(embedded_kafka):
    topic = unique("propagation")

    descriptor = embedded_kafka.create_topic(topic, 3, 1)

    assert descriptor.partitions == 3
    for partition in range(3):
        state = embedded_kafka.zk_client.partition_state(topic, partition)
        assert state.leader == embedded_kafka.settings.broker_id
        assert state.isr == (embedded_kafka.settings.broker_id,)
        metadata = embedded_kafka.server.partition_metadata(topic, partition)
        assert metadata["leader"] == embedded_kafka.settings.broker_id


def test_produce_and_consume_1000_messages(embedded_kafka):
    topic = unique("roundtrip")
    embedded_kafka.create_topic(topic, 1, 1)

    consumer = embedded_kafka.consumer(topic, unique("group"))
    try:
        sent = embedded_kafka.send_messages(topic, [f"message-{i}" for i in range(1000)])
        assert sent == 1000

        consumer.await_count(1000, timeout_ms=10000)

        assert consumer.count == 1000
        assert consumer.messages[0] == "message-0"
    finally:
        consumer.shutdown()


def test_send_messages_with_frequencies(embedded_kafka):
    topic = unique("frequencies")
    embedded_kafka.create_topic(topic)

    consumer = embedded_kafka.consumer(topic, unique("group"))
    try:
        assert embedded_kafka.send_messages(topic, {"a": 3, "b": 2}) == 5
        consumer.await_count(5, timeout_ms=10000)
        assert sorted(consumer.messages) == ["a", "a", "a", "b", "b"]
    finally:
        consumer.shutdown()
