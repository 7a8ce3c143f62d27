"""
pytest fixtures for tests that need a live broker.

Loaded automatically through the ``pytest11`` entry point. Tests are skipped
when no Kafka distribution can be found (set KAFKA_HOME).
"""

import pytest

from embedded_kafka.embedded import EmbeddedKafka
from embedded_kafka.errors import KafkaNotFoundError
from embedded_kafka.settings import Settings
from embedded_kafka.utils import find_script


@pytest.fixture(scope="session")
def embedded_kafka_settings(tmp_path_factory):
    return Settings.from_env(base_dir=str(tmp_path_factory.mktemp("embedded-kafka")))


@pytest.fixture(scope="session")
def embedded_kafka(embedded_kafka_settings):
    """Session-wide ZooKeeper + Kafka, shut down after the last test."""
    try:
        find_script(embedded_kafka_settings.kafka_home, "kafka-server-start")
    except KafkaNotFoundError as e:
        pytest.skip(f"Kafka distribution not available: {e}")

    kafka = EmbeddedKafka(embedded_kafka_settings)
    kafka.start()
    yield kafka
    failures = kafka.close()
    assert not failures, f"Embedded Kafka did not shut down cleanly: {failures}"
