#!/usr/bin/env python3
"""
Run an embedded ZooKeeper + Kafka until interrupted.

Usage:
    python -m embedded_kafka --topic events:3 --topic audit
"""

import argparse
import logging
import sys
import threading

from kafka.errors import KafkaError

from embedded_kafka.embedded import EmbeddedKafka
from embedded_kafka.errors import HarnessError
from embedded_kafka.settings import Settings

logger = logging.getLogger("embedded_kafka")


def parse_topic(value):
    name, _, partitions = value.partition(":")
    if not name:
        raise argparse.ArgumentTypeError(f"invalid topic '{value}'")
    try:
        count = int(partitions) if partitions else 1
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid partition count in '{value}'") from None
    if count < 1:
        raise argparse.ArgumentTypeError(f"partition count must be positive in '{value}'")
    return name, count


def build_parser():
    parser = argparse.ArgumentParser(description="Run an embedded single-node ZooKeeper + Kafka")
    parser.add_argument("--port", type=int, help="Kafka listener port (default 9092)")
    parser.add_argument("--zookeeper-port", type=int, help="ZooKeeper client port (default 2181)")
    parser.add_argument("--base-dir", help="Directory for config, data and service logs")
    parser.add_argument("--kafka-home", help="Kafka distribution (default $KAFKA_HOME or PATH)")
    parser.add_argument("--topic", action="append", default=[], type=parse_topic,
                        metavar="NAME[:PARTITIONS]", help="Topic to create after startup (repeatable)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def settings_from_args(args):
    overrides = {}
    if args.port is not None:
        overrides["kafka_port"] = args.port
    if args.zookeeper_port is not None:
        overrides["zookeeper_port"] = args.zookeeper_port
    if args.base_dir:
        overrides["base_dir"] = args.base_dir
    if args.kafka_home:
        overrides["kafka_home"] = args.kafka_home
    return Settings.from_env(**overrides)


def main(argv=None, stop_event=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    kafka = EmbeddedKafka(settings_from_args(args))
    try:
        kafka.start()
        for name, partitions in args.topic:
            kafka.create_topic(name, partitions, 1)
    except (HarnessError, KafkaError) as e:
        logger.error(f"Failed to start embedded Kafka: {e}")
        kafka.close()
        return 1

    print(f"Kafka ready at {kafka.settings.bootstrap_servers} "
          f"(zookeeper {kafka.settings.zookeeper_connect}), Ctrl-C to stop")
    stop_event = stop_event or threading.Event()
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        print()
    finally:
        failures = kafka.close()
    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
