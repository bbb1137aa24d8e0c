# libs/py_common/kafka.py
import json
import socket
from typing import Any, Optional, Protocol

import structlog
from confluent_kafka import KafkaException, Producer

from .config import Settings
from .metrics import EVENTS_PUBLISHED_TOTAL

logger = structlog.get_logger(__name__)


def kafka_config(bootstrap_servers: str) -> dict:
    # For TLS/SASL add security.protocol, ssl.ca.location, ... here from env.
    return {
        "bootstrap.servers": bootstrap_servers,
        "client.id": socket.gethostname(),
    }


# --- Producer Helper ---
def create_producer(bootstrap_servers: str, config_overrides: Optional[dict] = None) -> Producer:
    producer_config = kafka_config(bootstrap_servers)
    if config_overrides:
        producer_config.update(config_overrides)

    logger.info("Creating Kafka Producer", config=producer_config)
    return Producer(producer_config)


# --- Delivery Report Callback ---
def delivery_report(err, msg):
    """ Called once for each message produced to indicate delivery result.
        Triggered by poll() or flush(). """
    if err is not None:
        logger.error('Message delivery failed', topic=msg.topic(), partition=msg.partition(), error=str(err))
    else:
        logger.debug('Message delivered', topic=msg.topic(), partition=msg.partition(), offset=msg.offset())


class EventPublisher(Protocol):
    def publish(self, event_type: str, key: str, payload: dict[str, Any]) -> None:
        ...


class LogEventPublisher:
    """Used when no broker is configured: the event only lands in the structured log."""

    def publish(self, event_type: str, key: str, payload: dict[str, Any]) -> None:
        logger.info("domain_event", event_type=event_type, key=key, payload=payload)
        EVENTS_PUBLISHED_TOTAL.labels(event_type=event_type, status="logged").inc()


class KafkaEventPublisher:
    """Publishes JSON payout events. Never raises; money state is already committed
    when an event is emitted, so a broker outage only costs the notification."""

    def __init__(self, producer: Producer, topic: str):
        self.producer = producer
        self.topic = topic

    def publish(self, event_type: str, key: str, payload: dict[str, Any]) -> None:
        message = {"event_type": event_type, **payload}
        try:
            self.producer.produce(
                self.topic,
                key=key.encode("utf-8"),
                value=json.dumps(message, default=str).encode("utf-8"),
                callback=delivery_report,
            )
            self.producer.poll(0)
            EVENTS_PUBLISHED_TOTAL.labels(event_type=event_type, status="queued").inc()
        except (KafkaException, BufferError) as e:
            logger.error("event_publish_failed", event_type=event_type, key=key, error=str(e))
            EVENTS_PUBLISHED_TOTAL.labels(event_type=event_type, status="failed").inc()

    def flush(self, timeout: float = 10.0) -> None:
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning("Kafka producer flush timeout, messages may not have been delivered", remaining=remaining)


def create_event_publisher(settings: Settings) -> EventPublisher:
    if not settings.kafka_bootstrap_servers:
        logger.info("KAFKA_BOOTSTRAP_SERVERS not set. Domain events will only be logged.")
        return LogEventPublisher()
    return KafkaEventPublisher(create_producer(settings.kafka_bootstrap_servers), settings.payout_events_topic)
