import json
import unittest
from unittest.mock import MagicMock, patch

from confluent_kafka import KafkaException

from libs.py_common.config import Settings
from libs.py_common.kafka import KafkaEventPublisher, LogEventPublisher, create_event_publisher


class TestKafkaEventPublisher(unittest.TestCase):

    def setUp(self):
        self.producer = MagicMock()
        self.publisher = KafkaEventPublisher(self.producer, "payout.events")

    def test_publish_produces_json_with_event_type(self):
        self.publisher.publish("payout.paid", "vendor-1", {"payout_request_id": "p1", "amount": 5000})

        args, kwargs = self.producer.produce.call_args
        self.assertEqual(args, ("payout.events",))
        self.assertEqual(kwargs["key"], b"vendor-1")
        self.assertEqual(
            json.loads(kwargs["value"]),
            {"event_type": "payout.paid", "payout_request_id": "p1", "amount": 5000},
        )
        self.producer.poll.assert_called_once_with(0)

    def test_publish_swallows_broker_errors(self):
        self.producer.produce.side_effect = BufferError("queue full")
        self.publisher.publish("payout.requested", "vendor-1", {})

        self.producer.produce.side_effect = KafkaException("broker down")
        self.publisher.publish("payout.requested", "vendor-1", {})

        self.producer.poll.assert_not_called()

    def test_flush_delegates(self):
        self.producer.flush.return_value = 0
        self.publisher.flush(timeout=1.0)
        self.producer.flush.assert_called_once_with(1.0)


class TestCreateEventPublisher(unittest.TestCase):

    def test_without_brokers_events_are_logged(self):
        settings = Settings(_env_file=None, kafka_bootstrap_servers="")
        self.assertIsInstance(create_event_publisher(settings), LogEventPublisher)

    @patch("libs.py_common.kafka.Producer")
    def test_with_brokers_uses_kafka(self, mock_producer_cls):
        settings = Settings(_env_file=None, kafka_bootstrap_servers="kafka:9092", payout_events_topic="payouts")

        publisher = create_event_publisher(settings)

        self.assertIsInstance(publisher, KafkaEventPublisher)
        self.assertEqual(publisher.topic, "payouts")
        config = mock_producer_cls.call_args.args[0]
        self.assertEqual(config["bootstrap.servers"], "kafka:9092")
