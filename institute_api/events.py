import json
import logging

import pika

from institute_api import config

logger = logging.getLogger(__name__)


def publish_event(rabbitmq_url: str, routing_key: str, event: dict, exchange: str = config.EVENTS_EXCHANGE):
    try:
        params = pika.URLParameters(rabbitmq_url)
        connection = pika.BlockingConnection(params)
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=exchange, exchange_type="topic", durable=True)
            channel.basic_publish(
                exchange=exchange,
                routing_key=routing_key,
                body=json.dumps(event, default=str),
                properties=pika.BasicProperties(content_type="application/json", delivery_mode=2),
            )
        finally:
            connection.close()
        logger.info("Published %s on %s", event.get("type"), routing_key)
    except pika.exceptions.AMQPError:
        logger.exception("Error publishing event %s", routing_key)


def emit(background_tasks, routing_key: str, event_type: str, payload: dict):
    """Schedule publication once the response is sent; committed state only."""
    if not config.RABBITMQ_URL:
        logger.debug("Event publishing disabled, dropping %s", event_type)
        return
    event = {"type": event_type, "payload": payload}
    background_tasks.add_task(publish_event, config.RABBITMQ_URL, routing_key, event)
