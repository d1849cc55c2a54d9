import json
import os
import threading
import time

import pika
import structlog

logger = structlog.get_logger(__name__)


class RabbitMQPublisher:
    """
    Publishes receipt events to a RabbitMQ topic exchange.

    The connection is opened on the first publish rather than at startup, so
    the notification service comes up even while RabbitMQ is still booting.
    """

    def __init__(self, exchange_name="events", exchange_type="topic", host=None, connect_attempts=None, retry_delay=1.0):
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type
        self.host = host or os.getenv("RABBITMQ_HOST", "rabbitmq")
        self.connect_attempts = connect_attempts or int(os.getenv("RABBITMQ_CONNECT_ATTEMPTS", "3"))
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None
        # BlockingConnection is not thread-safe; requests are served from a thread pool.
        self._lock = threading.Lock()

    def connect(self):
        """Establishes a connection to RabbitMQ, giving up after connect_attempts tries."""
        last_error = None
        for attempt in range(1, self.connect_attempts + 1):
            try:
                credentials = pika.PlainCredentials('guest', 'guest')
                parameters = pika.ConnectionParameters(host=self.host, credentials=credentials)

                self.connection = pika.BlockingConnection(parameters)
                self.open_channel()
                logger.info("rabbitmq_connected", exchange=self.exchange_name, host=self.host)
                return
            except pika.exceptions.AMQPConnectionError as e:
                last_error = e
                logger.warning("rabbitmq_not_ready", attempt=attempt, host=self.host)
                if attempt < self.connect_attempts:
                    time.sleep(self.retry_delay)
        raise last_error

    def open_channel(self):
        """Opens a channel on the current connection and declares the exchange."""
        self.channel = self.connection.channel()

        # Declare the exchange (durable ensures it survives restarts)
        self.channel.exchange_declare(
            exchange=self.exchange_name,
            exchange_type=self.exchange_type,
            durable=True
        )

    def publish(self, routing_key, message):
        """
        Publishes a message to the exchange with a specific routing key.

        Args:
            routing_key (str): The topic key (e.g., 'receipt.sent').
            message (dict): The data payload to send.

        Raises:
            pika.exceptions.AMQPError: if RabbitMQ cannot be reached or refuses the message.
        """
        with self._lock:
            # Reconnect if the connection was lost
            if not self.connection or self.connection.is_closed:
                self.connect()
            # The broker closes only the channel on some errors (e.g. a refused publish)
            elif self.channel is None or self.channel.is_closed:
                logger.info("rabbitmq_channel_reopened", exchange=self.exchange_name)
                self.open_channel()

            self.channel.basic_publish(
                exchange=self.exchange_name,
                routing_key=routing_key,
                body=json.dumps(message),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Make message persistent
                    content_type='application/json'
                )
            )
        logger.debug("event_published", routing_key=routing_key)

    def close(self):
        """Closes the connection cleanly."""
        with self._lock:
            if self.connection and not self.connection.is_closed:
                self.connection.close()
            self.connection = None
            self.channel = None
