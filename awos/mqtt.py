import json
import logging

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTReceiver:
    def __init__(self, topic, client_id="awos-hub", broker_address="localhost", broker_port=1883):
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        self.broker_address = broker_address
        self.broker_port = int(broker_port)
        self.topic = topic
        self.on_message_callback = None

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if not reason_code.is_failure:
            logger.info("[mqtt] Connected to broker, subscribing to %s", self.topic)
            client.subscribe(self.topic, qos=1)
        else:
            logger.error("[mqtt] Connection failed: %s", reason_code)

    def connect(self, on_message_callback):
        try:
            self.on_message_callback = on_message_callback
            self.client.on_connect = self._on_connect
            self.client.on_message = self._internal_on_message

            self.client.connect(self.broker_address, self.broker_port)
            self.client.loop_start()
            return True
        except OSError as e:
            logger.error("[mqtt] Connection error to %s:%s: %s", self.broker_address, self.broker_port, e)
            return False

    def _internal_on_message(self, client, userdata, message):
        try:
            payload = message.payload.decode('utf-8')
            data_dict = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("[mqtt] Dropping undecodable message on %s: %s", message.topic, e)
            return
        if self.on_message_callback:
            try:
                self.on_message_callback(data_dict)
            except Exception:
                logger.exception("[mqtt] Message processing error")

    def disconnect(self):
        self.client.loop_stop()
        self.client.disconnect()
        logger.info("[mqtt] Disconnected from MQTT broker")
