#!/usr/bin/env python3
"""
MQTT ingestion

Receives station readings over MQTT and stores them through the same
reading store the API uses.
"""

import argparse
import logging
import signal
import sys
import threading

from awos.config import Config
from awos.ingest import IngestBridge
from awos.mqtt import MQTTReceiver
from awos.readings import SensorReadingModel, open_store
from awos.stats import StatsRecorder

logger = logging.getLogger("ingest")


class IngestService:
    """Wires the MQTT receiver to the ingestion bridge."""

    def __init__(self, config: Config):
        self.config = config
        self.stats = StatsRecorder()
        model = SensorReadingModel(open_store(config), default_station_id=config.default_station_id)
        self.bridge = IngestBridge(model, self.stats)
        self.receiver = MQTTReceiver(
            topic=config.mqtt_topic,
            client_id=config.mqtt_client_id,
            broker_address=config.mqtt_broker_address,
            broker_port=config.mqtt_broker_port,
        )
        self._stop_event = threading.Event()

    def start(self) -> bool:
        logger.info("[ingest] subscribing to %s:%s topic='%s' as client_id='%s'",
                    self.receiver.broker_address, self.receiver.broker_port,
                    self.config.mqtt_topic, self.config.mqtt_client_id)
        if not self.receiver.connect(self.bridge.handle):
            logger.error("[ingest] failed to connect to MQTT broker")
            return False
        return True

    def stop(self):
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self.receiver.disconnect()
        snapshot = self.stats.snapshot()
        logger.info("[ingest] messages=%d stored=%d success rate=%s",
                    self.bridge.message_count, self.bridge.readings_count, snapshot["successRate"])

    def wait(self):
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            pass


def main():
    config = Config.from_env()

    parser = argparse.ArgumentParser(
        description="MQTT ingestion - stores station readings published to the broker",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("-b", "--broker", type=str, default=config.mqtt_broker_address,
                        help="MQTT broker address")
    parser.add_argument("-p", "--port", type=int, default=config.mqtt_broker_port,
                        help="MQTT broker port")
    parser.add_argument("-t", "--topic", type=str, default=config.mqtt_topic,
                        help="Topic the stations publish to")
    parser.add_argument("-d", "--database", type=str, default=config.db_file,
                        help="SQLite database file (used when Supabase is not configured)")
    args = parser.parse_args()

    config.mqtt_broker_address = args.broker
    config.mqtt_broker_port = args.port
    config.mqtt_topic = args.topic
    config.db_file = args.database

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    service = IngestService(config)

    def signal_handler(sig, frame):
        service.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if service.start():
        service.wait()
        service.stop()


if __name__ == "__main__":
    main()
