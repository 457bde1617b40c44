import json
from typing import Any, Dict
from paho.mqtt import client as mqtt
import logging

from smartess.config import MqttConfig

log = logging.getLogger(__name__)


class Mqtt:
    """Thin publisher around paho-mqtt; the network loop runs in paho's own thread."""

    def __init__(self, cfg: MqttConfig):
        self.cfg = cfg
        self.cli = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=cfg.client_id, clean_session=True)
        if cfg.username:
            self.cli.username_pw_set(cfg.username, cfg.password or "")
        self.cli.connect_async(cfg.host, cfg.port, keepalive=30)
        self.cli.loop_start()

    def topic(self, suffix: str) -> str:
        return f"{self.cfg.base_topic.rstrip('/')}/{suffix}"

    def pub(self, topic: str, payload: Dict[str, Any], retain: bool = False):
        # datetimes and enums fall back to str()
        p = json.dumps(payload, separators=(",", ":"), default=str)
        log.debug("MQTT PUB %s %s", topic, p)
        self.cli.publish(topic, p, qos=0, retain=retain)

    def close(self):
        self.cli.loop_stop()
        self.cli.disconnect()
