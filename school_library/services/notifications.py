import json
import logging
import threading
import ssl
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
import paho.mqtt.client as mqtt
from sqlalchemy.orm import Session
from school_library.config import settings
from school_library.models.user import Student
from school_library.utils.timezone import now_local

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, user_id: int, title: str, message: str, data: Optional[Dict[str, Any]] = None,
               category: str = "library", level: str = "info") -> None:
        ...


class MQTTNotificationService:
    """Publishes library notifications to the school's MQTT broker, one topic per user.
    The delivery side (push/SMS/email fan-out) subscribes to those topics."""

    def __init__(self):
        self.client: Optional[mqtt.Client] = None
        self.is_connected = False
        self._lock = threading.Lock()

    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when MQTT client connects to broker."""
        if reason_code == 0:
            self.is_connected = True
            logger.info(f"MQTT client connected to {settings.mqtt_broker}:{settings.mqtt_port}")
        else:
            logger.error(f"MQTT connection failed with code {reason_code}")
            self.is_connected = False

    def on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback when MQTT client disconnects from broker."""
        self.is_connected = False
        if reason_code != 0:
            logger.warning(f"MQTT client disconnected unexpectedly (rc={reason_code})")
        else:
            logger.info("MQTT client disconnected")

    def notify(self, user_id: int, title: str, message: str, data: Optional[Dict[str, Any]] = None,
               category: str = "library", level: str = "info") -> None:
        """Publish one notification. Fire-and-forget: QoS handles redelivery, we never wait for acks."""
        topic = settings.mqtt_notification_topic_format.format(user_id=user_id)
        payload = json.dumps({
            "userId": user_id,
            "category": category,
            "type": level,
            "title": title,
            "message": message,
            "data": data or {},
            "timestamp": now_local().isoformat(),
        }, default=str)

        if not self.is_running():
            logger.warning(f"MQTT client not connected, dropping notification '{title}' for user {user_id}")
            return

        result = self.client.publish(topic, payload, qos=settings.mqtt_qos)
        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            logger.info(f"Notification '{title}' published to {topic}")
        else:
            logger.error(f"Failed to publish notification to {topic}: rc={result.rc}")

    def _setup_tls(self):
        """Configure TLS/SSL for MQTT client."""
        if not settings.mqtt_use_tls:
            return

        try:
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)

            if settings.mqtt_ca_cert:
                ca_cert_path = Path(settings.mqtt_ca_cert)
                if not ca_cert_path.exists():
                    logger.error(f"CA certificate file not found: {ca_cert_path}")
                    raise FileNotFoundError(f"CA certificate file not found: {ca_cert_path}")
                context.load_verify_locations(cafile=str(ca_cert_path))
                logger.info(f"Loaded CA certificate from {ca_cert_path}")
            else:
                context.load_default_certs()
                logger.info("Using system default CA certificates")

            # Client certificate and key for mutual TLS
            if settings.mqtt_client_cert and settings.mqtt_client_key:
                client_cert_path = Path(settings.mqtt_client_cert)
                client_key_path = Path(settings.mqtt_client_key)

                for path in (client_cert_path, client_key_path):
                    if not path.exists():
                        logger.error(f"Client TLS file not found: {path}")
                        raise FileNotFoundError(f"Client TLS file not found: {path}")

                context.load_cert_chain(
                    certfile=str(client_cert_path),
                    keyfile=str(client_key_path)
                )
                logger.info(f"Loaded client certificate from {client_cert_path}")

            if settings.mqtt_tls_insecure:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
                logger.warning("TLS insecure mode enabled - certificate verification disabled")
            else:
                context.check_hostname = True
                context.verify_mode = ssl.CERT_REQUIRED

            self.client.tls_set_context(context)
            logger.info("TLS/SSL configured for MQTT connection")

        except Exception as e:
            logger.error(f"Error setting up TLS for MQTT: {e}", exc_info=True)
            raise

    def connect(self):
        """Connect to MQTT broker with optional TLS/SSL support."""
        if not settings.mqtt_enabled:
            logger.info("MQTT notifications disabled, skipping broker connection")
            return

        try:
            with self._lock:
                if self.client and self.is_connected:
                    logger.info("MQTT client already connected")
                    return

                client_id = f"school-library-{threading.current_thread().ident}"
                self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)
                self.client.on_connect = self.on_connect
                self.client.on_disconnect = self.on_disconnect

                if settings.mqtt_use_tls:
                    self._setup_tls()
                    if settings.mqtt_port == 1883:
                        logger.warning("TLS enabled but port is 1883. Consider using port 8883 for MQTT over TLS.")

                if settings.mqtt_username and settings.mqtt_password:
                    self.client.username_pw_set(settings.mqtt_username, settings.mqtt_password)

                protocol = "TLS" if settings.mqtt_use_tls else "TCP"
                logger.info(f"Connecting to MQTT broker at {settings.mqtt_broker}:{settings.mqtt_port} over {protocol}")
                try:
                    self.client.connect(settings.mqtt_broker, settings.mqtt_port, keepalive=60)
                    self.client.loop_start()
                except Exception as conn_error:
                    logger.warning(f"Initial MQTT connection failed: {conn_error}. The service will retry automatically.")
                    # The network loop keeps retrying in the background
                    self.client.loop_start()

        except Exception as e:
            logger.error(f"Error setting up MQTT client: {e}", exc_info=True)
            self.is_connected = False

    def disconnect(self):
        """Disconnect from MQTT broker."""
        try:
            with self._lock:
                if self.client:
                    self.client.loop_stop()
                    self.client.disconnect()
                    self.is_connected = False
                    logger.info("MQTT client disconnected")
        except Exception as e:
            logger.error(f"Error disconnecting from MQTT broker: {e}", exc_info=True)

    def is_running(self) -> bool:
        """Check if MQTT service is running and connected."""
        return self.is_connected and self.client is not None


def resolve_student_user_id(db: Session, student_id: int) -> Optional[int]:
    """Identity lookup: the account a student's notifications go to."""
    student = db.query(Student).filter(Student.student_id == student_id).first()
    if student is None:
        return None
    return student.user_id


class NotificationOutbox:
    """Collects notifications raised during one library operation.

    Nothing is sent until the operation's transaction has committed, and a
    failure to deliver never reaches the caller."""

    def __init__(self, db: Session, sink: NotificationSink):
        self.db = db
        self.sink = sink
        self._pending: List[Dict[str, Any]] = []

    def queue(self, student_id: int, title: str, message: str, data: Optional[Dict[str, Any]] = None,
              level: str = "info"):
        self._pending.append({
            "student_id": student_id,
            "title": title,
            "message": message,
            "data": data or {},
            "level": level,
        })

    def discard(self):
        self._pending.clear()

    def flush(self):
        pending, self._pending = self._pending, []
        for item in pending:
            try:
                user_id = resolve_student_user_id(self.db, item["student_id"])
                if user_id is None:
                    logger.info(f"Student {item['student_id']} has no linked account, skipping '{item['title']}'")
                    continue
                self.sink.notify(
                    user_id,
                    item["title"],
                    item["message"],
                    data={"studentId": item["student_id"], **item["data"]},
                    category="library",
                    level=item["level"],
                )
            except Exception as e:
                logger.error(f"Failed to deliver library notification '{item['title']}': {e}", exc_info=True)

    def __len__(self):
        return len(self._pending)


notification_service = MQTTNotificationService()
