import logging
from logging_loki import LokiHandler
from dotenv import load_dotenv
import os

class NonEmptyTagsFilter(logging.Filter):
    def filter(self, record):
        # Check if the record has 'tags' attribute
        tags = getattr(record, 'tags', None)
        if tags is None:
            return True
        # Exclude the record if any tag value is empty or None
        for key, value in tags.items():
            if value is None or value == '':
                return False
        return True

class LogUtil:
    def __init__(self):

        # Load environment variables
        load_dotenv()

        self.logger = logging.getLogger("chatdesk_flow_service")
        self.logger.setLevel(logging.INFO)

        # Loki handler is only attached when a push URL is configured
        loki_url = os.getenv("LOKI_URL", "")
        if loki_url and not self._has_handler(LokiHandler):
            self.handler = LokiHandler(
                url=loki_url,
                tags={"application": "chatdesk_flow_service", "environment": os.getenv("APP_ENV", "production"), "org_id": os.getenv("ORG_ID", "ChatDesk")},
                version="1"
            )
            self.handler.addFilter(NonEmptyTagsFilter())
            self.logger.addHandler(self.handler)

        # Console handler for local terminal output
        if not self._has_handler(logging.StreamHandler):
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_formatter = logging.Formatter('%(asctime)s - %(name)s - [%(levelname)s] - %(message)s')
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # Suppress pymongo and motor background noise
        logging.getLogger("pymongo").setLevel(logging.WARNING)
        logging.getLogger("motor").setLevel(logging.WARNING)

    def _has_handler(self, handler_type) -> bool:
        # Several LogUtil instances share one named logger
        return any(type(handler) is handler_type for handler in self.logger.handlers)

    def info(self, service_name: str, message: str):
        self.logger.info(f"{message}", extra={"tags": {"service_name": service_name}})

    def error(self, service_name: str, message: str):
        self.logger.error(f"{message}", extra={"tags": {"service_name": service_name}})

    def warning(self, service_name: str, message: str):
        self.logger.warning(f"{message}", extra={"tags": {"service_name": service_name}})

    def debug(self, service_name: str, message: str):
        self.logger.debug(f"{message}", extra={"tags": {"service_name": service_name}})
