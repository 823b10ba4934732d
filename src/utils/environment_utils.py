from dotenv import load_dotenv
import os

# Utils
from utils.log_utils import LogUtil

"""
Utility class for environment variables
"""
class EnvironmentUtils:
    def __init__(self, log_util: LogUtil):

        # Load environment variables
        load_dotenv()

        # Initialize logger
        self.log_util = log_util

        # Environment variables
        self.env_variables = {
            "APP_ENV": os.getenv("APP_ENV", "production"),
            "HOST": os.getenv("HOST", "0.0.0.0"),
            "PORT": int(os.getenv("PORT", "8018")),
            "ORG_ID": os.getenv("ORG_ID", "ChatDesk"),
            "LOKI_URL": os.getenv("LOKI_URL", ""),
            "FLOW_DB_BACKEND": os.getenv("FLOW_DB_BACKEND", "mongo"),
            "MONGO_USERNAME": os.getenv("MONGO_USERNAME", "flowservice"),
            "MONGO_PASSWORD": os.getenv("MONGO_PASSWORD", ""),
            "MONGO_AUTH_SOURCE": os.getenv("MONGO_AUTH_SOURCE", "admin"),
            "MONGO_HOST": os.getenv("MONGO_HOST", "localhost"),
            "MONGO_PORT": int(os.getenv("MONGO_PORT", "27017")),
            "MONGO_DB_NAME": os.getenv("MONGO_DB_NAME", "chatdesk_flow_db"),
            "CHANNEL_SERVICE_URL": os.getenv("CHANNEL_SERVICE_URL", "http://localhost:8017"),
            "CONVERSATION_SERVICE_URL": os.getenv("CONVERSATION_SERVICE_URL", "http://localhost:8019"),
            "COLLABORATOR_TIMEOUT_SECONDS": float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "10")),
            "HTTP_ACTION_TIMEOUT_SECONDS": float(os.getenv("HTTP_ACTION_TIMEOUT_SECONDS", "10")),
            "FLOW_MAX_STEPS": int(os.getenv("FLOW_MAX_STEPS", "50")),
            "EXECUTION_TIMEOUT_MINUTES": int(os.getenv("EXECUTION_TIMEOUT_MINUTES", "30")),
            "REAPER_INTERVAL_SECONDS": int(os.getenv("REAPER_INTERVAL_SECONDS", "300")),
            "DELAY_CHECK_INTERVAL_SECONDS": int(os.getenv("DELAY_CHECK_INTERVAL_SECONDS", "20")),
        }

    def get_env_variable(self, variable_name: str) -> str | int | float:
        if variable_name not in self.env_variables:
            self.log_util.error(service_name="EnvironmentUtils", message=f"Environment variable {variable_name} not found")
            raise ValueError(f"Environment variable {variable_name} not found")
        return self.env_variables[variable_name]
