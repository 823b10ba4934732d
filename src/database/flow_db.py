from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
import urllib.parse
import threading
import asyncio
from typing import Optional, List, Dict, Any, Type, TypeVar
from datetime import datetime
import weakref
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure, DuplicateKeyError

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Database
from database.execution_repository import ExecutionRepository

# Exceptions
from exceptions.flow_exception import PersistenceError, ExecutionConflictError

# Models
from models.flow_data import FlowData
from models.execution_data import ExecutionData
from models.execution_log_data import ExecutionLogData

ModelT = TypeVar("ModelT", bound=BaseModel)

"""
MongoDB implementation of the execution repository
"""
class FlowDB(ExecutionRepository):
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):

        # Initialize logger
        self.log_util = log_util

        # Initialize environment utils
        self.environment_utils = environment_utils

        # Mongo credentials
        self.username = urllib.parse.quote_plus(self.environment_utils.get_env_variable("MONGO_USERNAME"))
        self.password = urllib.parse.quote_plus(self.environment_utils.get_env_variable("MONGO_PASSWORD"))
        self.auth_source = self.environment_utils.get_env_variable("MONGO_AUTH_SOURCE")
        self.host = self.environment_utils.get_env_variable("MONGO_HOST")
        self.port = int(self.environment_utils.get_env_variable("MONGO_PORT"))
        self.db_name = self.environment_utils.get_env_variable("MONGO_DB_NAME")

        # Mongo Connection Pool Configs
        self.max_pool_size = 50
        self.min_pool_size = 0  # Create connections on-demand instead of at startup
        self.max_idle_time_ms = 30000
        self.wait_queue_timeout_ms = 10000
        self.connect_timeout_ms = 10000
        self.server_selection_timeout_ms = 10000
        self.socket_timeout_ms = 10000

        # One client per event loop: {loop_id: client_data}
        self._clients = {}

        # Thread-safe initialization lock
        self._client_lock = threading.Lock()

    def _get_client_for_current_loop(self):
        """
        Thread-safe method to get the MongoDB client and collections for the current event loop.
        Returns a dictionary with 'client', 'db', and 'collections' for the current event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError("No event loop available. Database methods must be called from an async context.")

        loop_id = id(loop)

        if loop_id in self._clients:
            return self._clients[loop_id]

        with self._client_lock:
            # Double-check after acquiring lock (another thread might have created it)
            if loop_id in self._clients:
                return self._clients[loop_id]

            client = AsyncIOMotorClient(
                f"mongodb://{self.username}:{self.password}@{self.host}:{self.port}/?authSource={self.auth_source}",
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                maxIdleTimeMS=self.max_idle_time_ms,
                waitQueueTimeoutMS=self.wait_queue_timeout_ms,
                connectTimeoutMS=self.connect_timeout_ms,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                socketTimeoutMS=self.socket_timeout_ms,
                retryWrites=True,
                retryReads=True
            )
            db = client[self.db_name]

            client_data = {
                'client': client,
                'db': db,
                'collections': self._initialize_collections_for_client(db),
                'loop': weakref.ref(loop)
            }
            self._clients[loop_id] = client_data

            self.log_util.info(
                service_name="FlowDB",
                message=f"MongoDB client initialized for event loop {loop_id} (lazy initialization)"
            )

            return client_data

    def _initialize_collections_for_client(self, db):
        """
        Initialize MongoDB collections for a given database instance
        """
        return {
            'flows': db.flows,
            'flow_executions': db.flow_executions,
            'flow_logs': db.flow_logs
        }

    def close(self):
        """
        Close all MongoDB clients and cleanup resources
        """
        with self._client_lock:
            for loop_id, client_data in self._clients.items():
                try:
                    client_data['client'].close()
                except Exception as e:
                    self.log_util.warning(
                        service_name="FlowDB",
                        message=f"Error closing client for loop {loop_id}: {str(e)}"
                    )
            self._clients.clear()
            self.log_util.info(
                service_name="FlowDB",
                message="All MongoDB clients closed"
            )

    def _handle_db_operation(self, operation_name: str, error: Exception) -> None:
        """
        Log a failed database operation and raise it as a PersistenceError.

        Args:
            operation_name: Name of the operation that failed
            error: The exception that occurred
        """
        if isinstance(error, (NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure)):
            self.log_util.error(
                service_name="FlowDB",
                message=f"Database connection error in {operation_name}: {str(error)}"
            )
            raise PersistenceError(
                message=f"Database connection error: {str(error)}",
                status_code=503
            ) from error
        self.log_util.error(
            service_name="FlowDB",
            message=f"Error in {operation_name}: {str(error)}"
        )
        raise PersistenceError(
            message=f"Database error: {str(error)}",
            status_code=500
        ) from error

    @staticmethod
    def _to_object_id(document_id: Optional[str]) -> Optional[ObjectId]:
        if document_id is None or not ObjectId.is_valid(document_id):
            return None
        return ObjectId(document_id)

    @staticmethod
    def _to_model(document: Dict[str, Any], model: Type[ModelT]) -> ModelT:
        document["id"] = str(document.pop("_id"))
        return model.model_validate(document)

    async def create_indexes(self) -> None:
        """
        Create indexes. The partial unique index keeps a conversation from
        ever having two running executions, whatever process writes them.
        """
        collections = self._get_client_for_current_loop()['collections']
        try:
            await collections['flow_executions'].create_index(
                [("conversation_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"status": "running"},
                name="unique_running_execution_per_conversation"
            )
            await collections['flow_executions'].create_index([("status", ASCENDING), ("last_activity_at", ASCENDING)])
            await collections['flow_executions'].create_index([("status", ASCENDING), ("wait_state", ASCENDING), ("resume_at", ASCENDING)])
            await collections['flow_executions'].create_index([("flow_id", ASCENDING), ("started_at", DESCENDING)])
            await collections['flow_logs'].create_index([("execution_id", ASCENDING), ("created_at", ASCENDING)])
            await collections['flows'].create_index([("is_active", ASCENDING)])
            self.log_util.info(service_name="FlowDB", message="Database indexes created successfully")
        except Exception as e:
            self._handle_db_operation("create_indexes", e)

    # Flow operations
    async def create_flow(self, flow: FlowData) -> FlowData:
        """
        Create a new flow
        """
        client_data = self._get_client_for_current_loop()
        try:
            flow_dict = flow.model_dump(exclude={"id"})
            result = await client_data['collections']['flows'].insert_one(flow_dict)
            flow_dict["_id"] = result.inserted_id
            return self._to_model(flow_dict, FlowData)
        except Exception as e:
            self._handle_db_operation("create_flow", e)

    async def get_flow(self, flow_id: str) -> Optional[FlowData]:
        """
        Get a flow by ID
        """
        object_id = self._to_object_id(flow_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].find_one({"_id": object_id})
            if result is None:
                return None
            return self._to_model(result, FlowData)
        except Exception as e:
            self._handle_db_operation("get_flow", e)

    async def get_flows(self) -> List[FlowData]:
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flows'].find({}).sort("_id", ASCENDING)
            return [self._to_model(flow_dict, FlowData) async for flow_dict in cursor]
        except Exception as e:
            self._handle_db_operation("get_flows", e)

    async def get_active_flows(self) -> List[FlowData]:
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flows'].find({"is_active": True}).sort("_id", ASCENDING)
            return [self._to_model(flow_dict, FlowData) async for flow_dict in cursor]
        except Exception as e:
            self._handle_db_operation("get_active_flows", e)

    async def update_flow_active(self, flow_id: str, is_active: bool) -> Optional[FlowData]:
        """
        Update only the is_active field of a flow
        """
        object_id = self._to_object_id(flow_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].find_one_and_update(
                {"_id": object_id},
                {"$set": {"is_active": is_active, "updated_at": datetime.utcnow()}},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                return None
            return self._to_model(result, FlowData)
        except Exception as e:
            self._handle_db_operation("update_flow_active", e)

    # Execution operations
    async def create_execution(self, execution: ExecutionData) -> ExecutionData:
        client_data = self._get_client_for_current_loop()
        try:
            execution_dict = execution.model_dump(exclude={"id"})
            result = await client_data['collections']['flow_executions'].insert_one(execution_dict)
            execution_dict["_id"] = result.inserted_id
            return self._to_model(execution_dict, ExecutionData)
        except DuplicateKeyError as e:
            self.log_util.warning(
                service_name="FlowDB",
                message=f"Conversation {execution.conversation_id} already has a running execution"
            )
            raise ExecutionConflictError(
                message=f"Conversation {execution.conversation_id} already has a running execution"
            ) from e
        except Exception as e:
            self._handle_db_operation("create_execution", e)

    async def get_execution(self, execution_id: str) -> Optional[ExecutionData]:
        object_id = self._to_object_id(execution_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].find_one({"_id": object_id})
            if result is None:
                return None
            return self._to_model(result, ExecutionData)
        except Exception as e:
            self._handle_db_operation("get_execution", e)

    async def get_running_execution(self, conversation_id: str) -> Optional[ExecutionData]:
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].find_one(
                {"conversation_id": conversation_id, "status": "running"},
                sort=[("started_at", DESCENDING)]
            )
            if result is None:
                return None
            return self._to_model(result, ExecutionData)
        except Exception as e:
            self._handle_db_operation("get_running_execution", e)

    async def get_executions(self, limit: int = 100) -> List[ExecutionData]:
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flow_executions'].find({}).sort("started_at", DESCENDING).limit(limit)
            return [self._to_model(document, ExecutionData) async for document in cursor]
        except Exception as e:
            self._handle_db_operation("get_executions", e)

    async def get_executions_by_flow(self, flow_id: str, limit: int = 100) -> List[ExecutionData]:
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flow_executions'].find(
                {"flow_id": flow_id}
            ).sort("started_at", DESCENDING).limit(limit)
            return [self._to_model(document, ExecutionData) async for document in cursor]
        except Exception as e:
            self._handle_db_operation("get_executions_by_flow", e)

    async def compare_and_update_execution(
        self,
        execution_id: str,
        expected_version: int,
        changes: Dict[str, Any]
    ) -> ExecutionData:
        object_id = self._to_object_id(execution_id)
        if object_id is None:
            raise ExecutionConflictError(message=f"Execution {execution_id} does not exist")
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].find_one_and_update(
                {"_id": object_id, "version": expected_version},
                {"$set": changes, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            raise ExecutionConflictError(
                message=f"Execution {execution_id} update collides with another running execution"
            ) from e
        except Exception as e:
            self._handle_db_operation("compare_and_update_execution", e)
        if result is None:
            self.log_util.warning(
                service_name="FlowDB",
                message=f"Stale write rejected for execution {execution_id} (expected version {expected_version})"
            )
            raise ExecutionConflictError(
                message=f"Execution {execution_id} was modified concurrently (expected version {expected_version})"
            )
        return self._to_model(result, ExecutionData)

    async def pause_timed_out_executions(self, cutoff: datetime) -> int:
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].update_many(
                {"status": "running", "last_activity_at": {"$lt": cutoff}},
                {"$set": {"status": "paused"}, "$inc": {"version": 1}}
            )
            return result.modified_count
        except Exception as e:
            self._handle_db_operation("pause_timed_out_executions", e)

    async def get_due_delayed_executions(self, now: datetime) -> List[ExecutionData]:
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flow_executions'].find({
                "status": "running",
                "wait_state": "delay",
                "resume_at": {"$lte": now}
            }).sort("resume_at", ASCENDING)
            return [self._to_model(document, ExecutionData) async for document in cursor]
        except Exception as e:
            self._handle_db_operation("get_due_delayed_executions", e)

    # Log operations
    async def save_execution_log(self, log: ExecutionLogData) -> ExecutionLogData:
        client_data = self._get_client_for_current_loop()
        try:
            log_dict = log.model_dump(exclude={"id"})
            result = await client_data['collections']['flow_logs'].insert_one(log_dict)
            log_dict["_id"] = result.inserted_id
            return self._to_model(log_dict, ExecutionLogData)
        except Exception as e:
            self._handle_db_operation("save_execution_log", e)

    async def get_execution_logs(self, execution_id: str) -> List[ExecutionLogData]:
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flow_logs'].find(
                {"execution_id": execution_id}
            ).sort("created_at", ASCENDING)
            return [self._to_model(document, ExecutionLogData) async for document in cursor]
        except Exception as e:
            self._handle_db_operation("get_execution_logs", e)
