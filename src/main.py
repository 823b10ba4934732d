import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from utils.keyed_lock_utils import KeyedLock

# Database
from database.execution_repository import ExecutionRepository
from database.flow_db import FlowDB
from database.memory_flow_db import InMemoryFlowDB

# Internal Services (collaborators)
from services.internal.channel_service import ChannelService
from services.internal.conversation_service import ConversationService

# Services
from services.execution_cache import ExecutionCache
from services.http_action_service import HttpActionService
from services.trigger_evaluation_service import TriggerEvaluationService
from services.node_execution_service import NodeExecutionService
from services.flow_controller_service import FlowControllerService
from services.inbound_message_service import InboundMessageService
from services.delay_scheduler_service import DelaySchedulerService
from services.timeout_reaper_service import TimeoutReaperService
from services.flow_service import FlowService

# APIs
from apis.flow_api import create_flow_api
from apis.execution_api import create_execution_api
from apis.inbound_message_api import create_inbound_message_api

# Utils
log_util = LogUtil()
environment_utils = EnvironmentUtils(log_util=log_util)

# Database
if environment_utils.get_env_variable("FLOW_DB_BACKEND") == "memory":
    flow_db: ExecutionRepository = InMemoryFlowDB(log_util=log_util)
else:
    flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)

# Internal Services
channel_service = ChannelService(log_util=log_util, environment_utils=environment_utils)
conversation_service = ConversationService(log_util=log_util, environment_utils=environment_utils)

# Services
execution_cache = ExecutionCache()

http_action_service = HttpActionService(
    log_util=log_util,
    environment_utils=environment_utils
)

trigger_evaluation_service = TriggerEvaluationService(
    log_util=log_util,
    conversation_service=conversation_service
)

node_execution_service = NodeExecutionService(
    log_util=log_util,
    conversation_service=conversation_service,
    http_action_service=http_action_service
)

flow_controller_service = FlowControllerService(
    log_util=log_util,
    environment_utils=environment_utils,
    flow_db=flow_db,
    node_execution_service=node_execution_service,
    channel_service=channel_service,
    execution_cache=execution_cache
)

inbound_message_service = InboundMessageService(
    log_util=log_util,
    flow_db=flow_db,
    trigger_evaluation_service=trigger_evaluation_service,
    flow_controller_service=flow_controller_service,
    conversation_lock=KeyedLock()
)

flow_service = FlowService(log_util=log_util, flow_db=flow_db)

# Background services
delay_scheduler_service = DelaySchedulerService(
    log_util=log_util,
    flow_db=flow_db,
    inbound_message_service=inbound_message_service,
    check_interval_seconds=environment_utils.get_env_variable("DELAY_CHECK_INTERVAL_SECONDS")
)

timeout_reaper_service = TimeoutReaperService(
    log_util=log_util,
    flow_db=flow_db,
    execution_cache=execution_cache,
    timeout_minutes=environment_utils.get_env_variable("EXECUTION_TIMEOUT_MINUTES"),
    interval_seconds=environment_utils.get_env_variable("REAPER_INTERVAL_SECONDS")
)

# Define lifespan function
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await flow_db.create_indexes()
    await delay_scheduler_service.start()
    await timeout_reaper_service.start()
    log_util.info(service_name="FlowService", message="Application startup complete")

    yield

    # Shutdown
    await delay_scheduler_service.stop()
    await timeout_reaper_service.stop()
    flow_db.close()
    log_util.info(service_name="FlowService", message="Application shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="chatdesk flow service",
    description="Conversational flow engine for helpdesk messaging channels",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inbound messages (from channel services)
app.include_router(create_inbound_message_api(
    log_util=log_util,
    inbound_message_service=inbound_message_service
))

# Flow management
app.include_router(create_flow_api(
    log_util=log_util,
    flow_service=flow_service,
    inbound_message_service=inbound_message_service
))

# Executions
app.include_router(create_execution_api(
    log_util=log_util,
    flow_service=flow_service,
    timeout_reaper_service=timeout_reaper_service,
    inbound_message_service=inbound_message_service
))

# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "flow_service"}

# Global exception handler for HTTPExceptions
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log_util.error(service_name="FlowService", message=f"HTTPException: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error": str(exc),
            "status_code": exc.status_code
        }
    )

# Global exception handler for any unhandled exceptions
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    log_util.error(service_name="FlowService", message=f"Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "status_code": 500
        }
    )

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=environment_utils.get_env_variable("HOST"),
        port=environment_utils.get_env_variable("PORT")
    )
