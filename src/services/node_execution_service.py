"""
Node Execution Service
Runs a single flow node and reports what the controller should do next.
"""
from typing import Optional, Dict, Any
from datetime import datetime, timedelta

# Utils
from utils.log_utils import LogUtil
from utils.interpolation_utils import interpolate

# Services
from services.internal.conversation_service import ConversationService
from services.http_action_service import HttpActionService

# Exceptions
from exceptions.flow_exception import NodeExecutionError, UnknownNodeTypeError, HttpActionError

# Models
from models.flow_data import FlowNode, FlowNodeData
from models.execution_data import ExecutionData
from models.message_context import MessageContext
from models.node_execution_result import NodeExecutionResult

DEFAULT_TRANSFER_MESSAGE = "🙋 Te estamos transfiriendo con un agente..."
DEFAULT_DELAY_SECONDS = 1


class NodeExecutionService:
    """
    Executes exactly one node. Side effects on the conversation go through
    ConversationService; outbound texts are returned, not sent.
    """

    def __init__(
        self,
        log_util: LogUtil,
        conversation_service: ConversationService,
        http_action_service: HttpActionService
    ):
        self.log_util = log_util
        self.conversation_service = conversation_service
        self.http_action_service = http_action_service
        self._handlers = {
            "message": self._execute_message_node,
            "question": self._execute_question_node,
            "condition": self._execute_condition_node,
            "action": self._execute_action_node,
            "delay": self._execute_delay_node,
            "transfer": self._execute_transfer_node,
        }

    async def execute_node(
        self,
        node: FlowNode,
        execution: ExecutionData,
        context: MessageContext
    ) -> NodeExecutionResult:
        """
        Run one node against a copy of the execution variables.

        Raises:
            UnknownNodeTypeError: node type has no handler
            NodeExecutionError: the node cannot run (bad config, collaborator failure)
        """
        handler = self._handlers.get(node.type)
        if handler is None:
            raise UnknownNodeTypeError(node_type=node.type, node_id=node.id)

        variables = dict(execution.variables)
        self.log_util.info(
            service_name="NodeExecutionService",
            message=f"[NODE_EXEC] Executing {node.type} node {node.id} for execution {execution.id}"
        )
        result = await handler(node, variables, context)
        result.variables = variables
        return result

    def _render(self, template: Optional[str], variables: Dict[str, Any], context: MessageContext) -> str:
        return interpolate(template, variables, contact_name=context.contact_name, phone=context.phone)

    async def _execute_message_node(self, node: FlowNode, variables: Dict[str, Any], context: MessageContext) -> NodeExecutionResult:
        return NodeExecutionResult(response_text=self._render(node.data.message, variables, context))

    async def _execute_question_node(self, node: FlowNode, variables: Dict[str, Any], context: MessageContext) -> NodeExecutionResult:
        return NodeExecutionResult(
            response_text=self._render(node.data.question, variables, context),
            should_wait=True,
            wait_state="question"
        )

    @staticmethod
    def _to_number(value: Any) -> Optional[float]:
        if isinstance(value, bool):
            return float(value)
        try:
            number = float(str(value).strip())
        except (TypeError, ValueError):
            return None
        # NaN never compares true
        return None if number != number else number

    def evaluate_condition(self, operator: str, actual: Any, expected: Any) -> bool:
        """
        String operators compare case-insensitively; numeric operators coerce
        both sides and are false when either side is not a number.
        """
        actual_text = "" if actual is None else str(actual).lower()
        expected_text = "" if expected is None else str(expected).lower()

        if operator == "equals":
            return actual_text == expected_text
        if operator == "contains":
            return expected_text in actual_text
        if operator == "starts_with":
            return actual_text.startswith(expected_text)
        if operator == "ends_with":
            return actual_text.endswith(expected_text)
        if operator in ("greater_than", "less_than"):
            actual_number = self._to_number(actual)
            expected_number = self._to_number(expected)
            if actual_number is None or expected_number is None:
                return False
            if operator == "greater_than":
                return actual_number > expected_number
            return actual_number < expected_number

        self.log_util.warning(
            service_name="NodeExecutionService",
            message=f"[NODE_EXEC] Unknown condition operator '{operator}', evaluating to false"
        )
        return False

    async def _execute_condition_node(self, node: FlowNode, variables: Dict[str, Any], context: MessageContext) -> NodeExecutionResult:
        condition = node.data.condition
        if condition is None:
            raise NodeExecutionError(message="No condition defined", node_id=node.id)

        actual = variables.get(condition.variable)
        matches = self.evaluate_condition(condition.operator, actual, condition.value)
        wanted_label = "true" if matches else "false"

        connection = next((c for c in node.connections if c.label == wanted_label), None)
        if connection is None and node.connections:
            connection = node.connections[0]

        self.log_util.info(
            service_name="NodeExecutionService",
            message=f"[NODE_EXEC] Condition {condition.variable} {condition.operator} '{condition.value}' on '{actual}' -> {matches}"
        )
        return NodeExecutionResult(next_node_id=connection.target_node_id if connection else None)

    async def _execute_action_node(self, node: FlowNode, variables: Dict[str, Any], context: MessageContext) -> NodeExecutionResult:
        data: FlowNodeData = node.data
        config = data.action_config or {}
        action_type = data.action_type

        if action_type == "set_variable":
            variable_name = config.get("variable_name")
            if not variable_name:
                raise NodeExecutionError(message="set_variable action requires variable_name", node_id=node.id)
            variables[variable_name] = self._render(str(config.get("value") or ""), variables, context)

        elif action_type == "assign_agent":
            await self._update_conversation(
                node,
                context.conversation_id,
                status="assigned",
                assigned_agent_id=config.get("agent_id"),
                department_id=config.get("department_id")
            )

        elif action_type == "tag_conversation":
            tags = config.get("tags") or config.get("tag") or []
            if isinstance(tags, str):
                tags = [tag.strip() for tag in tags.split(",") if tag.strip()]
            if tags:
                try:
                    await self.conversation_service.add_tags(context.conversation_id, tags)
                except Exception as e:
                    raise NodeExecutionError(message=f"Tagging conversation failed: {str(e)}", node_id=node.id) from e

        elif action_type == "http_request":
            try:
                variables["http_response"] = await self.http_action_service.execute(
                    config,
                    variables,
                    contact_name=context.contact_name,
                    phone=context.phone
                )
            except HttpActionError as e:
                self.log_util.warning(
                    service_name="NodeExecutionService",
                    message=f"[NODE_EXEC] HTTP action of node {node.id} failed, continuing: {e.message}"
                )
                variables["http_response"] = {"error": e.message}

        else:
            self.log_util.warning(
                service_name="NodeExecutionService",
                message=f"[NODE_EXEC] Action node {node.id} has unsupported action_type '{action_type}', skipping"
            )

        return NodeExecutionResult()

    async def _execute_delay_node(self, node: FlowNode, variables: Dict[str, Any], context: MessageContext) -> NodeExecutionResult:
        seconds = node.data.delay_seconds or DEFAULT_DELAY_SECONDS
        if seconds < 0:
            raise NodeExecutionError(message=f"Invalid delay of {seconds} seconds", node_id=node.id)
        return NodeExecutionResult(
            should_wait=True,
            wait_state="delay",
            resume_at=datetime.utcnow() + timedelta(seconds=seconds)
        )

    async def _execute_transfer_node(self, node: FlowNode, variables: Dict[str, Any], context: MessageContext) -> NodeExecutionResult:
        await self._update_conversation(
            node,
            context.conversation_id,
            status="pending",
            assigned_agent_id=node.data.transfer_to_agent or None,
            clear_agent=not node.data.transfer_to_agent
        )
        return NodeExecutionResult(
            response_text=self._render(node.data.transfer_message or DEFAULT_TRANSFER_MESSAGE, variables, context),
            terminal_status="completed" if node.is_terminal else "paused"
        )

    async def _update_conversation(self, node: FlowNode, conversation_id: str, **changes) -> None:
        try:
            await self.conversation_service.update_conversation(conversation_id, **changes)
        except Exception as e:
            raise NodeExecutionError(
                message=f"Updating conversation {conversation_id} failed: {str(e)}",
                node_id=node.id
            ) from e
