"""
Agent - Top-level agent class.

This is the main entry point for creating and running agents. It holds the
configuration (client, instructions, tools, memory) and delegates each turn
to an AgentExecutor.
"""

from typing import Any, AsyncIterator, Callable

from conduit.agent.executor import AgentExecutor
from conduit.domain import AgentResponse, AgentStateCheckpoint, ChatOptions, FinalAnswer
from conduit.llm.base import LLMClient
from conduit.memory.conversation import MemoryManager
from conduit.runtime.control import CancellationToken
from conduit.runtime.state import RunState
from conduit.runtime.tool_executor import ToolErrorCallback
from conduit.tools.base import BaseTool
from conduit.utils.logging import get_logger


class Agent:
    """
    Agent configuration container.

    One agent handles a single conversation with at most one turn in flight.

    Examples:
        >>> agent = Agent(client=OpenAIClient(), instructions="You are a bookkeeper.",
        ...               tools=[CalculatorTool()])
        >>> answer = await agent.run("What is 2 + 2?")
        >>> answer.text
    """

    def __init__(
        self,
        client: LLMClient,
        instructions: str = "",
        tools: list[BaseTool] | None = None,
        memory: MemoryManager | None = None,
        name: str = "conduit_agent",
        description: str = "",
        state: RunState | None = None,
        options: ChatOptions | None = None,
        max_iterations: int | None = None,
        max_prompt_bytes: int | None = None,
        on_tool_error: ToolErrorCallback | None = None,
        on_agent_failure: Callable[[BaseException], Any] | None = None,
        on_warning: Callable[[str], Any] | None = None,
        logger: Any = None,
    ):
        from conduit.config import settings

        self.client = client
        self.instructions = instructions
        self.name = name
        self.description = description
        self.memory = memory or MemoryManager(client=client)
        self.state = state or RunState()
        self.options = options
        self.max_iterations = settings.max_iterations if max_iterations is None else max_iterations
        self.max_prompt_bytes = (
            settings.max_prompt_bytes if max_prompt_bytes is None else max_prompt_bytes
        )
        if self.max_iterations < 1 or self.max_prompt_bytes < 1:
            raise ValueError("max_iterations and max_prompt_bytes must be at least 1")
        self.on_tool_error = on_tool_error
        self.on_agent_failure = on_agent_failure
        self.on_warning = on_warning
        self.logger = logger or get_logger(__name__)

        self._tools: dict[str, BaseTool] = {}
        for tool in tools or []:
            self.add_tool(tool)

    @property
    def tools(self) -> list[BaseTool]:
        return list(self._tools.values())

    def add_tool(self, tool: BaseTool) -> None:
        """Register a tool; a tool with the same name is replaced."""
        if tool.name in self._tools:
            self.logger.debug("agent_tool_replaced", agent=self.name, tool_name=tool.name)
        self._tools[tool.name] = tool

    def _executor(self) -> AgentExecutor:
        return AgentExecutor(
            name=self.name,
            client=self.client,
            memory=self.memory,
            state=self.state,
            tools=self.tools,
            instructions=self.instructions,
            options=self.options,
            max_iterations=self.max_iterations,
            max_prompt_bytes=self.max_prompt_bytes,
            logger=self.logger,
            on_tool_error=self.on_tool_error,
            on_agent_failure=self.on_agent_failure,
            on_warning=self.on_warning,
        )

    async def run(
        self,
        prompt: str,
        cancellation: CancellationToken | None = None,
        resume_from: AgentStateCheckpoint | None = None,
    ) -> FinalAnswer:
        """Run one turn and return the final answer."""
        final: FinalAnswer | None = None
        async for response in self._executor().execute(
            prompt, cancellation=cancellation, resume_from=resume_from, streaming=False
        ):
            if isinstance(response, FinalAnswer):
                final = response
        assert final is not None
        return final

    async def run_streaming(
        self,
        prompt: str,
        cancellation: CancellationToken | None = None,
        resume_from: AgentStateCheckpoint | None = None,
    ) -> AsyncIterator[AgentResponse]:
        """
        Run one turn, streaming text deltas, tool-call batches and usage.

        The sequence is single-pass and always ends with a FinalAnswer (or raises).
        """
        async for response in self._executor().execute(
            prompt, cancellation=cancellation, resume_from=resume_from, streaming=True
        ):
            yield response

    def __repr__(self) -> str:
        return f"Agent(name={self.name!r}, tools={list(self._tools)})"


__all__ = ["Agent"]
