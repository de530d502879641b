"""
Tool contract.

A tool declares its name, description and JSON-Schema parameters, an optional
confirmation policy and timeout, and implements ``execute``. Exceptions raised
from ``execute`` are caught by the ToolExecutor and reported back to the model.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel

from conduit.domain.messages import ToolDefinition

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


class BaseTool(ABC):
    """
    Base class for all tools.

    Subclasses set the class attributes and implement ``execute``. When
    ``args_schema`` is set, ``parameters`` defaults to its JSON schema and
    ``parse_args`` validates into that model.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    parameters: ClassVar[dict[str, Any] | None] = None
    args_schema: ClassVar[type[BaseModel] | None] = None

    requires_confirmation: bool = False
    # None means conduit.config.settings.tool_timeout
    timeout: float | None = None

    def needs_confirmation(self, args: dict[str, Any]) -> bool:
        """
        Whether this call must be approved by the user first.

        Override for per-call policies, e.g. only confirm deletes of more
        than one record.
        """
        return self.requires_confirmation

    def parse_args(self, args: dict[str, Any]) -> Any:
        """Turn decoded JSON arguments into the value ``execute`` receives."""
        if self.args_schema is not None:
            return self.args_schema.model_validate(args)
        return args

    def get_parameters(self) -> dict[str, Any]:
        if self.parameters is not None:
            return self.parameters
        if self.args_schema is not None:
            schema = self.args_schema.model_json_schema()
            return {
                "type": "object",
                "properties": schema.get("properties", {}),
                "required": schema.get("required", []),
            }
        return dict(EMPTY_PARAMETERS)

    def get_timeout(self) -> float:
        if self.timeout is not None:
            return self.timeout
        from conduit.config import settings

        return settings.tool_timeout

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters(),
        )

    @abstractmethod
    async def execute(self, args: Any) -> str:
        """Run the tool and return its result as text for the model."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


__all__ = ["BaseTool", "EMPTY_PARAMETERS"]
