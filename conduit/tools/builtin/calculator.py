from typing import Literal

from pydantic import BaseModel, Field

from conduit.tools.base import BaseTool


class CalculatorArgs(BaseModel):
    operation: Literal["add", "subtract", "multiply", "divide"] = Field(
        description="Arithmetic operation to perform"
    )
    a: float = Field(description="First operand")
    b: float = Field(description="Second operand")


class CalculatorTool(BaseTool):
    """Basic arithmetic, mostly useful for demos and tests."""

    name = "calculator"
    description = "Perform basic arithmetic operations (add, subtract, multiply, divide)."
    args_schema = CalculatorArgs

    async def execute(self, args: CalculatorArgs) -> str:
        if args.operation == "add":
            result = args.a + args.b
        elif args.operation == "subtract":
            result = args.a - args.b
        elif args.operation == "multiply":
            result = args.a * args.b
        else:
            if args.b == 0:
                return "Error: Division by zero"
            result = args.a / args.b

        if float(result).is_integer():
            result = int(result)
        return f"Result: {result}"


__all__ = ["CalculatorTool", "CalculatorArgs"]
