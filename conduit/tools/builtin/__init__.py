from conduit.tools.builtin.calculator import CalculatorTool

__all__ = ["CalculatorTool"]
