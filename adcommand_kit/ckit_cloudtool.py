import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

logger = logging.getLogger("ctool")


@dataclass
class CloudTool:
    name: str
    description: str
    parameters: dict

    def openai_style_tool(self):
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters
            }
        }


def openai_style_tools(tools: List[CloudTool]) -> List[dict]:
    return [t.openai_style_tool() for t in tools]


def sanitize_args(arguments_from_model: Any) -> Tuple[dict, Optional[str]]:
    """
    Make sure the model produced a JSON object for the tool arguments.
    """
    args = arguments_from_model
    if args is None or args == "":
        return {}, None

    if isinstance(args, str):
        try:
            args = json.loads(args)
        except (json.JSONDecodeError, TypeError):
            return {}, "arguments are not valid JSON"

    # Model was stupid enough to escape json object twice
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except (json.JSONDecodeError, TypeError):
            return {}, "arguments need to be an object, got a string I couldn't parse back to json"

    if not isinstance(args, dict):
        return {}, "arguments must be an object, got %s" % type(args).__name__

    # Some models wrap everything into {"args": {...}}
    if set(args.keys()) == {"args"} and isinstance(args["args"], dict):
        args = args["args"]

    return args, None
