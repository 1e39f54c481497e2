"""
Tool definitions offered to tool-capable providers.

Definitions use the {name, description, input_schema} shape; adapters
convert to their native schema.
"""

from typing import Any, Dict, List


def _tool(name: str, description: str, param: str, param_description: str) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "input_schema": {
            "type": "object",
            "properties": {param: {"type": "string", "description": param_description}},
            "required": [param],
        },
    }


def builtin_tool_definitions() -> List[Dict[str, Any]]:
    return [
        _tool("web_search", "Search the web for information. Returns search results.",
              "query", "The search query"),
        _tool("bash_execute", "Execute a terminal command and return the output.",
              "command", "The shell command to execute"),
        _tool("file_preview", "Open a file in the preview panel for the user to see.",
              "path", "Absolute path to the file to preview"),
    ]


def to_openai_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool["description"],
                "parameters": tool["input_schema"],
            },
        }
        for tool in tools
    ]
