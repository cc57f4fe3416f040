"""
Facebook Ads Testing Utilities

Provides a scripted tool gateway, a scripted chat model and mock data generators.
"""

from .mocks import (
    MockToolGateway,
    ScriptedChatModel,
    generate_mock_material,
    tool_call,
    turn,
)

__all__ = [
    "MockToolGateway",
    "ScriptedChatModel",
    "generate_mock_material",
    "tool_call",
    "turn",
]
