"""
comfygraph compiler
===================
Turns an edited graph into the remote engine's execution request.

Public API
----------
    from comfygraph.compiler import compile_prompt

    request = compile_prompt(project, client_id="...")
    body = request.to_dict()     # POST /prompt
"""

from .prompt import (
    DEFAULT_CLIENT_ID,
    Boolean,
    Float,
    Integer,
    LinkRef,
    LinkResolutionError,
    PromptCompiler,
    PromptInputValue,
    PromptNode,
    Text,
    WorkflowPrompt,
    compile_prompt,
)
from .widgets import strip_widget_quirks, widgets_values

__all__ = [
    "DEFAULT_CLIENT_ID",
    "Boolean",
    "Float",
    "Integer",
    "LinkRef",
    "LinkResolutionError",
    "PromptCompiler",
    "PromptInputValue",
    "PromptNode",
    "Text",
    "WorkflowPrompt",
    "compile_prompt",
    "strip_widget_quirks",
    "widgets_values",
]
