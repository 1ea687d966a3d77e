from teamflow.agents.base import AgentReporter, BaseAgent, PromptAgent
from teamflow.agents.echo import EchoAgent
from teamflow.agents.openai_chat import OpenAIChatAgent

__all__ = [
    "AgentReporter",
    "BaseAgent",
    "EchoAgent",
    "OpenAIChatAgent",
    "PromptAgent",
]
