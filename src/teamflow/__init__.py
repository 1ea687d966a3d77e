from teamflow.agents import BaseAgent, EchoAgent, OpenAIChatAgent, PromptAgent
from teamflow.models import Feedback, LLMConfig, Task
from teamflow.status import AgentStatus, FeedbackStatus, TaskStatus, WorkflowStatus
from teamflow.team import Team, WorkflowRunResult

__version__ = "0.1.0"

__all__ = [
    "AgentStatus",
    "BaseAgent",
    "EchoAgent",
    "Feedback",
    "FeedbackStatus",
    "LLMConfig",
    "OpenAIChatAgent",
    "PromptAgent",
    "Task",
    "TaskStatus",
    "Team",
    "WorkflowRunResult",
    "WorkflowStatus",
    "__version__",
]
