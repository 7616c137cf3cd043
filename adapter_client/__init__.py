from .client import AdapterClient
from .errors import AdapterError
from .tokens import TokenHandle
from .sequencer import WorkflowState, WorkflowStatus
from .workflows import PositionWorkflow, SwapWorkflow
