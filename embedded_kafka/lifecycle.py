from enum import Enum


class LifecycleState(Enum):
    """Stopped -> Starting -> Running -> Stopping -> Stopped"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
