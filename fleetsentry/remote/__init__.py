"""远程执行通道（本机 shell / SSH）。"""
from fleetsentry.remote.executor import RemoteExecutor

__all__ = ["RemoteExecutor"]
