"""
异常定义模块 (Exception Definitions Module)

定义采集、告警和自愈流程使用的异常层级。远程执行失败按原因区分（连接/超时/命令失败），
调用方可据此分支处理；所有预期内的运行时失败在单主机粒度被吸收，仅配置错误向上传播。

Defines the exception hierarchy used by collection, alerting and healing. Remote
execution failures are split by cause (connection / timeout / command failure) so
callers can branch on them. Expected operational failures are absorbed per host;
only configuration errors propagate to the cycle caller.
"""
from typing import Optional


class FleetError(Exception):
    """FleetSentry 异常基类 (Base Exception)"""
    error: str = "fleet_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


# ============================================================
# 远程执行异常 (Remote Execution Exceptions)
# ============================================================

class ExecutionError(FleetError):
    """远程执行失败基类 (Base Execution Failure)"""
    error = "execution_error"

    def __init__(self, message: str, host: str = "", detail: Optional[str] = None):
        self.host = host
        super().__init__(message, detail)


class HostConnectionError(ExecutionError):
    """无法连接主机 (Cannot Reach Host)"""
    error = "connection_error"


class ExecutionTimeout(ExecutionError):
    """命令超出时间预算 (Command Exceeded Its Budget)"""
    error = "execution_timeout"

    def __init__(self, message: str, host: str = "", timeout_ms: int = 0):
        self.timeout_ms = timeout_ms
        super().__init__(message, host)


class CommandFailure(ExecutionError):
    """命令非零退出 (Non-zero Exit)"""
    error = "command_failure"

    def __init__(self, message: str, host: str = "", exit_code: int = -1, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, host, detail=stderr or None)


# ============================================================
# 数据与配置异常 (Data and Configuration Exceptions)
# ============================================================

class ParseError(FleetError):
    """命令输出不符合预期格式 (Output Did Not Match Expected Shape)"""
    error = "parse_error"


class NotFoundError(FleetError):
    """引用的主机/规则/备份目标不存在 (Referenced Entity Missing)"""
    error = "not_found"


class ConfigError(FleetError):
    """配置无效，属于编程/部署错误，向上传播 (Invalid Configuration, Propagated)"""
    error = "config_error"
