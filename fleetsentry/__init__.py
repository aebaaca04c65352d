"""FleetSentry - 主机集群健康监控与容器自愈守护进程。"""

__version__ = "0.1.0"
