"""
主机模型 (Host Model)

定义被监控主机的表结构。主机由配置种子写入，采集器只读不改。
本机类型直接通过 shell 执行命令，远程类型通过 SSH 执行，缺省密钥时走 ssh-agent/默认认证。

Defines the table structure for monitored hosts. Hosts are created by configuration
seeding and are read-only for the collectors. Local hosts run commands through a
shell, remote hosts through SSH (agent/default authentication when no key is set).
"""
from datetime import datetime

from sqlalchemy import String, DateTime, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from fleetsentry.core.database import Base, utcnow


class Host(Base):
    """
    主机表 (Host Table)

    存储所有被监控主机的身份、执行方式和 SSH 连接参数。

    Stores identity, execution kind and SSH connection parameters of monitored hosts.
    """
    __tablename__ = "hosts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)  # 主机名称 (Host Name)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="remote")  # 执行方式：local/remote (Execution Kind)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)  # SSH 地址 (SSH Address)
    ssh_user: Mapped[str | None] = mapped_column(String(100), nullable=True, default="root")  # SSH 用户 (SSH User)
    ssh_port: Mapped[int] = mapped_column(Integer, nullable=False, default=22)  # SSH 端口 (SSH Port)
    ssh_key_path: Mapped[str | None] = mapped_column(String(500), nullable=True)  # 私钥路径 (Private Key Path)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)  # 是否参与采集 (Collection Enabled)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )  # 创建时间 (Creation Time)
