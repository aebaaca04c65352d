"""主机描述 Schema，执行器与采集器之间传递，脱离数据库会话使用。"""
from typing import Optional

from pydantic import BaseModel, ConfigDict


class HostTarget(BaseModel):
    """远程执行目标：本机或 SSH 主机。"""
    model_config = ConfigDict(from_attributes=True)

    id: int = 0
    name: str
    kind: str = "local"  # local / remote
    address: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_port: int = 22
    ssh_key_path: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.kind == "local"

    def label(self) -> str:
        if self.is_local:
            return self.name
        return f"{self.name} ({self.address})"
