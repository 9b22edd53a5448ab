"""
meshroom.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口的限流配置。

信令 WebSocket 不做限流：一次协商会在短时间内连续中继大量 ICE 候选，属于正常流量。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

# 基于客户端 IP 地址进行限流，进程内存储即可（信令中继本身也是单进程内存状态）
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
