"""Persona Chat 顶层包。

与固定人设聊天：一次补全回复被切分为多个气泡、按人类打字节奏推送，
在客户端本地保存，并在展示时重新合并。
"""

__version__ = "0.1.0"
