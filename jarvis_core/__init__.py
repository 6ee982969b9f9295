"""Jarvis Core 顶层包。

该包提供语音 AR 助手的交互核心实现，
包括配置加载、会话上下文、AI 请求网关（限流/超时/错误分类）、
回合状态机编排器以及语音/地图/UI 端口协议。
"""

from jarvis_core.api.service import Session, create_session

__all__ = ["Session", "create_session"]
