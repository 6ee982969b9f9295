"""交互编排：唤醒 → 采集 → AI 请求 → 播报 的回合状态机。"""
