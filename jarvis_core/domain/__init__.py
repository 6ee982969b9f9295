"""领域层模型与协议。

包含：
- models: ConversationMessage / ChatRequest / ChatResult / RequestOutcome 等模型。
- conversation: 有上限的会话上下文 ConversationContext。
- exceptions: 业务异常类型定义。
"""
