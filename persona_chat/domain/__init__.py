"""领域层模型与协议。

包含：
- models: 发往补全服务的 ChatMessage / ChatRequest / ChatResult。
- conversation: 本地存储的 StoredMessage / ChatHistory 及 ConversationStore 抽象。
- stream: 推送通道上的 MessagePart / StreamEvent。
- exceptions: 业务异常类型定义。
"""
