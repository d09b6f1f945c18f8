"""基础设施：日志、本地存储与 HTTP 重试策略。"""
