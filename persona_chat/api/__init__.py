"""HTTP 接口层：FastAPI 路由与其背后的服务函数。"""
