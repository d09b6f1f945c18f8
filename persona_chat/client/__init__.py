"""客户端：调用聊天 API、缓存人设列表、驱动一次发送并写入本地记录。"""
