"""回复流水线：组装 prompt、切分与定速推送、客户端消费、气泡合并。"""
