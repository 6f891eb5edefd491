"""
craftwatch - 游戏服务器在线状态监控

负责：
- 每 10 分钟并发探测所有服务器（Server List Ping）
- 保存每次探测结果
- 提供 REST API：服务器管理、手动探测、历史曲线（周/月范围自动降采样）
"""

__version__ = "1.0.0"
