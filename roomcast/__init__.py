"""
roomcast
~~~~~~~~

实时连接中转服务 —— 房间广播 + 一对一定向投递。
"""
