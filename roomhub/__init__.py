"""
roomhub
~~~~~~~

协作房间的成员关系与在线状态核心服务。
"""
