"""
认证服务
"""
