"""
日志上下文管理模块
提供请求跟踪和上下文传递功能
"""

import uuid
from typing import Dict, Any, Optional
from contextvars import ContextVar


request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
service_context_var: ContextVar[Dict[str, Any]] = ContextVar('service_context', default={})


class LogContext:
    """
    日志上下文管理器
    用于在请求生命周期内传递上下文信息
    """

    def __init__(self, request_id: str = None, user_id: str = None, **extra_context):
        # 嵌套使用时沿用外层的请求ID
        self.request_id = request_id or request_id_var.get() or str(uuid.uuid4())
        self.user_id = user_id
        self.extra_context = extra_context
        self._tokens = []

    def __enter__(self):
        self._tokens.append((request_id_var, request_id_var.set(self.request_id)))
        if self.user_id:
            self._tokens.append((user_id_var, user_id_var.set(self.user_id)))

        new_context = service_context_var.get().copy()
        new_context.update(self.extra_context)
        self._tokens.append((service_context_var, service_context_var.set(new_context)))

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # 逆序恢复原始值
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)

    @staticmethod
    def get_context() -> Dict[str, Any]:
        """
        获取当前上下文信息

        Returns:
            包含上下文信息的字典
        """
        context = {}

        request_id = request_id_var.get()
        if request_id:
            context['request_id'] = request_id

        user_id = user_id_var.get()
        if user_id:
            context['user_id'] = user_id

        context.update(service_context_var.get())
        return context

    @staticmethod
    def get_request_id() -> Optional[str]:
        """获取请求ID"""
        return request_id_var.get()

    @staticmethod
    def set_user_id(user_id: str):
        """设置用户ID"""
        user_id_var.set(user_id)
