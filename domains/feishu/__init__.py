"""
Feishu Domain

Maps Feishu (Lark) event callbacks onto file sync pipeline inputs.
"""

__all__ = ["events"]
