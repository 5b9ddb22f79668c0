"""
客房库存与预订事务引擎
"""
__version__ = "0.1.0"
