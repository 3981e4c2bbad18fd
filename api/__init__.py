"""
API 層：FastAPI routers
"""
