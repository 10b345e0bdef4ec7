# gofresh/fastapi/deps.py
# Request-scoped accessors for things created once in server.create_app().

from datetime import datetime

from fastapi import Request

from gofresh.app_config import AppConfig
from gofresh.clock import Clock
from gofresh.services.razorpay_client import RazorpayClient


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_now(request: Request) -> datetime:
    """Current time, read once per request from the app clock."""
    return request.app.state.clock.now()


def get_razorpay(request: Request) -> RazorpayClient:
    return request.app.state.razorpay
