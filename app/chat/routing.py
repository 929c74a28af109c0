"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/ - One live connection per client; conversations are joined
               and left with frames (see chat.consumers)

Authentication:
    JWT access token as query parameter (?token=<jwt>) or subprotocol
    ("jwt", "<jwt>"); see chat.middleware.JWTAuthMiddleware.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path("ws/chat/", consumers.ChatConsumer.as_asgi()),
]
