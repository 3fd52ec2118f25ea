"""
Presentation layer: the HTTP and WebSocket surface.
"""
