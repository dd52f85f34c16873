"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Named constants, status values, canonical frame
- exceptions: Custom exception hierarchy
- ingress: HTTP request decoding and response shaping
"""
