"""auth/ -- Authentication and session lifecycle package.

Layer rule: auth/ imports only stdlib + third-party libraries. It does NOT
import from api/ or core/; factory helpers such as AuthService.from_settings()
receive a settings object from the caller. api/ and main.py import from auth/,
not the other way around.
"""
