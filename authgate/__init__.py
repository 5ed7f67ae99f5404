"""Password login with per-IP lockout and layered second/third factors."""

__version__ = "1.0.0"
