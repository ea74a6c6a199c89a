"""auth/ -- Authentication and authorization core.

Layer rule: auth/ imports from core/ and third-party libraries only.
Callers (HTTP apps, the CLI in main.py) import from auth/, never the other
way around. auth/dependencies.py is the one module that knows about FastAPI.
"""
