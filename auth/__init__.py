"""auth/ -- User / general-key registry for keyward.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from main.py. main.py imports from auth/, not the other
way around.
"""
