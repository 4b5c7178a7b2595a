"""core/ -- Kernel package: settings and the registry config snapshot.

Layer rule: core/ imports only stdlib + third-party libraries. Nothing here
imports from auth/ or main.py.
"""
