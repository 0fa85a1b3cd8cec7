"""
Temporal layer of the booking engine.

Activity wrappers (activities.py) are imported by the worker only; workflow
code imports proxies.py, which never pulls backend libraries into the
workflow sandbox. This module imports neither.
"""
