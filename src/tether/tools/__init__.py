"""Tool framework for assistant runs.

Provides versioned tool records, a rollback-capable registry, an
executor that binds records to callables, out-of-process execution of
scripted tools, JSON persistence and directory hot-reload.
"""
