# providers/__init__.py
# Remote services the engine syncs with.
