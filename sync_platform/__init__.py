# sync_platform/__init__.py
# Shared building blocks of the SIMKL sync engine: config, ids, models, host contracts.
