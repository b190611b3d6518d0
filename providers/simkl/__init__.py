# providers/simkl/__init__.py
# SIMKL remote: API client, response models, payload builders.
