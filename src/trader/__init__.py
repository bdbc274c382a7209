"""
Wall scheduling and process wiring.

The process entrypoint remains `main.py` at the repo root. The scheduler, the
config store and the service that ties them to the API live under `src/trader/`.
"""
