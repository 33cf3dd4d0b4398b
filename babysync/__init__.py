"""
Family sync backend for the BabySchlaf app.

Devices in a family share sleep entries and baby profiles through a
FastAPI service backed by a SQL store. Merges are last-write-wins upserts
keyed by family code and entry id.
"""
