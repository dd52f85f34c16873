"""Job-level orchestration.

- import_pipeline: Batch orchestrator for feature imports
- progress: Job progress tracker (status and counters per job)
- height_pass: Out-of-band height transformation of imported layers
"""
