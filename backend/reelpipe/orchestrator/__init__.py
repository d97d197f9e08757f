"""Pipeline orchestration: status model, error policy and stage sequencing.

Submodules are imported directly (reelpipe.orchestrator.state,
reelpipe.orchestrator.policy, reelpipe.orchestrator.pipeline); the store
depends on the status model, so this package stays import-free.
"""
