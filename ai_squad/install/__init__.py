"""Installation reconciliation — the layer that keeps a project's installed tree honest.

This package provides the primitives for:
- Fingerprints: short content hashes, the unit of change detection
- Manifests: versioned records of what was installed, per install unit
- State classification: which reconciliation path a target directory needs
- Reconciliation: fresh install, update, repair, reinstall, expansion packs
"""
